"""Run bookkeeping for the diagnose and fix tools."""
