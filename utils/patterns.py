"""Pre-compiled regex patterns for the n8n stack tools.

All patterns are compiled once at module import.

Usage:
    from utils.patterns import FAILED_TASK, REDIS_PONG

    if REDIS_PONG.search(output):
        ...
"""

import re

# `docker service ps` rows for tasks that did not stay up
FAILED_TASK = re.compile(r'Failed|Shutdown')

# redis-cli ping reply
REDIS_PONG = re.compile(r'\bPONG\b')

# pg_dump backups written by backup-db: backup_20260101_120000.sql
BACKUP_FILENAME = re.compile(r'^backup_\d{8}_\d{6}\.sql$')

# Volume archives written before a destructive reset
VOLUME_ARCHIVE = re.compile(r'^volume_[\w.-]+_\d{8}_\d{6}\.tar\.gz$')

# Private keys that sit beside certificates in the certs directory
CERT_KEY_FILE = re.compile(r'-key\.pem$|\.key$')

# The "Swarm:" block of `docker info`, header plus up to five indented lines
SWARM_INFO = re.compile(r'^\s*Swarm:.*(?:\n.*){0,5}', re.MULTILINE)

# Memory and duration settings as reported by pg_settings / ALTER SYSTEM
PG_MEMORY = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(B|kB|MB|GB|TB|8kB)\s*$', re.IGNORECASE)
PG_DURATION = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(us|ms|s|min|h|d)\s*$', re.IGNORECASE)
