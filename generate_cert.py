#!/usr/bin/env python3
"""
Generate a self-signed wildcard certificate for Traefik.

Writes ``wildcard_<domain>.key`` / ``.crt`` into config/traefik/certs,
prints the subject and Subject Alternative Names, and optionally adds the
certificate to the macOS System keychain.

Usage:
    python generate_cert.py                          # *.agentshq.net
    python generate_cert.py --domain example.test --subdomain n8n --subdomain grafana
    python generate_cert.py --trust                  # also trust it (macOS, sudo)
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from swarm.certs import (
    CertificateError,
    CertificateRequest,
    certificate_text,
    generate_certificate,
    parse_alt_names,
    parse_subject,
    trust_on_macos,
)
from utils.config import StackSettings
from utils.formatting import Console

_logger = logging.getLogger("generate_cert")


def _build_parser() -> argparse.ArgumentParser:
    defaults = CertificateRequest()
    parser = argparse.ArgumentParser(description="Generate a self-signed wildcard certificate.")
    parser.add_argument("--domain", default=defaults.domain,
                        help=f"Base domain (default: {defaults.domain})")
    parser.add_argument("--subdomain", action="append", dest="subdomains",
                        help="Extra SAN subdomain; repeatable (default: n8n, grafana)")
    parser.add_argument("--days", type=int, default=defaults.days,
                        help=f"Validity in days (default: {defaults.days})")
    parser.add_argument("--certs-dir", type=Path, default=None,
                        help="Output directory (default: config/traefik/certs)")
    parser.add_argument("--trust", action="store_true",
                        help="Add the certificate to the macOS System keychain")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(message)s", level=logging.INFO)
    console = Console()

    req = CertificateRequest(domain=args.domain, days=args.days)
    if args.subdomains:
        req.subdomains = tuple(args.subdomains)
    certs_dir = args.certs_dir or StackSettings().certs_dir

    try:
        _, cert_path = generate_certificate(req, certs_dir)
        text = certificate_text(cert_path)
        console.line("=== Certificate Details ===")
        console.line(f"Subject: {parse_subject(text) or 'unknown'}")
        console.line()
        console.line("=== Subject Alternative Names ===")
        console.line(", ".join(parse_alt_names(text)))
        console.line()
        console.ok("Certificate generated successfully!")
        console.line("Now update your dynamic.yml and restart Traefik")

        if args.trust:
            console.line()
            console.info("Adding certificate to the System keychain (sudo)...")
            console.line(trust_on_macos(cert_path, req.domain).rstrip())
            console.ok("Certificate trusted")
    except CertificateError as exc:
        _logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
