"""Self-signed wildcard certificates for the Traefik file provider.

Shells out to ``openssl`` the same way the stack tools shell out to docker,
and to macOS ``security`` for adding the certificate to the System keychain.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)

SYSTEM_KEYCHAIN = "/Library/Keychains/System.keychain"


class CertificateError(RuntimeError):
    """openssl or security exited non-zero, or is not installed."""


@dataclass
class CertificateRequest:
    """Subject and validity of a wildcard certificate for *domain*."""

    domain: str = "agentshq.net"
    country: str = "BD"
    state: str = "Dhaka"
    locality: str = "Narsingdi"
    organization: str = "AgentsHQ"
    days: int = 365
    bits: int = 2048
    subdomains: tuple[str, ...] = ("n8n", "grafana")

    @property
    def common_name(self) -> str:
        return f"*.{self.domain}"

    @property
    def alt_names(self) -> list[str]:
        return [self.common_name, self.domain] + [f"{s}.{self.domain}" for s in self.subdomains]

    @property
    def file_stem(self) -> str:
        return "wildcard_" + self.domain.replace(".", "_")


def render_openssl_config(req: CertificateRequest) -> str:
    """openssl ``req`` config with the SAN extension Traefik clients require."""
    lines = [
        "[req]",
        f"default_bits = {req.bits}",
        "prompt = no",
        "default_md = sha256",
        "distinguished_name = dn",
        "req_extensions = v3_req",
        "",
        "[dn]",
        f"C = {req.country}",
        f"ST = {req.state}",
        f"L = {req.locality}",
        f"O = {req.organization}",
        f"CN = {req.common_name}",
        "",
        "[v3_req]",
        "subjectAltName = @alt_names",
        "",
        "[alt_names]",
    ]
    lines += [f"DNS.{i} = {name}" for i, name in enumerate(req.alt_names, start=1)]
    return "\n".join(lines) + "\n"


def _run(cmd: Sequence[str]) -> str:
    logger.debug("Running: %s", " ".join(cmd))
    try:
        proc = subprocess.run(list(cmd), capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise CertificateError(f"{cmd[0]} is not installed") from exc
    if proc.returncode != 0:
        raise CertificateError(f"`{' '.join(cmd)}` failed: {proc.stderr.strip()}")
    return proc.stdout


def generate_certificate(req: CertificateRequest, certs_dir: Path,
                         openssl: str = "openssl") -> tuple[Path, Path]:
    """Create ``<stem>.key`` and ``<stem>.crt`` in *certs_dir*.

    The key is chmod 600 and the certificate 644.

    Returns:
        (key_path, cert_path)
    """
    certs_dir = Path(certs_dir)
    certs_dir.mkdir(parents=True, exist_ok=True)
    key_path = certs_dir / f"{req.file_stem}.key"
    cert_path = certs_dir / f"{req.file_stem}.crt"

    with tempfile.TemporaryDirectory() as tmp:
        conf = Path(tmp) / "cert.conf"
        conf.write_text(render_openssl_config(req))

        _run([openssl, "genrsa", "-out", str(key_path), str(req.bits)])
        _run([
            openssl, "req", "-new", "-x509", "-days", str(req.days),
            "-key", str(key_path), "-out", str(cert_path),
            "-config", str(conf), "-extensions", "v3_req",
        ])

    os.chmod(cert_path, 0o644)
    os.chmod(key_path, 0o600)
    logger.info("Generated certificate %s for %s", cert_path, ", ".join(req.alt_names))
    return key_path, cert_path


def certificate_text(cert_path: Path, openssl: str = "openssl") -> str:
    return _run([openssl, "x509", "-in", str(cert_path), "-text", "-noout"])


def certificate_summary(cert_path: Path, openssl: str = "openssl") -> str:
    """Subject and validity dates (``-subject -dates``)."""
    return _run([openssl, "x509", "-in", str(cert_path), "-noout", "-subject", "-dates"])


def parse_subject(text: str) -> str | None:
    """Subject line from ``openssl x509 -text`` output."""
    match = re.search(r"^\s*Subject:\s*(.+)$", text, re.MULTILINE)
    return match.group(1).strip() if match else None


def parse_alt_names(text: str) -> list[str]:
    """DNS names from the Subject Alternative Name extension."""
    match = re.search(r"Subject Alternative Name:.*?\n\s*(.+)", text)
    if not match:
        return []
    return [part.strip()[4:] for part in match.group(1).split(",")
            if part.strip().startswith("DNS:")]


def trust_on_macos(cert_path: Path, common_name: str, keychain: str = SYSTEM_KEYCHAIN,
                   use_sudo: bool = True) -> str:
    """Add *cert_path* to the macOS System keychain as a trusted root.

    Returns:
        The ``security find-certificate`` output confirming the entry.
    """
    add = ["security", "add-trusted-cert", "-d", "-r", "trustRoot", "-k", keychain, str(cert_path)]
    if use_sudo:
        add.insert(0, "sudo")
    _run(add)
    return _run(["security", "find-certificate", "-c", common_name, keychain])
