#!/usr/bin/env python3
"""
Traefik Diagnostic Report

Ten read-only checks for the reverse proxy: service tasks, logs, config
files, certificates, YAML syntax, network, host ports, Docker socket,
``--validateConfig`` in a throwaway container and the Swarm state.

Usage:
    python traefik_debug.py
    python traefik_debug.py --config-dir config/traefik --log-lines 200
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import yaml

from swarm.certs import CertificateError, certificate_summary
from swarm.docker import DockerClient, DockerError
from swarm.health import check_docker_socket, check_ports, swarm_info_section
from swarm.stack import TRAEFIK_IMAGE
from utils.common import format_bytes
from utils.config import StackSettings
from utils.formatting import Console
from utils.patterns import CERT_KEY_FILE

_logger = logging.getLogger("traefik_debug")

PREVIEW_LINES = 20
CERT_SUFFIXES = (".pem", ".crt")

NEXT_STEPS = [
    "Check the logs above for error messages",
    "Verify certificate paths are correct",
    "Ensure no port conflicts",
    "Validate YAML syntax is correct",
]


def yaml_check(path: Path) -> Tuple[bool, str]:
    """Parse *path* with PyYAML; returns (valid, message)."""
    try:
        with open(path) as f:
            yaml.safe_load(f)
    except FileNotFoundError:
        return False, f"{path} not found"
    except yaml.YAMLError as exc:
        return False, f"Invalid YAML: {exc}"
    return True, "Valid YAML"


def certificate_files(certs_dir: Path) -> List[Path]:
    """Certificates in *certs_dir*, skipping private keys."""
    return sorted(
        p for p in Path(certs_dir).iterdir()
        if p.suffix in CERT_SUFFIXES and not CERT_KEY_FILE.search(p.name)
    )


class TraefikDebugger:
    """Prints the diagnostic report section by section."""

    def __init__(self, client: DockerClient, settings: Optional[StackSettings] = None,
                 config_dir: Optional[Path] = None, log_lines: int = 100,
                 console: Optional[Console] = None):
        self.client = client
        self.settings = settings or StackSettings()
        self.config_dir = Path(config_dir) if config_dir else self.settings.traefik_config_dir
        self.log_lines = log_lines
        self.console = console or Console()

    @property
    def service(self) -> str:
        return self.settings.service("traefik")

    @property
    def static_config(self) -> Path:
        return self.config_dir / "traefik.yml"

    @property
    def dynamic_config(self) -> Path:
        return self.config_dir / "dynamic.yml"

    @property
    def certs_dir(self) -> Path:
        return self.config_dir / "certs"

    def service_status(self) -> None:
        self.console.section("1. Checking Traefik service status...")
        result = self.client.service_ps(self.service, no_trunc=True)
        self.console.line((result.stdout or result.stderr).rstrip())

    def service_logs(self) -> None:
        self.console.section(f"2. Checking Traefik logs (last {self.log_lines} lines)...")
        result = self.client.service_logs(self.service, tail=self.log_lines)
        self.console.line(result.stdout.rstrip())

    def config_files(self) -> None:
        self.console.section("3. Checking if config files exist...")
        self.console.line("traefik.yml:")
        path = self.static_config
        if path.is_file():
            self.console.ok(f"Found ({format_bytes(path.stat().st_size)})")
            self.console.line("Content preview:")
            with open(path) as f:
                for number, line in enumerate(f):
                    if number >= PREVIEW_LINES:
                        break
                    self.console.line(line.rstrip("\n"))
        else:
            self.console.fail("NOT FOUND")

        self.console.line()
        self.console.line("dynamic.yml:")
        path = self.dynamic_config
        if path.is_file():
            self.console.ok(f"Found ({format_bytes(path.stat().st_size)})")
        else:
            self.console.fail("NOT FOUND")

    def certificates(self) -> None:
        self.console.section("4. Checking certificates...")
        if not self.certs_dir.is_dir():
            self.console.fail("Certs directory NOT FOUND")
            return
        self.console.ok("Certs directory exists")
        for entry in sorted(self.certs_dir.iterdir()):
            self.console.detail(f"{entry.name}  {format_bytes(entry.stat().st_size)}")
        self.console.line()
        self.console.line("Certificate details:")
        for cert in certificate_files(self.certs_dir):
            self.console.line(f"Checking: {cert}")
            try:
                self.console.line(certificate_summary(cert).rstrip())
            except CertificateError:
                self.console.fail("Failed to read certificate")

    def yaml_syntax(self) -> None:
        self.console.section("5. Validating YAML syntax...")
        for path in (self.static_config, self.dynamic_config):
            self.console.line(f"Checking {path.name}...")
            valid, message = yaml_check(path)
            self.console.status(valid, message)

    def network(self) -> None:
        self.console.section("6. Checking network...")
        data = self.client.network_inspect(self.settings.network_name)
        if data is None:
            self.console.fail(f"Network {self.settings.network_name} not found")
            return
        self.console.line(json.dumps(data, indent=4))

    def ports(self) -> None:
        self.console.section("7. Checking if ports are available...")
        for result in check_ports():
            self.console.status(result.ok, f"Port {result.name.split()[-1]}: {result.detail}")

    def docker_socket(self) -> None:
        self.console.section("8. Checking Docker socket...")
        result = check_docker_socket()
        self.console.status(result.ok, result.detail)

    def validate_config(self) -> None:
        self.console.section("9. Testing Traefik config syntax...")
        self.console.line("Creating temporary container to validate config...")
        result = self.client.run_container(
            TRAEFIK_IMAGE,
            ["traefik", "--configFile=/traefik.yml", "--validateConfig"],
            volumes=[f"{self.static_config.resolve()}:/traefik.yml:ro"],
        )
        if result.stdout.strip():
            self.console.line(result.stdout.rstrip())
        if not result.ok:
            self.console.fail("Config validation failed")

    def swarm_status(self) -> None:
        self.console.section("10. Checking Swarm status...")
        section = swarm_info_section(self.client.info())
        self.console.line(section or "Swarm section not found in docker info")

    def run(self) -> None:
        self.console.banner("Traefik Diagnostic Report")
        for section in (self.service_status, self.service_logs, self.config_files,
                        self.certificates, self.yaml_syntax, self.network, self.ports,
                        self.docker_socket, self.validate_config, self.swarm_status):
            section()
        self.console.line()
        self.console.banner("Diagnostic Complete")
        self.console.line()
        self.console.line("Next steps:")
        for number, step in enumerate(NEXT_STEPS, start=1):
            self.console.line(f"{number}. {step}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Traefik diagnostic report.")
    parser.add_argument("--config-dir", type=Path, default=None,
                        help="Traefik config directory (default: config/traefik)")
    parser.add_argument("--log-lines", type=int, default=100,
                        help="Service log lines to show (default: 100)")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(message)s", level=logging.INFO)
    debugger = TraefikDebugger(DockerClient(), config_dir=args.config_dir,
                               log_lines=args.log_lines)
    try:
        debugger.run()
    except DockerError as exc:
        _logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
