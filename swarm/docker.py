"""Thin wrapper around the ``docker`` CLI.

Every docker invocation made by the stack tools goes through
:class:`DockerClient`, which makes dry runs and tests possible without a
daemon. Methods return parsed output where the callers need it and leave
human-facing output to the caller.
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

logger = logging.getLogger(__name__)


def loggable(cmd: Sequence[str]) -> str:
    """Join *cmd* for logging with any redis-cli password (``-a <pw>``) masked."""
    shown = list(cmd)
    if "redis-cli" in shown:
        for i in range(shown.index("redis-cli") + 1, len(shown) - 1):
            if shown[i] == "-a":
                shown[i + 1] = "****"
    return " ".join(shown)


class DockerError(RuntimeError):
    """A docker command exited non-zero (or could not run)."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.cmd = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"`{loggable(self.cmd)}` exited with {returncode}"
        if self.stderr:
            message += f": {self.stderr.splitlines()[-1]}"
        super().__init__(message)


class DockerNotFoundError(DockerError):
    """The docker binary is not on PATH."""

    def __init__(self, binary: str) -> None:
        super().__init__([binary], 127, f"{binary}: command not found")


@dataclass
class CommandResult:
    """Outcome of one docker invocation."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def lines(self) -> list[str]:
        return [ln for ln in self.stdout.splitlines() if ln.strip()]


class DockerClient:
    """Runs docker subcommands.

    Args:
        binary:  Name or path of the docker executable.
        dry_run: Log commands instead of running them; every call "succeeds"
                 with empty output.
        timeout: Default per-command timeout in seconds (None = no limit).
    """

    def __init__(self, binary: str = "docker", dry_run: bool = False,
                 timeout: float | None = None) -> None:
        self.binary = binary
        self.dry_run = dry_run
        self.timeout = timeout

    # ── core ──────────────────────────────────────────────────────────────

    def run(self, *args: str, check: bool = True, capture: bool = True,
            merge_stderr: bool = False, timeout: float | None = None) -> CommandResult:
        """Run ``docker <args>``.

        Args:
            check:        Raise :class:`DockerError` on a non-zero exit.
            capture:      Capture stdout/stderr; when False output goes
                          straight to the terminal (interactive or follow mode).
            merge_stderr: Fold stderr into stdout, like ``2>&1``.
        """
        cmd = [self.binary, *args]
        if self.dry_run:
            logger.info("[DRY RUN] Would execute: %s", loggable(cmd))
            return CommandResult(cmd, 0)

        logger.debug("Running: %s", loggable(cmd))
        kwargs: dict[str, Any] = {"text": True, "timeout": timeout or self.timeout}
        if capture:
            kwargs["stdout"] = subprocess.PIPE
            kwargs["stderr"] = subprocess.STDOUT if merge_stderr else subprocess.PIPE
        try:
            proc = subprocess.run(cmd, **kwargs)
        except FileNotFoundError as exc:
            raise DockerNotFoundError(self.binary) from exc
        except subprocess.TimeoutExpired as exc:
            raise DockerError(cmd, -1, f"timed out after {exc.timeout}s") from exc

        result = CommandResult(cmd, proc.returncode, proc.stdout or "", proc.stderr or "")
        if check and not result.ok:
            raise DockerError(cmd, result.returncode, result.stderr or result.stdout)
        return result

    def passthrough(self, *args: str) -> int:
        """Run with the terminal attached and return the exit code."""
        return self.run(*args, check=False, capture=False).returncode

    def _json(self, *args: str) -> Any:
        result = self.run(*args, check=False)
        if not result.ok or not result.stdout.strip():
            return None
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("Unparseable JSON from `%s`", loggable(result.args))
            return None

    # ── containers ────────────────────────────────────────────────────────

    def container_id(self, name_filter: str) -> str | None:
        """First running container whose name matches *name_filter*."""
        result = self.run("ps", "-q", "-f", f"name={name_filter}", check=False)
        ids = result.lines
        return ids[0].strip() if ids else None

    def exec(self, container: str, command: Sequence[str], interactive: bool = False,
             check: bool = False) -> CommandResult:
        if interactive:
            return self.run("exec", "-it", container, *command, check=check, capture=False)
        return self.run("exec", container, *command, check=check)

    def exec_to_file(self, container: str, command: Sequence[str], dest: Path) -> CommandResult:
        """Run *command* in *container* with stdout redirected into *dest*."""
        cmd = [self.binary, "exec", container, *command]
        if self.dry_run:
            logger.info("[DRY RUN] Would execute: %s > %s", loggable(cmd), dest)
            return CommandResult(cmd, 0)
        logger.debug("Running: %s > %s", loggable(cmd), dest)
        dest = Path(dest)
        try:
            with open(dest, "w") as out:
                proc = subprocess.run(cmd, stdout=out, stderr=subprocess.PIPE,
                                      text=True, timeout=self.timeout)
        except FileNotFoundError as exc:
            dest.unlink(missing_ok=True)
            raise DockerNotFoundError(self.binary) from exc
        except subprocess.TimeoutExpired as exc:
            dest.unlink(missing_ok=True)
            raise DockerError(cmd, -1, f"timed out after {exc.timeout}s") from exc
        return CommandResult(cmd, proc.returncode, "", proc.stderr or "")

    def run_container(self, image: str, command: Sequence[str] = (),
                      volumes: Sequence[str] = (), check: bool = False) -> CommandResult:
        """``docker run --rm`` a throwaway container."""
        args = ["run", "--rm"]
        for vol in volumes:
            args += ["-v", vol]
        return self.run(*args, image, *command, check=check, merge_stderr=True)

    # ── stacks & services ─────────────────────────────────────────────────

    def stack_deploy(self, stack_file: Path, stack: str) -> CommandResult:
        return self.run("stack", "deploy", "-c", str(stack_file), stack)

    def stack_rm(self, stack: str) -> CommandResult:
        return self.run("stack", "rm", stack)

    def service_ls(self, capture: bool = True) -> CommandResult:
        return self.run("service", "ls", check=False, capture=capture)

    def service_ps(self, service: str, no_trunc: bool = True) -> CommandResult:
        args = ["service", "ps", service]
        if no_trunc:
            args.append("--no-trunc")
        return self.run(*args, check=False)

    def service_logs(self, service: str, tail: int | None = None,
                     follow: bool = False) -> CommandResult:
        args = ["service", "logs"]
        if follow:
            args.append("-f")
        if tail is not None:
            args += ["--tail", str(tail)]
        args.append(service)
        return self.run(*args, check=False, capture=not follow, merge_stderr=True)

    def service_rm(self, service: str) -> CommandResult:
        return self.run("service", "rm", service)

    def service_env(self, service: str) -> list[str] | None:
        """Container env of *service* as ``KEY=value`` strings."""
        return self._json(
            "service", "inspect", service,
            "--format={{json .Spec.TaskTemplate.ContainerSpec.Env}}",
        )

    # ── nodes ─────────────────────────────────────────────────────────────

    def node_hostnames(self, role: str | None = None) -> list[str]:
        args = ["node", "ls"]
        if role:
            args += ["--filter", f"role={role}"]
        args += ["--format", "{{.Hostname}}"]
        return self.run(*args, check=False).lines

    def node_labels(self, node: str) -> dict[str, str]:
        labels = self._json("node", "inspect", node, "--format", "{{json .Spec.Labels}}")
        return dict(labels or {})

    # ── networks & volumes ────────────────────────────────────────────────

    def network_create(self, name: str, driver: str = "overlay",
                       attachable: bool = True) -> bool:
        args = ["network", "create", "--driver", driver]
        if attachable:
            args.append("--attachable")
        return self.run(*args, name, check=False).ok

    def network_rm(self, name: str) -> bool:
        return self.run("network", "rm", name, check=False).ok

    def network_inspect(self, name: str) -> list[dict] | None:
        return self._json("network", "inspect", name)

    def network_names(self) -> list[str]:
        return self.run("network", "ls", "--format", "{{.Name}}", check=False).lines

    def volume_rm(self, name: str) -> bool:
        return self.run("volume", "rm", name, check=False).ok

    def volume_prune(self) -> CommandResult:
        return self.run("volume", "prune", "-f")

    def system_prune(self) -> CommandResult:
        return self.run("system", "prune", "-a", "-f", "--volumes")

    def archive_volume(self, volume: str, dest_dir: Path, archive_name: str) -> CommandResult:
        """Tar a named volume into *dest_dir* via a throwaway alpine container."""
        dest_dir = Path(dest_dir).resolve()
        if not self.dry_run:
            dest_dir.mkdir(parents=True, exist_ok=True)
        return self.run_container(
            "alpine",
            ["tar", "czf", f"/backup/{archive_name}", "-C", "/data", "."],
            volumes=[f"{volume}:/data:ro", f"{dest_dir}:/backup"],
        )

    # ── engine ────────────────────────────────────────────────────────────

    def info(self) -> str:
        return self.run("info", check=False, merge_stderr=True).stdout
