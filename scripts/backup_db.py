"""
PostgreSQL backup script for the n8n stack.

Runs ``pg_dump`` inside the running postgres container and streams the dump
to a timestamped file on the host, optionally pruning older backups.

Usage:
    python scripts/backup_db.py                      # backup with defaults
    python scripts/backup_db.py --dest /backups
    python scripts/backup_db.py --keep 7             # retain last 7 backups

Backup filename format: backup_YYYYMMDD_HHMMSS.sql
"""

import argparse
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from swarm.docker import DockerClient, DockerError  # noqa: E402
from swarm.postgres import BackupError, backup_database, prune_old_backups  # noqa: E402
from utils.config import EnvConfig, EnvFileError, StackSettings  # noqa: E402

_logger = logging.getLogger("backup_db")
logging.basicConfig(
    format="%(asctime)s %(levelname)s %(message)s",
    level=logging.INFO,
)

_DEFAULT_DEST = Path(os.environ.get("BACKUP_DIR", "backups"))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create a timestamped pg_dump of the n8n database.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--dest",
        type=Path,
        default=_DEFAULT_DEST,
        help="Directory where backup files are written.",
    )
    parser.add_argument(
        "--keep",
        type=int,
        default=0,
        metavar="N",
        help=(
            "Retain only the N most-recent backups; delete older ones. "
            "0 means keep all backups (no pruning)."
        ),
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="Deployment environment file with POSTGRES_USER / POSTGRES_DB.",
    )
    return parser


def main(argv: list[str] | None = None, client: DockerClient | None = None) -> int:
    """Entry point for the backup script.

    Returns:
        0 on success, 1 on error.
    """
    args = _build_parser().parse_args(argv)

    try:
        env = EnvConfig.load(args.env_file)
        backup_path = backup_database(client or DockerClient(), env, args.dest, StackSettings())
    except EnvFileError as exc:
        _logger.error("%s", exc)
        return 1
    except (BackupError, DockerError) as exc:
        _logger.error("Backup failed: %s", exc)
        return 1
    except OSError as exc:
        _logger.error("Backup failed: %s", exc)
        return 1

    if args.keep > 0:
        try:
            prune_old_backups(dest_dir=args.dest, keep=args.keep)
        except ValueError as exc:
            _logger.error("%s", exc)
            return 1

    _logger.info("Done. Backup saved to: %s", backup_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
