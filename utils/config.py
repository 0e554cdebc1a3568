"""Configuration management utilities for the n8n stack tools.

Provides reusable pieces for:
- Loading the deployment ``.env`` file
- Stack naming (service, volume and network names derived from the stack)
- Known variable names, defaults and which of them are secrets
"""

from pathlib import Path
from typing import Dict, Optional, Any, List
import json
import os

from dotenv import dotenv_values

from utils.common import is_secret_key, set_marker


PLACEHOLDER_VALUE = "CHANGE_ME"


class EnvFileError(FileNotFoundError):
    """Raised when the ``.env`` file a command depends on is missing."""


class Config:
    """Base configuration class for organizing application settings."""

    def __init__(self):
        """Initialize configuration with default values."""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary.

        Returns:
            Dictionary of all config attributes
        """
        return {k: v for k, v in self.__dict__.items() if not k.startswith("_")}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Config instance with values from dictionary
        """
        config = cls()
        for key, value in data.items():
            setattr(config, key, value)
        return config

    def save_json(self, path: Path) -> None:
        """Save configuration to JSON file.

        Args:
            path: Path to save configuration file
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

    @classmethod
    def load_json(cls, path: Path) -> "Config":
        """Load configuration from JSON file.

        Raises:
            FileNotFoundError: If file doesn't exist
            json.JSONDecodeError: If file is not valid JSON
        """
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)


class StackSettings(Config):
    """Names and paths shared by every stack command.

    Environment variables:
        N8N_STACK_NAME: Swarm stack name (default: n8n)
        N8N_NETWORK_NAME: External overlay network (default: n8n-network)
        BACKUP_DIR: Where pg_dump backups and volume archives go (default: backups)
    """

    def __init__(self) -> None:
        super().__init__()
        self.stack_name = os.getenv("N8N_STACK_NAME", "n8n")
        self.network_name = os.getenv("N8N_NETWORK_NAME", "n8n-network")
        self.stack_file = Path("docker-stack.yml")
        self.production_stack_file = Path("docker-stack.production.yml")
        self.single_node_stack_file = Path("docker-stack.orbstack.yml")
        self.backup_dir = Path(os.getenv("BACKUP_DIR", "backups"))
        self.traefik_config_dir = Path("config/traefik")
        self.certs_dir = Path("config/traefik/certs")
        self.init_sql_path = Path("config/postgres/init-data.sql")
        self.logs_dir = Path("logs")

    def service(self, name: str) -> str:
        """Swarm-scoped service name, e.g. ``n8n_postgres``."""
        return f"{self.stack_name}_{name}"

    def volume(self, name: str) -> str:
        """Swarm-scoped volume name, e.g. ``n8n_postgres_data``."""
        return f"{self.stack_name}_{name}"

    @property
    def stack_network(self) -> str:
        """The network the stack itself creates (``n8n_n8n-network``)."""
        return f"{self.stack_name}_{self.network_name}"


class KnownVariables:
    """The environment variables the stack reads, with their defaults."""

    REQUIRED = (
        "POSTGRES_PASSWORD",
        "N8N_ENCRYPTION_KEY",
        "N8N_HOST",
        "N8N_BASIC_AUTH_PASSWORD",
    )

    DEFAULTS = {
        "REDIS_PORT": "6379",
        "REDIS_MAXMEMORY": "512mb",
        "REDIS_MAXMEMORY_POLICY": "allkeys-lru",
        "N8N_WORKER_CONCURRENCY": "10",
    }

    ALL = (
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "POSTGRES_DB",
        "REDIS_PASSWORD",
        "REDIS_PORT",
        "REDIS_MAXMEMORY",
        "REDIS_MAXMEMORY_POLICY",
        "N8N_ENCRYPTION_KEY",
        "N8N_HOST",
        "N8N_BASIC_AUTH_USER",
        "N8N_BASIC_AUTH_PASSWORD",
        "GRAFANA_ADMIN_USER",
        "GRAFANA_ADMIN_PASSWORD",
        "TIMEZONE",
        "N8N_WORKER_CONCURRENCY",
    )

    # Non-secret variables printed by `debug-env`
    DEBUG_VISIBLE = (
        "POSTGRES_USER",
        "POSTGRES_DB",
        "REDIS_PORT",
        "N8N_HOST",
        "N8N_BASIC_AUTH_USER",
        "TIMEZONE",
    )


class EnvConfig(Config):
    """Values from the deployment ``.env`` file.

    Keys present in the file win; keys absent from it fall back to the
    process environment, then to ``KnownVariables.DEFAULTS``.
    """

    def __init__(self, values: Optional[Dict[str, str]] = None,
                 path: Optional[Path] = None) -> None:
        super().__init__()
        self.path = path
        self._values: Dict[str, str] = dict(values or {})

    @classmethod
    def load(cls, path: Path = Path(".env"), required: bool = True,
             environ: Optional[Dict[str, str]] = None) -> "EnvConfig":
        """Read *path* with python-dotenv.

        Raises:
            EnvFileError: If *required* and the file does not exist.
        """
        path = Path(path)
        environ = os.environ if environ is None else environ
        if path.exists():
            file_values = {k: v for k, v in dotenv_values(path).items() if v is not None}
        elif required:
            raise EnvFileError(f".env file not found: {path}")
        else:
            file_values = {}

        merged: Dict[str, str] = {}
        for name in KnownVariables.ALL:
            if name in environ:
                merged[name] = environ[name]
        merged.update(file_values)
        return cls(merged, path=path)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self._values.get(name)
        if value is None or value == "":
            if default is not None:
                return default
            return KnownVariables.DEFAULTS.get(name, value)
        return value

    def __getitem__(self, name: str) -> str:
        return self.get(name) or ""

    def is_set(self, name: str) -> bool:
        """True when *name* has a real value (not empty, not the placeholder)."""
        value = self._values.get(name)
        return bool(value) and value != PLACEHOLDER_VALUE

    def missing_required(self, names=KnownVariables.REQUIRED) -> List[str]:
        """Required variables that are unset, in declaration order."""
        return [n for n in names if not self.is_set(n)]

    def display_value(self, name: str) -> str:
        """Value safe for printing: secrets collapse to [SET] / [NOT SET]."""
        if is_secret_key(name):
            return set_marker(self._values.get(name) if self.is_set(name) else None)
        return self.get(name) or ""

    def to_dict(self) -> Dict[str, Any]:
        return {name: self.display_value(name) for name in KnownVariables.ALL}

    @property
    def redis_port(self) -> str:
        return self["REDIS_PORT"]
