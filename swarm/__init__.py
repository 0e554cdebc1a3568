"""Docker Swarm operations for the n8n stack."""

from swarm.docker import CommandResult, DockerClient, DockerError, DockerNotFoundError

__all__ = [
    "CommandResult",
    "DockerClient",
    "DockerError",
    "DockerNotFoundError",
]
