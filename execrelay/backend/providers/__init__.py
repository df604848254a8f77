"""External collaborator interfaces and their AWS adapters."""

from execrelay.backend.providers.base import ConnectionGoneError, ConnectionPusher, SecretsResolver, TaskRunner

__all__ = ["ConnectionGoneError", "ConnectionPusher", "SecretsResolver", "TaskRunner"]
