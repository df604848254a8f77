"""SSM Parameter Store secrets resolver.

A secret reference ``db-password`` resolves the SecureString parameter
``{prefix}/db-password`` and is injected as env var ``DB_PASSWORD``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from functools import partial
from typing import Any

from anyio import to_thread
from botocore.exceptions import BotoCoreError, ClientError

from execrelay.backend.errors import BadRequestError, InternalError
from execrelay.backend.providers.aws import create_client, error_code

# GetParameters accepts at most 10 names per call.
_BATCH_SIZE = 10

_ENV_KEY_INVALID = re.compile(r"[^A-Z0-9_]")


def env_key_for(reference: str) -> str:
    """``db-password`` -> ``DB_PASSWORD``; ``team/api.key`` -> ``API_KEY``."""
    name = reference.rsplit("/", 1)[-1]
    return _ENV_KEY_INVALID.sub("_", name.upper())


class SsmSecretsResolver:
    def __init__(self, prefix: str, region: str | None = None, client: Any = None) -> None:
        self._prefix = prefix.rstrip("/")
        self._client = client or create_client("ssm", region=region)

    def _parameter_name(self, reference: str) -> str:
        return f"{self._prefix}/{reference.lstrip('/')}"

    async def resolve(self, references: Sequence[str]) -> dict[str, str]:
        names: list[str] = []
        for ref in references:
            if not ref or not ref.strip():
                msg = "secret name cannot be empty"
                raise BadRequestError(msg)
            if ref not in names:
                names.append(ref)
        if not names:
            return {}
        return await to_thread.run_sync(partial(self._resolve_sync, names))

    def _resolve_sync(self, references: list[str]) -> dict[str, str]:
        by_parameter = {self._parameter_name(ref): ref for ref in references}
        resolved: dict[str, str] = {}
        parameters = list(by_parameter)

        for start in range(0, len(parameters), _BATCH_SIZE):
            batch = parameters[start : start + _BATCH_SIZE]
            try:
                resp = self._client.get_parameters(Names=batch, WithDecryption=True)
            except ClientError as e:
                if error_code(e) == "ParameterNotFound":
                    msg = "secret not found"
                    raise BadRequestError(msg, cause=e) from e
                msg = "failed to resolve secrets"
                raise InternalError(msg, cause=e) from e
            except BotoCoreError as e:
                msg = "failed to resolve secrets"
                raise InternalError(msg, cause=e) from e

            invalid = resp.get("InvalidParameters") or []
            if invalid:
                missing = ", ".join(sorted(by_parameter.get(p, p) for p in invalid))
                msg = f"secret not found: {missing}"
                raise BadRequestError(msg)

            for param in resp.get("Parameters", []):
                reference = by_parameter[param["Name"]]
                resolved[env_key_for(reference)] = param["Value"]

        return resolved
