"""Orchestrator -- request-driven execution lifecycle.

The orchestrator is a process-level singleton initialised in the app
lifespan.  It coordinates the external collaborators:

- **Secrets resolver**: named secret references -> env vars at start time
- **Task runner**: start / kill / status / logs of the underlying task
- **Execution repository**: the durable execution record
- **WebSocket manager** (optional): streaming URLs for live logs

Methods raise the ``execrelay.backend.errors`` taxonomy; translating those
into HTTP responses is the router's job.

Known gap: if a task starts but its record cannot be written, the task keeps
running without a record.  The failure is logged with the task handle and
``reconcile`` is the sweep that catches records drifting from the platform.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection

import anyio
from loguru import logger

from execrelay.backend.context import EMPTY_CONTEXT, RequestContext
from execrelay.backend.errors import AppError, BadRequestError, InternalError, NotFoundError
from execrelay.backend.managers.lifecycle import apply_platform_status, derive_exit_code, map_platform_status
from execrelay.backend.models.api import (
    ExecutionStatusResponse,
    KillExecutionResponse,
    LogsResponse,
    RunCommandRequest,
    RunCommandResponse,
)
from execrelay.backend.models.enums import NON_TERMINAL_STATUSES, ExecutionStatus
from execrelay.backend.models.events import TaskStateChange
from execrelay.backend.models.execution import Execution
from execrelay.backend.providers.base import SecretsResolver, TaskRunner
from execrelay.backend.store.base import ExecutionRepository
from execrelay.backend.websocket.manager import WebSocketManager

# Statuses a kill may overwrite with TERMINATING.
_KILLABLE_STATUSES = frozenset(s for s in ExecutionStatus if s.rank < ExecutionStatus.TERMINATING.rank)


class Orchestrator:
    """Start, inspect, stop and list executions."""

    def __init__(
        self,
        *,
        repo: ExecutionRepository,
        runner: TaskRunner,
        secrets: SecretsResolver | None = None,
        websocket: WebSocketManager | None = None,
        runner_container: str = "runner",
    ) -> None:
        self._repo = repo
        self._runner = runner
        self._secrets = secrets
        self._websocket = websocket
        self._runner_container = runner_container

    # -- Run -------------------------------------------------------------------

    async def _resolve_env(self, request: RunCommandRequest) -> dict[str, str]:
        """Merge resolved secrets under the request's explicit env."""
        if not request.secrets:
            return dict(request.env)
        if self._secrets is None:
            msg = "secrets were requested but no secrets resolver is configured"
            raise InternalError(msg)

        try:
            resolved = await self._secrets.resolve(request.secrets)
        except AppError:
            raise
        except Exception as e:
            msg = "failed to resolve secrets"
            raise InternalError(msg, cause=e) from e

        env = dict(resolved)
        env.update(request.env)
        return env

    async def run_command(
        self,
        user_email: str,
        request: RunCommandRequest,
        ctx: RequestContext = EMPTY_CONTEXT,
    ) -> RunCommandResponse:
        """Start a task for *request* and persist its execution record.

        Secrets are resolved first; any failure aborts before a task exists.
        Once the task has started, the record write is shielded from
        cancellation so it either commits fully or not at all.
        """
        log = ctx.logger
        if not request.command.strip():
            msg = "command is required"
            raise BadRequestError(msg)

        env = await self._resolve_env(request)
        task_request = request.model_copy(update={"env": env, "secrets": []})

        task_handle, created_at = await self._runner.start_task(user_email, task_request)

        execution = Execution(
            execution_id=uuid.uuid4().hex,
            user_email=user_email,
            command=request.command,
            image=request.image,
            compute_platform=self._runner.platform,
            task_handle=task_handle,
            request_id=ctx.request_id,
            status=ExecutionStatus.STARTING,
            started_at=created_at,
        )

        with anyio.CancelScope(shield=True):
            try:
                await self._repo.create_execution(execution)
            except Exception as e:
                log.error(
                    "Orphaned task: started {} but failed to record execution {}: {!r}",
                    task_handle,
                    execution.execution_id,
                    e,
                )
                msg = "failed to create execution record"
                raise InternalError(msg, cause=e) from e

        log.info(
            "Execution started: {} (task={}, user={}, secrets={})",
            execution.execution_id,
            task_handle,
            user_email,
            len(request.secrets),
        )
        return RunCommandResponse(execution_id=execution.execution_id, status=execution.status)

    # -- Inspect ---------------------------------------------------------------

    async def _get_or_404(self, execution_id: str) -> Execution:
        if not execution_id:
            msg = "execution_id is required"
            raise BadRequestError(msg)
        execution = await self._repo.get_execution(execution_id)
        if execution is None:
            msg = f"execution '{execution_id}' not found"
            raise NotFoundError(msg)
        return execution

    async def get_execution_status(self, execution_id: str) -> ExecutionStatusResponse:
        """Current status; ``exit_code`` is only reported once ``completed_at`` is set."""
        execution = await self._get_or_404(execution_id)
        completed = execution.completed_at is not None
        return ExecutionStatusResponse(
            execution_id=execution.execution_id,
            status=execution.status,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            exit_code=execution.exit_code if completed else None,
        )

    async def get_logs_by_execution_id(
        self,
        execution_id: str,
        user_email: str | None = None,
        client_ip: str | None = None,
    ) -> LogsResponse:
        """Aggregated logs, plus a streaming URL while the execution can still produce output."""
        execution = await self._get_or_404(execution_id)
        logs = await self._runner.fetch_logs_by_execution_id(execution_id, task_handle=execution.task_handle)

        websocket_url = None
        if self._websocket is not None and not execution.status.is_terminal:
            websocket_url = await self._websocket.generate_websocket_url(execution_id, user_email, client_ip)

        return LogsResponse(
            execution_id=execution_id,
            status=execution.status,
            logs=logs,
            websocket_url=websocket_url,
        )

    async def list_executions(self, statuses: Collection[ExecutionStatus] | None = None) -> list[Execution]:
        """All records (unordered), optionally filtered by status."""
        return await self._repo.list_executions(statuses)

    # -- Kill ------------------------------------------------------------------

    async def kill_execution(self, execution_id: str, ctx: RequestContext = EMPTY_CONTEXT) -> KillExecutionResponse:
        """Stop the task and mark the execution TERMINATING.

        The final STOPPED transition arrives later as a task state change.
        """
        execution = await self._get_or_404(execution_id)
        if execution.status.is_terminal:
            msg = "execution is already terminated"
            raise BadRequestError(msg)
        if execution.status not in _KILLABLE_STATUSES:
            msg = f"execution is already terminating (status={execution.status})"
            raise BadRequestError(msg)

        await self._runner.kill_task(execution.task_handle)

        updated = execution.model_copy(deep=True)
        updated.status = ExecutionStatus.TERMINATING
        updated.completed_at = None
        updated.modified_by_request_id = ctx.request_id

        applied = await self._repo.update_execution(updated, expected_statuses=_KILLABLE_STATUSES)
        if not applied:
            msg = "execution is already terminated or terminating"
            raise BadRequestError(msg)

        ctx.logger.info("Execution kill requested: {} (task={})", execution_id, execution.task_handle)
        return KillExecutionResponse(execution_id=execution_id, message="Execution termination initiated")

    # -- Reconcile -------------------------------------------------------------

    async def reconcile(self) -> int:
        """Pull the platform status of every non-terminal execution and apply it.

        Stopped tasks get the same exit code derivation and completion
        broadcast as a pushed task state change.  A task the platform no
        longer knows is treated as stopped with an unknown exit code.
        Returns the number of records changed.
        """
        changed = 0
        for execution in await self._repo.list_executions(NON_TERMINAL_STATUSES):
            try:
                task = await self._runner.get_task_status(execution.task_handle)
            except AppError as e:
                logger.warning("Reconcile: cannot describe task {}: {}", execution.task_handle, e)
                continue

            if task is None:
                task = TaskStateChange(task_handle=execution.task_handle, last_status="STOPPED")

            new_status = map_platform_status(task.last_status)
            if new_status is None:
                logger.warning(
                    "Reconcile: unknown platform status {!r} for {}", task.last_status, execution.task_handle
                )
                continue

            exit_code = None
            if new_status.is_terminal:
                exit_code = derive_exit_code(
                    exit_code=task.exit_code,
                    containers=task.containers,
                    runner_container=self._runner_container,
                    stop_code=task.stop_code,
                )

            updated = await apply_platform_status(self._repo, execution, new_status, exit_code=exit_code)
            if updated is None:
                continue
            changed += 1
            if updated.status.is_terminal and self._websocket is not None:
                await self._websocket.notify_completion(updated)

        logger.info("Reconcile finished: {} execution(s) updated", changed)
        return changed
