"""Execution status transitions driven by the compute platform.

Shared by the event processor (push: task state change events) and the
orchestrator's reconcile sweep (pull: describe the task).  Both funnel into
``apply_platform_status`` so there is one conditional-write path.

Rules:

- Platform statuses map onto ``ExecutionStatus``; unknown ones are ignored.
- Non-terminal updates only move forward along ``ExecutionStatus.rank``, so
  a late ``RUNNING`` never overwrites ``TERMINATING``.
- The terminal update is a compare-and-set on "not STOPPED yet", which
  makes replays of the same STOPPED event no-ops.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from execrelay.backend.models.enums import NON_TERMINAL_STATUSES, ExecutionStatus
from execrelay.backend.models.events import ContainerState
from execrelay.backend.models.execution import EXIT_CODE_UNKNOWN, EXIT_CODE_USER_INITIATED, Execution
from execrelay.backend.store.base import ExecutionRepository

PLATFORM_STATUS_MAP: dict[str, ExecutionStatus] = {
    "PROVISIONING": ExecutionStatus.PROVISIONING,
    "PENDING": ExecutionStatus.PENDING,
    "ACTIVATING": ExecutionStatus.PENDING,
    "RUNNING": ExecutionStatus.RUNNING,
    "DEACTIVATING": ExecutionStatus.DEACTIVATING,
    "STOPPING": ExecutionStatus.DEACTIVATING,
    "DEPROVISIONING": ExecutionStatus.DEPROVISIONING,
    "STOPPED": ExecutionStatus.STOPPED,
}

STOP_CODE_USER_INITIATED = "UserInitiated"
STOP_CODE_FAILED_TO_START = "TaskFailedToStart"


def map_platform_status(last_status: str) -> ExecutionStatus | None:
    return PLATFORM_STATUS_MAP.get(last_status.upper())


def derive_exit_code(
    *,
    exit_code: int | None = None,
    containers: Sequence[ContainerState] = (),
    runner_container: str = "runner",
    stop_code: str | None = None,
) -> int:
    """Exit code to record for a stopped task.

    A user-initiated stop is 130 whatever the container reported; a task that
    never started is ``EXIT_CODE_UNKNOWN``.  Otherwise the runner container's
    exit code wins, falling back to ``EXIT_CODE_UNKNOWN``; never a guessed 0.
    """
    if stop_code == STOP_CODE_USER_INITIATED:
        return EXIT_CODE_USER_INITIATED
    if stop_code == STOP_CODE_FAILED_TO_START:
        return EXIT_CODE_UNKNOWN
    for container in containers:
        if container.name == runner_container and container.exit_code is not None:
            return container.exit_code
    if exit_code is not None:
        return exit_code
    return EXIT_CODE_UNKNOWN


async def apply_platform_status(
    repo: ExecutionRepository,
    execution: Execution,
    new_status: ExecutionStatus,
    *,
    exit_code: int | None = None,
    request_id: str | None = None,
) -> Execution | None:
    """Apply *new_status* to *execution* with a conditional write.

    Returns the updated record, or ``None`` when nothing changed (stale or
    duplicate event, or the execution already stopped).
    """
    current = execution.status
    if current.is_terminal:
        logger.debug("Execution {} already STOPPED; ignoring {}", execution.execution_id, new_status)
        return None

    updated = execution.model_copy(deep=True)
    updated.modified_by_request_id = request_id or execution.modified_by_request_id

    if new_status.is_terminal:
        updated.mark_completed(exit_code if exit_code is not None else EXIT_CODE_UNKNOWN)
        expected = NON_TERMINAL_STATUSES
    else:
        if new_status.rank <= current.rank:
            logger.debug(
                "Execution {}: ignoring out-of-order status {} (current={})",
                execution.execution_id,
                new_status,
                current,
            )
            return None
        updated.status = new_status
        # Only lower-ranked statuses may be overwritten.
        expected = frozenset(s for s in ExecutionStatus if s.rank < new_status.rank)

    applied = await repo.update_execution(updated, expected_statuses=expected)
    if not applied:
        logger.info(
            "Execution {}: concurrent update won, skipping {} (read status={})",
            execution.execution_id,
            new_status,
            current,
        )
        return None

    logger.info("Execution {}: {} -> {}", execution.execution_id, current, new_status)
    return updated
