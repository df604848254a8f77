"""ECS Fargate task runner with CloudWatch Logs log retrieval.

Task handle = the ECS task id (last segment of the task ARN).  The runner
container logs through the awslogs driver with stream prefix ``task``, so
its stream is ``task/{container}/{task_id}``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from functools import partial
from typing import Any

from anyio import to_thread
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from execrelay.backend.errors import BadRequestError, InternalError, NotFoundError
from execrelay.backend.models.api import RunCommandRequest
from execrelay.backend.models.enums import ComputePlatform
from execrelay.backend.models.events import TaskStateChange
from execrelay.backend.providers.aws import create_client, error_code

# ECS lastStatus values that no longer accept a StopTask.
_ALREADY_STOPPING = frozenset({"STOPPED", "STOPPING", "DEACTIVATING", "DEPROVISIONING"})

_LOG_PAGE_LIMIT = 10_000


def log_stream_name(container: str, task_handle: str) -> str:
    return f"task/{container}/{task_handle}"


def task_id_from_arn(task_arn: str) -> str:
    return task_arn.rsplit("/", 1)[-1]


class EcsTaskRunner:
    """TaskRunner implementation for ECS on Fargate."""

    platform = ComputePlatform.ECS

    def __init__(
        self,
        *,
        cluster: str,
        task_definition: str | None,
        subnets: Sequence[str],
        security_groups: Sequence[str],
        log_group: str,
        container_name: str = "runner",
        assign_public_ip: bool = True,
        image_task_definitions: dict[str, str] | None = None,
        region: str | None = None,
        ecs_client: Any = None,
        logs_client: Any = None,
    ) -> None:
        self._cluster = cluster
        self._task_definition = task_definition
        self._subnets = list(subnets)
        self._security_groups = list(security_groups)
        self._log_group = log_group
        self._container = container_name
        self._assign_public_ip = assign_public_ip
        self._images = dict(image_task_definitions or {})
        self._ecs = ecs_client or create_client("ecs", region=region)
        self._logs = logs_client or create_client("logs", region=region)

    # -- Start -----------------------------------------------------------------

    def _resolve_task_definition(self, image: str | None) -> str:
        if image:
            try:
                return self._images[image]
            except KeyError:
                msg = f"image '{image}' is not registered"
                raise BadRequestError(msg) from None
        if not self._task_definition:
            msg = "no image specified and no default task definition configured"
            raise BadRequestError(msg)
        return self._task_definition

    def _run_task_input(self, user_email: str, request: RunCommandRequest, task_definition: str) -> dict[str, Any]:
        environment = [{"name": k, "value": v} for k, v in sorted(request.env.items())]
        return {
            "cluster": self._cluster,
            "taskDefinition": task_definition,
            "launchType": "FARGATE",
            "count": 1,
            "overrides": {
                "containerOverrides": [
                    {
                        "name": self._container,
                        "command": ["/bin/sh", "-c", request.command],
                        "environment": environment,
                    }
                ]
            },
            "networkConfiguration": {
                "awsvpcConfiguration": {
                    "subnets": self._subnets,
                    "securityGroups": self._security_groups,
                    "assignPublicIp": "ENABLED" if self._assign_public_ip else "DISABLED",
                }
            },
            "tags": [{"key": "UserEmail", "value": user_email}],
            "startedBy": "execrelay",
        }

    async def start_task(self, user_email: str, request: RunCommandRequest) -> tuple[str, datetime]:
        task_definition = self._resolve_task_definition(request.image)
        params = self._run_task_input(user_email, request, task_definition)
        logger.debug("ECS.RunTask (cluster={}, task_definition={})", self._cluster, task_definition)

        try:
            resp = await to_thread.run_sync(partial(self._ecs.run_task, **params))
        except (ClientError, BotoCoreError) as e:
            msg = "failed to start ECS task"
            raise InternalError(msg, cause=e) from e

        tasks = resp.get("tasks") or []
        if not tasks:
            failures = resp.get("failures") or []
            msg = f"no tasks were started (failures={failures})"
            raise InternalError(msg)

        task = tasks[0]
        handle = task_id_from_arn(task["taskArn"])
        created_at = task.get("createdAt") or datetime.now(UTC)
        logger.info("ECS task started (task={}, user={})", handle, user_email)
        return handle, created_at

    # -- Status / kill ---------------------------------------------------------

    async def _describe(self, task_handle: str) -> dict[str, Any] | None:
        try:
            resp = await to_thread.run_sync(
                partial(self._ecs.describe_tasks, cluster=self._cluster, tasks=[task_handle])
            )
        except (ClientError, BotoCoreError) as e:
            msg = "failed to describe task"
            raise InternalError(msg, cause=e) from e
        tasks = resp.get("tasks") or []
        return tasks[0] if tasks else None

    async def get_task_status(self, task_handle: str) -> TaskStateChange | None:
        task = await self._describe(task_handle)
        return TaskStateChange.from_ecs_task(task) if task else None

    async def kill_task(self, task_handle: str) -> None:
        task = await self._describe(task_handle)
        if task is None:
            msg = f"task '{task_handle}' not found"
            raise NotFoundError(msg)

        current = task.get("lastStatus", "")
        if current in _ALREADY_STOPPING:
            msg = f"task is already terminated or terminating (status={current})"
            raise BadRequestError(msg)

        logger.debug("ECS.StopTask (task={}, current_status={})", task_handle, current)
        try:
            await to_thread.run_sync(
                partial(
                    self._ecs.stop_task,
                    cluster=self._cluster,
                    task=task["taskArn"],
                    reason="Terminated by user via kill endpoint",
                )
            )
        except (ClientError, BotoCoreError) as e:
            msg = "failed to stop task"
            raise InternalError(msg, cause=e) from e

    # -- Logs ------------------------------------------------------------------

    async def fetch_logs_by_execution_id(self, execution_id: str, *, task_handle: str) -> str:
        stream = log_stream_name(self._container, task_handle)
        logger.debug("CloudWatchLogs.GetLogEvents (execution={}, stream={})", execution_id, stream)
        lines = await to_thread.run_sync(partial(self._read_stream, stream))
        return "\n".join(lines)

    def _read_stream(self, stream: str) -> list[str]:
        """Page through the whole stream in one worker thread."""
        lines: list[str] = []
        kwargs: dict[str, Any] = {
            "logGroupName": self._log_group,
            "logStreamName": stream,
            "startFromHead": True,
            "limit": _LOG_PAGE_LIMIT,
        }
        while True:
            try:
                resp = self._logs.get_log_events(**kwargs)
            except ClientError as e:
                # Stream appears once the container writes its first line.
                if error_code(e) == "ResourceNotFoundException":
                    return lines
                msg = "failed to fetch logs"
                raise InternalError(msg, cause=e) from e
            except BotoCoreError as e:
                msg = "failed to fetch logs"
                raise InternalError(msg, cause=e) from e

            lines.extend(event["message"] for event in resp.get("events", []))
            next_token = resp.get("nextForwardToken")
            if not next_token or next_token == kwargs.get("nextToken"):
                return lines
            kwargs["nextToken"] = next_token
