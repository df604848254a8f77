"""Tests for raw event classification."""

from __future__ import annotations

import json

import pytest
from raw_events import awslogs_event, ecs_event, websocket_event

from execrelay.backend.errors import UnhandledEventError
from execrelay.backend.events.classify import classify, parse_normalized
from execrelay.backend.models.events import IgnoredEvent, LogDelivery, TaskStateChange, WebSocketLifecycle


def test_ecs_task_state_change() -> None:
    event = classify(ecs_event(last_status="STOPPED", stop_code="EssentialContainerExited", runner_exit_code=1))

    assert isinstance(event, TaskStateChange)
    assert event.task_handle == "abc"
    assert event.last_status == "STOPPED"
    assert event.stop_code == "EssentialContainerExited"
    assert [(c.name, c.exit_code) for c in event.containers] == [("runner", 1), ("sidecar", 0)]
    assert event.stopped_at is not None


def test_ecs_event_without_task_arn() -> None:
    raw = {"source": "aws.ecs", "detail-type": "ECS Task State Change", "detail": {"lastStatus": "RUNNING"}}
    with pytest.raises(UnhandledEventError):
        classify(raw)


def test_other_eventbridge_detail_type_is_ignored() -> None:
    event = classify({"source": "aws.ecs", "detail-type": "ECS Deployment State Change", "detail": {}})
    assert event == IgnoredEvent(source="aws.ecs", detail_type="ECS Deployment State Change")


def test_awslogs_data_message() -> None:
    event = classify(awslogs_event(task_id="t-9", messages=["a", "b"]))

    assert isinstance(event, LogDelivery)
    assert event.task_handle == "t-9"
    assert [line.message for line in event.lines] == ["a", "b"]
    assert event.lines[0].timestamp == 1_767_268_800_000


def test_awslogs_control_message() -> None:
    assert isinstance(classify(awslogs_event(control=True)), IgnoredEvent)


def test_awslogs_garbage_payload() -> None:
    with pytest.raises(UnhandledEventError, match="awslogs"):
        classify({"awslogs": {"data": "bm90IGd6aXA="}})


def test_websocket_connect() -> None:
    event = classify(websocket_event("$connect", "c-1", execution_id="e-1", token="tok"))

    assert isinstance(event, WebSocketLifecycle)
    assert event.connection_id == "c-1"
    assert event.route_key == "$connect"
    assert event.execution_id == "e-1"
    assert event.token == "tok"
    assert event.client_ip == "203.0.113.7"


def test_websocket_without_query_parameters() -> None:
    event = classify(websocket_event("$disconnect"))
    assert isinstance(event, WebSocketLifecycle)
    assert event.execution_id is None
    assert event.token is None


def test_json_text_is_accepted() -> None:
    event = classify(json.dumps(ecs_event()).encode())
    assert isinstance(event, TaskStateChange)


def test_normalized_replay() -> None:
    event = classify({"kind": "task_state_change", "task_handle": "abc", "last_status": "RUNNING"})
    assert event == TaskStateChange(task_handle="abc", last_status="RUNNING")


def test_normalized_unknown_kind() -> None:
    with pytest.raises(UnhandledEventError):
        parse_normalized({"kind": "telepathy"})


@pytest.mark.parametrize("raw", [b"not json", ["a", "list"], {"unrelated": True}, {"requestContext": {}}])
def test_unclassifiable(raw) -> None:
    with pytest.raises(UnhandledEventError):
        classify(raw)
