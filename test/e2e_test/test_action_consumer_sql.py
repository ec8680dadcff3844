"""Action consumer against the SQL invocation repository (aiosqlite)."""

from datetime import datetime, timezone
from typing import Any

import pytest

from relayflow.repos.sql import SqlRepoBundle
from relayflow.runtime.action_consumer import ActionConsumer
from relayflow.schemas.domain import ActionDispatchMessage, ActionInvocation, InvocationStatus


class _DirectQueue:
    async def enqueue_action(self, message: Any) -> None:
        raise NotImplementedError

    async def consume_actions(self, handler: Any) -> None:
        return None

    async def stop(self) -> None:
        return None


def _consumer(sql_repos: SqlRepoBundle, result: Any) -> ActionConsumer:
    async def _execute(message: ActionDispatchMessage, invocation: ActionInvocation) -> Any:
        return result

    return ActionConsumer(queue=_DirectQueue(), invocations=sql_repos.invocations, execute_action=_execute)


@pytest.mark.asyncio
async def test_datetime_result_is_stored_as_json(sql_repos: SqlRepoBundle) -> None:
    consumer = _consumer(sql_repos, {"when": datetime(2030, 1, 1, tzinfo=timezone.utc), "count": 2})

    await consumer.handle({"actionDefinitionId": "A1", "triggerEventId": "E1"})

    [invocation] = await sql_repos.invocations.list_for_action("A1")
    assert invocation.status is InvocationStatus.SUCCESS
    assert invocation.result["count"] == 2
    assert invocation.result["when"].startswith("2030-01-01T00:00:00")


@pytest.mark.asyncio
async def test_unserializable_result_is_recorded_as_failed(sql_repos: SqlRepoBundle) -> None:
    consumer = _consumer(sql_repos, {"handle": object()})

    returned = await consumer.handle({"actionDefinitionId": "A1", "manualInvokerId": "u1"})

    [invocation] = await sql_repos.invocations.list_for_action("A1")
    assert invocation.status is InvocationStatus.FAILED
    assert invocation.error
    assert invocation.completed_at is not None
    assert returned is not None and returned.id == invocation.id
