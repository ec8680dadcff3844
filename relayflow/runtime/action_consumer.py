from __future__ import annotations

"""Action consumer.

``ActionConsumer`` is the single long-lived consumer of the action queue. For
each delivered message it:

1. validates the message (exactly one of trigger event / manual invoker),
2. creates a PENDING ``ActionInvocation``,
3. awaits the injected ``execute_action``,
4. moves the invocation to SUCCESS (with the result converted to JSON
   values) or FAILED (with the error message), stamping ``completed_at``.
   A SUCCESS that cannot be stored is recorded as FAILED instead.

Errors raised by the action are recorded and never leave the handler, so one
failing action cannot end the consume loop. Repository errors are
infrastructure failures and propagate to the queue driver.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import TypeAdapter

from ..errors import InvalidDispatchMessageError, InvalidStatusTransitionError
from ..queue.base import Queue, QueueMessage
from ..repos.interfaces import ActionInvocationRepository
from ..schemas.domain import ActionDispatchMessage, ActionInvocation, InvocationStatus

logger = logging.getLogger(__name__)

_RESULT_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)

ExecuteActionFn = Callable[[ActionDispatchMessage, ActionInvocation], Awaitable[Any]]
"""
ExecuteActionFn:
    ``execute_action(message, invocation) -> result``. Performs the side effect
    of the action referenced by ``message``; ``invocation`` is the PENDING row
    created for this attempt. Raising marks the invocation FAILED.
"""


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class ActionConsumer:
    """Drain a queue into tracked action invocations."""

    def __init__(
        self,
        *,
        queue: Queue,
        invocations: ActionInvocationRepository,
        execute_action: ExecuteActionFn,
    ) -> None:
        self._queue = queue
        self._invocations = invocations
        self._execute_action = execute_action
        self._started = False
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def start(self) -> None:
        """Register the handler with the queue. Allowed once per consumer."""
        if self._started:
            raise RuntimeError("ActionConsumer.start() may only be called once")
        self._started = True
        await self._queue.consume_actions(self.handle)
        logger.info("Action consumer started")

    async def wait_idle(self) -> None:
        """Wait until no message is being handled."""
        await self._idle.wait()

    async def handle(self, raw: QueueMessage) -> Optional[ActionInvocation]:
        """Process one queue message.

        Returns:
            The invocation in its terminal state, or None when the message was
            rejected before an invocation was created.

        Raises:
            RelayflowError: Repository failures while creating or updating the
                invocation.
        """
        self._in_flight += 1
        self._idle.clear()
        try:
            return await self._handle(raw)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _handle(self, raw: QueueMessage) -> Optional[ActionInvocation]:
        try:
            message = ActionDispatchMessage.parse(raw)
        except InvalidDispatchMessageError as e:
            logger.error("Rejected invalid action dispatch message", extra={"error": str(e)})
            return None

        invocation = await self._invocations.create(
            action_definition_id=message.action_definition_id,
            trigger_event_id=message.trigger_event_id,
            manual_invoker_id=message.manual_invoker_id,
            attempt=message.attempt,
        )
        log_extra = {
            "invocation_id": invocation.id,
            "action_definition_id": message.action_definition_id,
            "origin": message.origin,
            "attempt": message.attempt,
        }
        logger.debug("Action invocation created", extra=log_extra)

        try:
            result = _RESULT_ADAPTER.dump_python(await self._execute_action(message, invocation), mode="json")
        except Exception as e:
            logger.warning(
                "Action invocation failed",
                exc_info=True,
                extra={**log_extra, "error": _error_message(e)},
            )
            return await self._fail(invocation.id, e)

        try:
            done = await self._invocations.update(
                invocation.id,
                status=InvocationStatus.SUCCESS,
                result=result,
                completed_at=datetime.now(timezone.utc),
            )
        except InvalidStatusTransitionError:
            raise
        except Exception as e:
            logger.error(
                "Recording action success failed; marking the invocation FAILED",
                exc_info=True,
                extra={**log_extra, "error": _error_message(e)},
            )
            return await self._fail(invocation.id, e)
        logger.info("Action invocation succeeded", extra=log_extra)
        return done

    async def _fail(self, invocation_id: str, error: BaseException) -> ActionInvocation:
        return await self._invocations.update(
            invocation_id,
            status=InvocationStatus.FAILED,
            error=_error_message(error),
            completed_at=datetime.now(timezone.utc),
        )
