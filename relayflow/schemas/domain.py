from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

from pydantic import ConfigDict, Field, ValidationError, model_validator

from ..errors import InvalidDispatchMessageError
from .base import BaseSchema, WireSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class CapabilityKind(str, Enum):
    TRIGGER = "TRIGGER"
    ACTION = "ACTION"


class InvocationStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not InvocationStatus.PENDING


class TriggerRuntimeState(str, Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    RELOADING = "RELOADING"
    STOPPING = "STOPPING"


class CapabilityDescriptor(BaseSchema):
    """Static description of a capability exposed by a plugin.

    ``kind`` is fixed once the descriptor is built; the model is frozen.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    kind: CapabilityKind
    key: str = Field(min_length=1)
    display_name: str = Field(min_length=1, alias="displayName")
    config_schema: Optional[Dict[str, Any]] = Field(default=None, alias="configSchema")


class TriggerDefinition(BaseSchema):
    id: str = Field(default_factory=_new_id)
    capability_id: str
    config: Any = None
    is_enabled: bool = True


class ActionDefinition(BaseSchema):
    id: str = Field(default_factory=_new_id)
    capability_id: str
    config: Any = None
    is_enabled: bool = True


class TriggerActionBinding(BaseSchema):
    trigger_definition_id: str
    action_definition_id: str
    sort_order: int = 0
    is_enabled: bool = True


class TriggerEvent(BaseSchema):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    id: str = Field(default_factory=_new_id)
    trigger_definition_id: str
    context: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=_utc_now)


class ActionInvocation(BaseSchema):
    id: str = Field(default_factory=_new_id)
    action_definition_id: str

    trigger_event_id: Optional[str] = None
    manual_invoker_id: Optional[str] = None
    attempt: int = 1

    status: InvocationStatus = InvocationStatus.PENDING
    result: Any = None
    error: Optional[str] = None

    created_at: datetime = Field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None


class TriggerEmitPayload(WireSchema):
    """What a trigger runtime hands to ``emit``."""

    context: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    scheduled_for: Optional[datetime] = None


class ActionDispatchMessage(WireSchema):
    """Unit of work carried by the queue.

    Exactly one of ``trigger_event_id`` / ``manual_invoker_id`` must be set.
    """

    action_definition_id: str = Field(min_length=1)
    trigger_event_id: Optional[str] = None
    manual_invoker_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    attempt: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _exactly_one_origin(self) -> "ActionDispatchMessage":
        has_event = bool(self.trigger_event_id)
        has_invoker = bool(self.manual_invoker_id)
        if has_event == has_invoker:
            raise ValueError("exactly one of triggerEventId or manualInvokerId must be set")
        return self

    @classmethod
    def parse(cls, raw: "ActionDispatchMessage | Mapping[str, Any]") -> "ActionDispatchMessage":
        """Validate a message coming off a queue driver.

        Raises:
            InvalidDispatchMessageError: If the payload is malformed or does not
                reference exactly one origin.
        """
        if isinstance(raw, cls):
            # model_construct() skips validation; check instances again.
            raw = raw.model_dump()
        if not isinstance(raw, Mapping):
            raise InvalidDispatchMessageError(f"dispatch message must be a mapping, got {type(raw).__name__}")
        try:
            return cls.model_validate(dict(raw))
        except ValidationError as e:
            raise InvalidDispatchMessageError(str(e)) from e

    @property
    def origin(self) -> str:
        return "trigger" if self.trigger_event_id else "manual"
