from __future__ import annotations

import pytest
from pydantic import ValidationError

from relayflow.errors import InvalidDispatchMessageError
from relayflow.schemas.domain import (
    ActionDispatchMessage,
    CapabilityDescriptor,
    CapabilityKind,
    InvocationStatus,
    TriggerDefinition,
    TriggerEmitPayload,
    TriggerEvent,
)


def test_dispatch_message_parses_wire_form() -> None:
    msg = ActionDispatchMessage.parse({"actionDefinitionId": "A1", "triggerEventId": "E1", "context": {"k": 1}})

    assert msg.action_definition_id == "A1"
    assert msg.trigger_event_id == "E1"
    assert msg.context == {"k": 1}
    assert msg.attempt == 1
    assert msg.origin == "trigger"


def test_dispatch_message_accepts_field_names() -> None:
    msg = ActionDispatchMessage.parse({"action_definition_id": "A1", "manual_invoker_id": "u1"})
    assert msg.origin == "manual"


def test_dispatch_message_to_wire_uses_camel_case() -> None:
    msg = ActionDispatchMessage(action_definition_id="A1", trigger_event_id="E1", attempt=2)
    assert msg.to_wire() == {"actionDefinitionId": "A1", "triggerEventId": "E1", "attempt": 2}


@pytest.mark.parametrize(
    "raw",
    [
        {"actionDefinitionId": "A1", "triggerEventId": "E1", "manualInvokerId": "u1"},
        {"actionDefinitionId": "A1"},
        {"actionDefinitionId": "A1", "triggerEventId": ""},
        {"actionDefinitionId": "", "triggerEventId": "E1"},
        {"actionDefinitionId": "A1", "triggerEventId": "E1", "unexpected": True},
        ["A1", "E1"],
    ],
)
def test_dispatch_message_rejects_invalid_input(raw) -> None:
    with pytest.raises(InvalidDispatchMessageError):
        ActionDispatchMessage.parse(raw)


def test_dispatch_message_constructor_enforces_single_origin() -> None:
    with pytest.raises(ValidationError):
        ActionDispatchMessage(action_definition_id="A1", trigger_event_id="E1", manual_invoker_id="u1")


def test_parse_revalidates_unvalidated_instances() -> None:
    bogus = ActionDispatchMessage.model_construct(action_definition_id="A1", trigger_event_id=None, manual_invoker_id=None)
    with pytest.raises(InvalidDispatchMessageError):
        ActionDispatchMessage.parse(bogus)


def test_invocation_status_terminal_flags() -> None:
    assert InvocationStatus.PENDING.is_terminal is False
    assert InvocationStatus.SUCCESS.is_terminal is True
    assert InvocationStatus.FAILED.is_terminal is True


def test_capability_descriptor_accepts_aliases() -> None:
    descriptor = CapabilityDescriptor.model_validate(
        {"kind": "TRIGGER", "key": "cron", "displayName": "Cron", "configSchema": {"type": "object"}}
    )
    assert descriptor.kind is CapabilityKind.TRIGGER
    assert descriptor.display_name == "Cron"
    assert descriptor.config_schema == {"type": "object"}


def test_capability_descriptor_requires_key_and_name() -> None:
    with pytest.raises(ValidationError):
        CapabilityDescriptor(kind=CapabilityKind.TRIGGER, key="", display_name="Cron")
    with pytest.raises(ValidationError):
        CapabilityDescriptor.model_validate({"kind": "SOMETHING", "key": "x", "displayName": "X"})


def test_trigger_event_is_immutable() -> None:
    event = TriggerEvent(trigger_definition_id="def_1", context={"a": 1})
    assert event.id
    assert event.created_at.tzinfo is not None
    with pytest.raises(ValidationError):
        event.context = {"b": 2}  # type: ignore[misc]


def test_definitions_generate_ids_and_default_enabled() -> None:
    a = TriggerDefinition(capability_id="cron")
    b = TriggerDefinition(capability_id="cron")
    assert a.id != b.id
    assert a.is_enabled is True


def test_emit_payload_defaults() -> None:
    payload = TriggerEmitPayload()
    assert payload.context is None
    assert payload.metadata is None
    assert payload.scheduled_for is None
