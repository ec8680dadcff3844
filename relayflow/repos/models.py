from __future__ import annotations

"""SQLAlchemy ORM models for relayflow persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``relayflow.repos.sql``.

Design
------

- Definitions (trigger and action) carry their config as JSON, possibly an
  encryption envelope.
- Trigger events are an append-only timeline of firings.
- Action invocations record one execution attempt each and are updated once
  to a terminal status.

JSON columns use JSONB on Postgres and plain JSON elsewhere (SQLite in tests).
Table names are prefixed with ``rf_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TriggerDefinitionRow(Base):
    """Row model for ``rf_trigger_definitions``."""

    __tablename__ = "rf_trigger_definitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    capability_id: Mapped[str] = mapped_column(String(256), index=True)
    config: Mapped[Optional[Any]] = mapped_column(JsonColumn, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)


class ActionDefinitionRow(Base):
    """Row model for ``rf_action_definitions``."""

    __tablename__ = "rf_action_definitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    capability_id: Mapped[str] = mapped_column(String(256), index=True)
    config: Mapped[Optional[Any]] = mapped_column(JsonColumn, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)


class TriggerActionBindingRow(Base):
    """Row model for ``rf_trigger_action_bindings``.

    Ordered link between a trigger definition and the actions it dispatches.
    """

    __tablename__ = "rf_trigger_action_bindings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trigger_definition_id: Mapped[str] = mapped_column(String(64), index=True)
    action_definition_id: Mapped[str] = mapped_column(String(64))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)


class TriggerEventRow(Base):
    """Row model for ``rf_trigger_events`` (append-only)."""

    __tablename__ = "rf_trigger_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    trigger_definition_id: Mapped[str] = mapped_column(String(64), index=True)
    context: Mapped[Optional[dict]] = mapped_column(JsonColumn, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ActionInvocationRow(Base):
    """Row model for ``rf_action_invocations``.

    Key fields:

    - ``status``: PENDING until the consumer records SUCCESS or FAILED.
    - ``trigger_event_id``/``manual_invoker_id``: exactly one is set.
    - ``result``/``error``: the outcome of the attempt.
    """

    __tablename__ = "rf_action_invocations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    action_definition_id: Mapped[str] = mapped_column(String(64), index=True)
    trigger_event_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    manual_invoker_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1)

    status: Mapped[str] = mapped_column(String(16))
    result: Mapped[Optional[Any]] = mapped_column(JsonColumn, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
