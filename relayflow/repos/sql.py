from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a SQL-backed implementation of the repository interfaces
defined in ``relayflow.repos.interfaces``.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev; production typically uses
  migrations).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. The terminal update of an invocation is a conditional
``UPDATE ... WHERE status = 'PENDING'`` so two concurrent writers cannot both
complete the same attempt.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..errors import DefinitionNotFoundError, InvalidStatusTransitionError
from ..schemas.domain import (
    ActionDefinition,
    ActionInvocation,
    InvocationStatus,
    TriggerActionBinding,
    TriggerDefinition,
    TriggerEvent,
)
from .models import (
    ActionDefinitionRow,
    ActionInvocationRow,
    Base,
    TriggerActionBindingRow,
    TriggerDefinitionRow,
    TriggerEventRow,
)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Postgres URLs are normalized to the asyncpg driver (``postgresql://`` →
    ``postgresql+asyncpg://``); other URLs are used as given.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _trigger_definition(row: TriggerDefinitionRow) -> TriggerDefinition:
    return TriggerDefinition(
        id=row.id, capability_id=row.capability_id, config=row.config, is_enabled=row.is_enabled
    )


def _invocation(row: ActionInvocationRow) -> ActionInvocation:
    return ActionInvocation(
        id=row.id,
        action_definition_id=row.action_definition_id,
        trigger_event_id=row.trigger_event_id,
        manual_invoker_id=row.manual_invoker_id,
        attempt=row.attempt,
        status=InvocationStatus(row.status),
        result=row.result,
        error=row.error,
        created_at=_as_utc(row.created_at),
        completed_at=_as_utc(row.completed_at),
    )


@dataclass(frozen=True)
class SqlTriggerDefinitionRepository:
    """SQL implementation of ``TriggerDefinitionRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def list_enabled(self) -> list[TriggerDefinition]:
        async with self.session_factory() as s:
            result = await s.execute(select(TriggerDefinitionRow).where(TriggerDefinitionRow.is_enabled.is_(True)))
            return [_trigger_definition(row) for row in result.scalars().all()]

    async def get(self, definition_id: str) -> Optional[TriggerDefinition]:
        async with self.session_factory() as s:
            row = await s.get(TriggerDefinitionRow, definition_id)
            if row is None:
                return None
            return _trigger_definition(row)

    async def upsert(self, definition: TriggerDefinition) -> None:
        """
        Insert or replace a trigger definition.

        Args:
            definition: The definition to store; ``config`` is stored as given.
        """
        async with self.session_factory() as s:
            row = await s.get(TriggerDefinitionRow, definition.id)
            if row is None:
                s.add(
                    TriggerDefinitionRow(
                        id=definition.id,
                        capability_id=definition.capability_id,
                        config=definition.config,
                        is_enabled=definition.is_enabled,
                    )
                )
            else:
                row.capability_id = definition.capability_id
                row.config = definition.config
                row.is_enabled = definition.is_enabled
            await s.commit()


@dataclass(frozen=True)
class SqlActionDefinitionRepository:
    """SQL implementation of ``ActionDefinitionRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, definition_id: str) -> Optional[ActionDefinition]:
        async with self.session_factory() as s:
            row = await s.get(ActionDefinitionRow, definition_id)
            if row is None:
                return None
            return ActionDefinition(
                id=row.id, capability_id=row.capability_id, config=row.config, is_enabled=row.is_enabled
            )

    async def upsert(self, definition: ActionDefinition) -> None:
        async with self.session_factory() as s:
            row = await s.get(ActionDefinitionRow, definition.id)
            if row is None:
                s.add(
                    ActionDefinitionRow(
                        id=definition.id,
                        capability_id=definition.capability_id,
                        config=definition.config,
                        is_enabled=definition.is_enabled,
                    )
                )
            else:
                row.capability_id = definition.capability_id
                row.config = definition.config
                row.is_enabled = definition.is_enabled
            await s.commit()


@dataclass(frozen=True)
class SqlTriggerBindingRepository:
    """SQL implementation of ``TriggerBindingRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def list_for_trigger(self, trigger_definition_id: str) -> list[TriggerActionBinding]:
        async with self.session_factory() as s:
            stmt = (
                select(TriggerActionBindingRow)
                .where(TriggerActionBindingRow.trigger_definition_id == trigger_definition_id)
                .where(TriggerActionBindingRow.is_enabled.is_(True))
                .order_by(TriggerActionBindingRow.sort_order.asc(), TriggerActionBindingRow.id.asc())
            )
            result = await s.execute(stmt)
            return [
                TriggerActionBinding(
                    trigger_definition_id=row.trigger_definition_id,
                    action_definition_id=row.action_definition_id,
                    sort_order=row.sort_order,
                    is_enabled=row.is_enabled,
                )
                for row in result.scalars().all()
            ]

    async def bind(self, trigger_definition_id: str, action_definition_id: str, *, sort_order: int = 0) -> None:
        async with self.session_factory() as s:
            s.add(
                TriggerActionBindingRow(
                    trigger_definition_id=trigger_definition_id,
                    action_definition_id=action_definition_id,
                    sort_order=sort_order,
                    is_enabled=True,
                )
            )
            await s.commit()


@dataclass(frozen=True)
class SqlTriggerEventRepository:
    """SQL implementation of ``TriggerEventRepository`` (append-only)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, *, trigger_definition_id: str, context: Optional[dict[str, Any]]) -> TriggerEvent:
        """
        Append a new trigger event.

        Args:
            trigger_definition_id: The trigger that fired.
            context: The emitted payload.

        Returns:
            The stored event.
        """
        event = TriggerEvent(trigger_definition_id=trigger_definition_id, context=context)
        async with self.session_factory() as s:
            s.add(
                TriggerEventRow(
                    id=event.id,
                    trigger_definition_id=event.trigger_definition_id,
                    context=event.context,
                    created_at=event.created_at,
                )
            )
            await s.commit()
        return event

    async def get(self, event_id: str) -> Optional[TriggerEvent]:
        async with self.session_factory() as s:
            row = await s.get(TriggerEventRow, event_id)
            if row is None:
                return None
            return TriggerEvent(
                id=row.id,
                trigger_definition_id=row.trigger_definition_id,
                context=row.context,
                created_at=_as_utc(row.created_at),
            )


@dataclass(frozen=True)
class SqlActionInvocationRepository:
    """SQL implementation of ``ActionInvocationRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(
        self,
        *,
        action_definition_id: str,
        trigger_event_id: Optional[str] = None,
        manual_invoker_id: Optional[str] = None,
        attempt: int = 1,
    ) -> ActionInvocation:
        """
        Insert a PENDING invocation.

        Returns:
            The stored invocation.
        """
        row = ActionInvocationRow(
            id=str(uuid4()),
            action_definition_id=action_definition_id,
            trigger_event_id=trigger_event_id,
            manual_invoker_id=manual_invoker_id,
            attempt=attempt,
            status=InvocationStatus.PENDING.value,
            created_at=_utc_now(),
        )
        async with self.session_factory() as s:
            s.add(row)
            await s.commit()
        return _invocation(row)

    async def update(
        self,
        invocation_id: str,
        *,
        status: InvocationStatus,
        result: Any = None,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> ActionInvocation:
        """
        Record the terminal status of an invocation.

        Raises:
            DefinitionNotFoundError: If the invocation does not exist.
            InvalidStatusTransitionError: If it already left PENDING.
        """
        if not status.is_terminal:
            raise InvalidStatusTransitionError(invocation_id, InvocationStatus.PENDING.value, status.value)
        async with self.session_factory() as s:
            stmt = (
                update(ActionInvocationRow)
                .where(ActionInvocationRow.id == invocation_id)
                .where(ActionInvocationRow.status == InvocationStatus.PENDING.value)
                .values(
                    status=status.value,
                    result=result,
                    error=error,
                    completed_at=completed_at or _utc_now(),
                )
            )
            res = await s.execute(stmt)
            await s.commit()
            row = await s.get(ActionInvocationRow, invocation_id)
            if row is None:
                raise DefinitionNotFoundError(invocation_id, "action invocation")
            if res.rowcount == 0:
                raise InvalidStatusTransitionError(invocation_id, row.status, status.value)
            await s.refresh(row)
            return _invocation(row)

    async def get(self, invocation_id: str) -> Optional[ActionInvocation]:
        async with self.session_factory() as s:
            row = await s.get(ActionInvocationRow, invocation_id)
            if row is None:
                return None
            return _invocation(row)

    async def list_for_action(self, action_definition_id: str, limit: int = 100) -> list[ActionInvocation]:
        async with self.session_factory() as s:
            stmt = (
                select(ActionInvocationRow)
                .where(ActionInvocationRow.action_definition_id == action_definition_id)
                .order_by(ActionInvocationRow.created_at.desc())
                .limit(limit)
            )
            result = await s.execute(stmt)
            return [_invocation(row) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    trigger_definitions: SqlTriggerDefinitionRepository
    action_definitions: SqlActionDefinitionRepository
    bindings: SqlTriggerBindingRepository
    trigger_events: SqlTriggerEventRepository
    invocations: SqlActionInvocationRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        trigger_definitions=SqlTriggerDefinitionRepository(session_factory=session_factory),
        action_definitions=SqlActionDefinitionRepository(session_factory=session_factory),
        bindings=SqlTriggerBindingRepository(session_factory=session_factory),
        trigger_events=SqlTriggerEventRepository(session_factory=session_factory),
        invocations=SqlActionInvocationRepository(session_factory=session_factory),
    )
