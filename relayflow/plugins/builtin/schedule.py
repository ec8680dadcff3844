from __future__ import annotations

"""Built-in ``schedule`` plugin: time based trigger.

Capability ``cron_schedule`` (TRIGGER) fires either on a five-field cron
expression or once at an ISO timestamp.

Config::

    {"expression": "*/5 * * * *", "emit_on_start": false,
     "payload": {...}, "metadata": {...}, "timezone": "UTC"}

    {"mode": "one_time", "run_at": "2030-01-01T09:00:00Z", "payload": {...}}

Nested ``{"cron": {...}}`` / ``{"once": {...}}`` blocks and camelCase keys
(``emitOnStart``, ``runAt``) are accepted as well. Only UTC is supported; any
other timezone is logged and treated as UTC.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from croniter import CroniterBadDateError, croniter

from ...capabilities.base import TriggerRuntimeContext

NAME = "schedule"

CRON = "cron"
ONE_TIME = "one_time"


@dataclass(frozen=True)
class CronExpression:
    """A five-field cron expression evaluated in UTC.

    Parsing and matching are delegated to ``croniter``: lists, ranges, steps,
    month and weekday names, ``?``, and day-of-week 0/7 as Sunday. When both
    day-of-month and day-of-week are restricted, either may match.
    """

    expression: str

    @classmethod
    def parse(cls, expression: Any) -> "CronExpression":
        """
        Raises:
            ValueError: If the expression is empty, does not have five fields,
                or is rejected by croniter.
        """
        if not isinstance(expression, str) or not expression.strip():
            raise ValueError("Cron expression must be a non-empty string")
        parts = expression.split()
        if len(parts) != 5:
            raise ValueError(
                "Cron expression must contain exactly 5 fields (minute hour day-of-month month day-of-week)"
            )
        normalized = " ".join(parts)
        if not croniter.is_valid(normalized):
            raise ValueError(f"Invalid cron expression: {expression}")
        return cls(normalized)

    def matches(self, moment: datetime) -> bool:
        return croniter.match(self.expression, moment.astimezone(timezone.utc))

    def next_after(self, moment: datetime) -> datetime:
        """First matching minute strictly after ``moment``, in UTC.

        Raises:
            ValueError: If nothing matches within one year.
        """
        base = moment.astimezone(timezone.utc)
        try:
            return croniter(self.expression, base, max_years_between_matches=1).get_next(datetime)
        except CroniterBadDateError as e:
            raise ValueError("Unable to resolve next cron execution within one year") from e


@dataclass(frozen=True)
class ScheduleConfig:
    mode: str
    cron: Optional[CronExpression] = None
    run_at: Optional[datetime] = None
    payload: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    emit_on_start: bool = False
    timezone: str = "UTC"


def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _nonempty_str(value: Any) -> Optional[str]:
    return value.strip() if isinstance(value, str) and value.strip() else None


def _infer_mode(raw: Mapping[str, Any]) -> str:
    explicit = _nonempty_str(raw.get("mode"))
    if explicit and explicit.lower() in (CRON, ONE_TIME):
        return explicit.lower()
    once = raw.get("once")
    if isinstance(once, Mapping) and _nonempty_str(_pick(once, "run_at", "runAt")):
        return ONE_TIME
    if _nonempty_str(_pick(raw, "run_at", "runAt")):
        return ONE_TIME
    return CRON


def _normalize_timezone(value: Any, logger: Any) -> str:
    tz = _nonempty_str(value) or "UTC"
    if tz.upper() != "UTC":
        logger.warning("Scheduled trigger supports only UTC; falling back to UTC (got %s)", tz)
    return "UTC"


def _parse_run_at(value: Any) -> datetime:
    text = _nonempty_str(value)
    if text is None:
        raise ValueError("Scheduled trigger requires a non-empty 'run_at' ISO timestamp for one-time mode")
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Invalid ISO timestamp for run_at: {text}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_config(raw: Any, logger: Any) -> ScheduleConfig:
    """Validate a schedule config.

    Raises:
        ValueError: If the config is not a mapping, or misses a valid
            expression (cron mode) or ``run_at`` (one-time mode).
    """
    if not isinstance(raw, Mapping):
        raise ValueError("Scheduled trigger requires a configuration object")
    payload = raw.get("payload") if isinstance(raw.get("payload"), Mapping) else None
    metadata = raw.get("metadata") if isinstance(raw.get("metadata"), Mapping) else None
    mode = _infer_mode(raw)

    if mode == CRON:
        block = raw["cron"] if isinstance(raw.get("cron"), Mapping) else raw
        expression = _nonempty_str(block.get("expression")) or _nonempty_str(raw.get("expression"))
        if expression is None:
            raise ValueError("Scheduled trigger requires a non-empty 'expression' when mode is cron")
        return ScheduleConfig(
            mode=CRON,
            cron=CronExpression.parse(expression),
            payload=dict(payload) if payload else None,
            metadata=dict(metadata) if metadata else None,
            emit_on_start=_pick(block, "emit_on_start", "emitOnStart") is True
            or _pick(raw, "emit_on_start", "emitOnStart") is True,
            timezone=_normalize_timezone(_pick(block, "timezone") or raw.get("timezone"), logger),
        )

    block = raw["once"] if isinstance(raw.get("once"), Mapping) else raw
    return ScheduleConfig(
        mode=ONE_TIME,
        run_at=_parse_run_at(_pick(block, "run_at", "runAt") or _pick(raw, "run_at", "runAt")),
        payload=dict(payload) if payload else None,
        metadata=dict(metadata) if metadata else None,
        timezone=_normalize_timezone(_pick(block, "timezone") or raw.get("timezone"), logger),
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScheduledTriggerRuntime:
    """Timer driven trigger runtime backed by one asyncio task."""

    def __init__(self, context: TriggerRuntimeContext) -> None:
        self._context = context
        self._logger = context.services.logger or logging.getLogger(__name__)
        self._config = normalize_config(context.config, self._logger)
        self._running = False
        self._task: Optional[asyncio.Task[None]] = None
        self._next_run_at: Optional[datetime] = None
        self._once_fired = False
        self._last_run_at = self._config.run_at

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def mode(self) -> str:
        return self._config.mode

    @property
    def next_run_at(self) -> Optional[datetime]:
        return self._next_run_at

    @property
    def has_fired(self) -> bool:
        return self._once_fired

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        await self._emit_on_start()
        self._schedule()

    async def stop(self) -> None:
        self._running = False
        await self._cancel_timer()
        self._next_run_at = None

    async def on_config_change(self, config: Any) -> None:
        self._config = normalize_config(config, self._logger)
        if self._config.mode == ONE_TIME:
            if self._config.run_at != self._last_run_at:
                self._once_fired = False
            self._last_run_at = self._config.run_at
        else:
            self._once_fired = False
            self._last_run_at = None
        if not self._running:
            return
        await self._cancel_timer()
        await self._emit_on_start()
        self._schedule()

    async def _emit_on_start(self) -> None:
        if self._config.mode == CRON and self._config.emit_on_start:
            await self._emit(_utc_now(), immediate=True)

    def _schedule(self) -> None:
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"relayflow-schedule-{self._context.definition_id}"
        )

    async def _cancel_timer(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        if self._config.mode == ONE_TIME:
            await self._run_once()
            return
        base = _utc_now()
        while self._running:
            cron = self._config.cron
            assert cron is not None
            try:
                fire_at = cron.next_after(base)
            except ValueError as e:
                self._logger.error(
                    "Failed to compute next cron occurrence; stopping trigger",
                    extra={"expression": cron.expression, "error": str(e)},
                )
                self._running = False
                self._next_run_at = None
                return
            self._next_run_at = fire_at
            self._logger.debug("Scheduled trigger queued next cron run at %s", fire_at.isoformat())
            await asyncio.sleep(max(0.0, (fire_at - _utc_now()).total_seconds()))
            if not self._running:
                return
            await self._emit(fire_at, immediate=False)
            base = fire_at

    async def _run_once(self) -> None:
        run_at = self._config.run_at
        assert run_at is not None
        if self._once_fired:
            self._next_run_at = None
            return
        delay = (run_at - _utc_now()).total_seconds()
        if delay > 0:
            self._next_run_at = run_at
            self._logger.debug("Scheduled trigger queued one-time run at %s", run_at.isoformat())
            await asyncio.sleep(delay)
            if not self._running:
                return
        self._once_fired = True
        self._next_run_at = None
        await self._emit(run_at, immediate=delay <= 0)

    def _schedule_metadata(self, immediate: bool) -> Dict[str, Any]:
        cfg = self._config
        if cfg.mode == CRON and cfg.cron is not None:
            return {"kind": CRON, "expression": cfg.cron.expression, "timezone": cfg.timezone, "immediate": immediate}
        assert cfg.run_at is not None
        return {"kind": ONE_TIME, "run_at": cfg.run_at.isoformat(), "timezone": cfg.timezone, "immediate": immediate}

    async def _emit(self, scheduled_for: datetime, *, immediate: bool) -> None:
        metadata = dict(self._config.metadata or {})
        metadata["schedule"] = self._schedule_metadata(immediate)
        try:
            await self._context.services.emit(
                self._config.payload,
                metadata=metadata,
                scheduled_for=scheduled_for,
            )
        except Exception as e:
            self._logger.warning("Scheduled trigger emit failed", extra={"mode": self._config.mode, "error": str(e)})


def create_scheduled_runtime(context: TriggerRuntimeContext) -> ScheduledTriggerRuntime:
    return ScheduledTriggerRuntime(context)


CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "mode": {"type": "string", "enum": [CRON, ONE_TIME]},
        "expression": {"type": "string"},
        "run_at": {"type": "string", "format": "date-time"},
        "timezone": {"type": "string", "default": "UTC"},
        "emit_on_start": {"type": "boolean", "default": False},
        "payload": {"type": "object"},
        "metadata": {"type": "object"},
    },
}

CAPABILITIES: List[Dict[str, Any]] = [
    {
        "kind": "TRIGGER",
        "key": "cron_schedule",
        "displayName": "Scheduled trigger",
        "configSchema": CONFIG_SCHEMA,
    }
]

TRIGGERS = {"cron_schedule": create_scheduled_runtime}

__all__ = [
    "CAPABILITIES",
    "CronExpression",
    "NAME",
    "ScheduledTriggerRuntime",
    "TRIGGERS",
    "create_scheduled_runtime",
    "normalize_config",
]
