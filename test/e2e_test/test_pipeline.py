"""End-to-end tests of the trigger -> queue -> action pipeline.

A fake plugin provides one trigger and one action; the app is wired with the
in-memory repositories and queue, and a firing is followed until the action
invocation reaches a terminal status.
"""

import asyncio
import logging
import textwrap
from pathlib import Path
from typing import Any, Dict, List

import pytest

from relayflow.app import RelayflowApp, RelayflowDeps
from relayflow.capabilities.base import ActionExecutionInput, TriggerRuntimeContext
from relayflow.capabilities.registry import CapabilityRegistry
from relayflow.core.config import Settings
from relayflow.queue.memory import MemoryQueue
from relayflow.repos.memory import MemoryRepoBundle
from relayflow.repos.sql import SqlTriggerDefinitionRepository
from relayflow.schemas.domain import (
    ActionDefinition,
    InvocationStatus,
    TriggerDefinition,
    TriggerRuntimeState,
)


@pytest.fixture(autouse=True)
def _restore_root_handlers():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class _TickRuntime:
    def __init__(self, context: TriggerRuntimeContext) -> None:
        self.context = context
        self.running = False

    async def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        self.running = False


class _RecordAction:
    def __init__(self, seen: List[ActionExecutionInput], fail: bool) -> None:
        self.seen = seen
        self.fail = fail

    async def execute(self, input: ActionExecutionInput) -> Dict[str, Any]:
        self.seen.append(input)
        if self.fail:
            raise RuntimeError("smtp refused")
        return {"ok": True}


class _FakePlugin:
    def __init__(self) -> None:
        self.runtimes: Dict[str, _TickRuntime] = {}
        self.seen: List[ActionExecutionInput] = []
        self.fail = False

    def trigger_factory(self, context: TriggerRuntimeContext) -> _TickRuntime:
        runtime = _TickRuntime(context)
        self.runtimes[context.definition_id] = runtime
        return runtime

    def action_factory(self, context) -> _RecordAction:
        return _RecordAction(self.seen, self.fail)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not await predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def fake_plugin(registry: CapabilityRegistry, trigger_entry, action_entry) -> _FakePlugin:
    plugin = _FakePlugin()
    registry.register(trigger_entry("fake", "fake:tick", plugin.trigger_factory, key="tick"))
    registry.register(action_entry("fake", "fake:record", plugin.action_factory, key="record"))
    return plugin


@pytest.fixture
def app(memory_repos: MemoryRepoBundle, registry: CapabilityRegistry, fake_plugin: _FakePlugin) -> RelayflowApp:
    store = memory_repos.store
    store.upsert_trigger_definition(TriggerDefinition(id="def_1", capability_id="fake:tick", config={"foo": "bar"}))
    store.upsert_action_definition(ActionDefinition(id="act_1", capability_id="fake:record", config={"to": "ops"}))
    store.bind("def_1", "act_1")
    return RelayflowApp(deps=RelayflowDeps.from_bundle(memory_repos), registry=registry)


@pytest.mark.asyncio
async def test_emit_runs_bound_action(app: RelayflowApp, memory_repos: MemoryRepoBundle, fake_plugin: _FakePlugin) -> None:
    async with app:
        assert app.manager.state("def_1") is TriggerRuntimeState.RUNNING
        assert app.registry.has("schedule:cron_schedule")

        runtime = fake_plugin.runtimes["def_1"]
        assert runtime.context.config == {"foo": "bar"}
        event_id = await runtime.context.services.emit({"hello": "world"})

        async def _done() -> bool:
            rows = await memory_repos.invocations.list_for_action("act_1")
            return bool(rows) and rows[0].status.is_terminal

        await _wait_for(_done)

    [invocation] = await memory_repos.invocations.list_for_action("act_1")
    assert invocation.status is InvocationStatus.SUCCESS
    assert invocation.result == {"ok": True}
    assert invocation.trigger_event_id == event_id
    assert (await memory_repos.trigger_events.get(event_id)).context == {"hello": "world"}

    [seen] = fake_plugin.seen
    assert seen.config == {"to": "ops"}
    assert seen.payload == {"hello": "world"}
    assert seen.invocation.invocation_id == invocation.id
    assert runtime.running is False


@pytest.mark.asyncio
async def test_failing_action_recorded_as_failed(app: RelayflowApp, memory_repos: MemoryRepoBundle, fake_plugin: _FakePlugin) -> None:
    fake_plugin.fail = True
    async with app:
        await fake_plugin.runtimes["def_1"].context.services.emit({"n": 1})

        async def _done() -> bool:
            rows = await memory_repos.invocations.list_for_action("act_1")
            return bool(rows) and rows[0].status.is_terminal

        await _wait_for(_done)

    [invocation] = await memory_repos.invocations.list_for_action("act_1")
    assert invocation.status is InvocationStatus.FAILED
    assert invocation.error == "smtp refused"


@pytest.mark.asyncio
async def test_manual_invocation(app: RelayflowApp, memory_repos: MemoryRepoBundle) -> None:
    async with app:
        message = await app.runner.invoke_action_manually("act_1", "user-1", {"x": 1})
        assert message.manual_invoker_id == "user-1"

        async def _done() -> bool:
            rows = await memory_repos.invocations.list_for_action("act_1")
            return bool(rows) and rows[0].status.is_terminal

        await _wait_for(_done)

    [invocation] = await memory_repos.invocations.list_for_action("act_1")
    assert invocation.manual_invoker_id == "user-1"
    assert invocation.trigger_event_id is None
    assert invocation.status is InvocationStatus.SUCCESS


@pytest.mark.asyncio
async def test_accessors_require_start(memory_repos: MemoryRepoBundle) -> None:
    app = RelayflowApp(deps=RelayflowDeps.from_bundle(memory_repos), queue=MemoryQueue())
    with pytest.raises(RuntimeError):
        _ = app.manager
    await app.start()
    assert app.started is True
    assert isinstance(app.queue, MemoryQueue)
    await app.shutdown()
    assert app.started is False


@pytest.mark.asyncio
async def test_from_settings_uses_memory_repos_by_default(tmp_path: Path) -> None:
    settings = Settings(PLUGINS_PATH=str(tmp_path / "none"), RELAYFLOW_LOG_LEVEL="WARNING")
    async with RelayflowApp.from_settings(settings) as app:
        assert isinstance(app.queue, MemoryQueue)
        assert app.manager.running_ids() == []
        assert app.registry.plugins() == ["schedule"]


@pytest.mark.asyncio
async def test_from_settings_with_database_url(tmp_path: Path) -> None:
    settings = Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        PLUGINS_PATH=str(tmp_path),
        RELAYFLOW_LOAD_BUILTIN_PLUGINS=False,
    )
    app = RelayflowApp.from_settings(settings)
    assert isinstance(app.deps.trigger_definitions, SqlTriggerDefinitionRepository)

    async with app:
        await app.deps.trigger_definitions.upsert(TriggerDefinition(id="t1", capability_id="missing:cap"))
        assert await app.manager.reload_trigger("t1") is TriggerRuntimeState.STOPPED
        assert app.registry.plugins() == []


_PLUGIN_SOURCE = """
CAPABILITIES = [{{"kind": "TRIGGER", "key": "tick", "displayName": "Tick"}}]
GENERATION = {generation!r}


class _Runtime:
    def __init__(self, ctx):
        self.generation = GENERATION

    async def start(self):
        return None

    async def stop(self):
        return None


TRIGGERS = {{"tick": _Runtime}}
"""


@pytest.mark.asyncio
async def test_reload_plugin_restarts_its_triggers(
    tmp_path: Path, memory_repos: MemoryRepoBundle, isolated_plugin_modules: None
) -> None:
    plugin_dir = tmp_path / "ticker"
    plugin_dir.mkdir()
    (plugin_dir / "__init__.py").write_text(textwrap.dedent(_PLUGIN_SOURCE.format(generation="first")))
    memory_repos.store.upsert_trigger_definition(TriggerDefinition(id="def_1", capability_id="ticker:tick"))

    app = RelayflowApp(
        deps=RelayflowDeps.from_bundle(memory_repos),
        plugins_path=str(tmp_path),
        include_builtin_plugins=False,
    )
    async with app:
        assert app.manager.get_runtime("def_1").generation == "first"

        (plugin_dir / "__init__.py").write_text(textwrap.dedent(_PLUGIN_SOURCE.format(generation="second gen")))
        assert await app.reload_plugin("ticker") == ["def_1"]

        assert app.manager.state("def_1") is TriggerRuntimeState.RUNNING
        assert app.manager.get_runtime("def_1").generation == "second gen"


@pytest.mark.asyncio
async def test_reload_plugin_with_broken_version_restarts_its_triggers(
    tmp_path: Path, memory_repos: MemoryRepoBundle, isolated_plugin_modules: None
) -> None:
    plugin_dir = tmp_path / "ticker"
    plugin_dir.mkdir()
    (plugin_dir / "__init__.py").write_text(textwrap.dedent(_PLUGIN_SOURCE.format(generation="first")))
    memory_repos.store.upsert_trigger_definition(TriggerDefinition(id="def_1", capability_id="ticker:tick"))

    app = RelayflowApp(
        deps=RelayflowDeps.from_bundle(memory_repos),
        plugins_path=str(tmp_path),
        include_builtin_plugins=False,
    )
    async with app:
        first = app.manager.get_runtime("def_1")

        (plugin_dir / "__init__.py").write_text("import rf_definitely_missing_module\n")
        with pytest.raises(ModuleNotFoundError):
            await app.reload_plugin("ticker")

        assert app.manager.state("def_1") is TriggerRuntimeState.RUNNING
        restarted = app.manager.get_runtime("def_1")
        assert restarted is not first
        assert restarted.generation == "first"


@pytest.mark.asyncio
async def test_reload_plugin_with_name_override_restarts_its_triggers(
    tmp_path: Path, memory_repos: MemoryRepoBundle, isolated_plugin_modules: None
) -> None:
    plugin_dir = tmp_path / "ticker_src"
    plugin_dir.mkdir()
    source = 'NAME = "ticker"\n' + _PLUGIN_SOURCE
    (plugin_dir / "__init__.py").write_text(textwrap.dedent(source.format(generation="first")))
    memory_repos.store.upsert_trigger_definition(TriggerDefinition(id="def_1", capability_id="ticker:tick"))

    app = RelayflowApp(
        deps=RelayflowDeps.from_bundle(memory_repos),
        plugins_path=str(tmp_path),
        include_builtin_plugins=False,
    )
    async with app:
        first = app.manager.get_runtime("def_1")
        assert first.generation == "first"

        (plugin_dir / "__init__.py").write_text(textwrap.dedent(source.format(generation="second gen")))
        assert await app.reload_plugin("ticker_src") == ["def_1"]

        assert app.registry.plugins() == ["ticker"]
        assert app.manager.get_runtime("def_1").generation == "second gen"
