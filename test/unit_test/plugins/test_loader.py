from __future__ import annotations

import shutil
import textwrap
from pathlib import Path

import pytest

from relayflow.capabilities.registry import CapabilityRegistry
from relayflow.errors import DuplicateCapabilityError, InvalidCapabilityError
from relayflow.plugins.loader import (
    load_builtin_plugins,
    load_plugin_by_name,
    load_plugins,
    register_plugin,
    registered_plugin_name,
    reload_plugin,
)
from relayflow.schemas.domain import CapabilityKind

_PLUGIN = """
CAPABILITIES = [
    {{"kind": "TRIGGER", "key": "tick", "displayName": "Tick"}},
    {{"kind": "ACTION", "key": "send", "displayName": "Send", "configSchema": {{"type": "object"}}}},
]

VERSION = {version!r}


class _Runtime:
    async def start(self):
        return None

    async def stop(self):
        return None


class _Action:
    async def execute(self, input):
        return VERSION


TRIGGERS = {{"tick": lambda ctx: _Runtime()}}
ACTIONS = {{"send": lambda ctx: _Action()}}
"""


def _write_plugin(base: Path, name: str, body: str) -> None:
    (base / name).mkdir(parents=True, exist_ok=True)
    (base / name / "__init__.py").write_text(textwrap.dedent(body))


@pytest.fixture
def plugins_dir(tmp_path: Path, isolated_plugin_modules: None) -> Path:
    base = tmp_path / "plugins"
    base.mkdir()
    return base


def test_missing_plugins_dir_yields_nothing(tmp_path: Path) -> None:
    assert load_plugins(tmp_path / "absent") == []
    assert load_plugin_by_name(tmp_path / "absent", "anything") is None


def test_load_plugins_discovers_packages_and_modules(plugins_dir: Path) -> None:
    _write_plugin(plugins_dir, "alpha", _PLUGIN.format(version=1))
    (plugins_dir / "beta.py").write_text(
        'NAME = "beta-renamed"\nCAPABILITIES = []\n'
    )
    (plugins_dir / "_private.py").write_text("raise RuntimeError('never imported')\n")
    (plugins_dir / "notes.txt").write_text("ignored")

    plugins = {p.name: p for p in load_plugins(plugins_dir)}

    assert sorted(plugins) == ["alpha", "beta-renamed"]
    alpha = plugins["alpha"]
    assert [c.capability_id for c in alpha.capabilities] == ["alpha:tick", "alpha:send"]
    assert alpha.capabilities[1].descriptor.config_schema == {"type": "object"}


def test_invalid_plugins_are_skipped(plugins_dir: Path) -> None:
    _write_plugin(plugins_dir, "good", _PLUGIN.format(version=1))
    _write_plugin(plugins_dir, "broken_import", "import rf_definitely_missing_module\n")
    _write_plugin(plugins_dir, "no_caps", "X = 1\n")
    _write_plugin(plugins_dir, "bad_kind", 'CAPABILITIES = [{"kind": "OTHER", "key": "k", "displayName": "K"}]\n')

    assert [p.name for p in load_plugins(plugins_dir)] == ["good"]


def test_register_plugin_registers_both_kinds(plugins_dir: Path, registry: CapabilityRegistry) -> None:
    _write_plugin(plugins_dir, "alpha", _PLUGIN.format(version=1))
    [plugin] = load_plugins(plugins_dir)

    ids = register_plugin(registry, plugin)

    assert ids == ["alpha:tick", "alpha:send"]
    assert registry.get_trigger("alpha:tick").plugin_name == "alpha"
    assert registry.get_action("alpha:send").capability.kind is CapabilityKind.ACTION


def test_explicit_capability_id(plugins_dir: Path, registry: CapabilityRegistry) -> None:
    _write_plugin(
        plugins_dir,
        "gamma",
        """
        CAPABILITIES = [{"id": "cron", "kind": "TRIGGER", "key": "tick", "displayName": "Tick"}]
        TRIGGERS = {"tick": lambda ctx: None}
        """,
    )
    [plugin] = load_plugins(plugins_dir)
    assert register_plugin(registry, plugin) == ["cron"]


def test_capability_without_factory_rolls_back(plugins_dir: Path, registry: CapabilityRegistry) -> None:
    _write_plugin(
        plugins_dir,
        "half",
        """
        CAPABILITIES = [
            {"kind": "TRIGGER", "key": "tick", "displayName": "Tick"},
            {"kind": "ACTION", "key": "send", "displayName": "Send"},
        ]
        TRIGGERS = {"tick": lambda ctx: None}
        """,
    )
    [plugin] = load_plugins(plugins_dir)

    with pytest.raises(InvalidCapabilityError):
        register_plugin(registry, plugin)
    assert registry.plugins() == []


def test_register_same_plugin_twice_is_duplicate(plugins_dir: Path, registry: CapabilityRegistry) -> None:
    _write_plugin(plugins_dir, "alpha", _PLUGIN.format(version=1))
    [plugin] = load_plugins(plugins_dir)
    register_plugin(registry, plugin)

    with pytest.raises(DuplicateCapabilityError):
        register_plugin(registry, plugin)


@pytest.mark.asyncio
async def test_reload_plugin_replaces_capabilities(plugins_dir: Path, registry: CapabilityRegistry) -> None:
    _write_plugin(plugins_dir, "alpha", _PLUGIN.format(version=1))
    [plugin] = load_plugins(plugins_dir)
    register_plugin(registry, plugin)
    old_factory = registry.get_action("alpha:send").factory

    _write_plugin(plugins_dir, "alpha", _PLUGIN.format(version="second"))
    reloaded = reload_plugin(registry, plugins_dir, "alpha")

    assert reloaded is not None
    new_factory = registry.get_action("alpha:send").factory
    assert new_factory is not old_factory
    assert await new_factory(None).execute(None) == "second"


def test_reload_missing_plugin_only_removes(plugins_dir: Path, registry: CapabilityRegistry) -> None:
    _write_plugin(plugins_dir, "alpha", _PLUGIN.format(version=1))
    [plugin] = load_plugins(plugins_dir)
    register_plugin(registry, plugin)

    shutil.rmtree(plugins_dir / "alpha")

    assert reload_plugin(registry, plugins_dir, "alpha") is None
    assert registry.plugins() == []


def test_builtin_plugins() -> None:
    [schedule] = load_builtin_plugins()
    assert schedule.name == "schedule"
    assert [c.capability_id for c in schedule.capabilities] == ["schedule:cron_schedule"]
    assert schedule.capabilities[0].descriptor.kind is CapabilityKind.TRIGGER


def test_reload_follows_name_override_across_versions(plugins_dir: Path, registry: CapabilityRegistry) -> None:
    _write_plugin(plugins_dir, "alpha", 'NAME = "mailer"\n' + _PLUGIN.format(version=1))
    [plugin] = load_plugins(plugins_dir)
    register_plugin(registry, plugin)
    assert registered_plugin_name("alpha") == "mailer"

    _write_plugin(plugins_dir, "alpha", 'NAME = "mailer-v2"\n' + _PLUGIN.format(version="second"))
    reloaded = reload_plugin(registry, plugins_dir, "alpha")

    assert reloaded is not None and reloaded.name == "mailer-v2"
    assert registry.plugins() == ["mailer-v2"]
    assert not registry.has("mailer:send")
    assert registry.has("mailer-v2:send")
    assert registered_plugin_name("alpha") == "mailer-v2"


@pytest.mark.asyncio
async def test_reload_with_broken_import_keeps_previous_version(plugins_dir: Path, registry: CapabilityRegistry) -> None:
    _write_plugin(plugins_dir, "alpha", 'NAME = "mailer"\n' + _PLUGIN.format(version=1))
    [plugin] = load_plugins(plugins_dir)
    register_plugin(registry, plugin)

    _write_plugin(plugins_dir, "alpha", "def broken(:\n    pass\n")
    with pytest.raises(SyntaxError):
        reload_plugin(registry, plugins_dir, "alpha")

    assert registry.plugins() == ["mailer"]
    assert await registry.get_action("mailer:send").factory(None).execute(None) == 1
    assert registered_plugin_name("alpha") == "mailer"


def test_registered_plugin_name_defaults_to_source_name() -> None:
    assert registered_plugin_name("never_imported") == "never_imported"
