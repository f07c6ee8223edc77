"""Shared fixtures for the plugin runtime tests."""

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from plughost.core.config import RuntimeConfig
from plughost.core.storage import MemoryStorage
from plughost.plugins.manager import PluginManager


class RecordingPlugin:
    """Plugin that records init/destroy calls into a shared list."""

    def __init__(
        self,
        plugin_id: str,
        calls: List[Tuple[str, str]],
        fail_init: bool = False,
        fail_destroy: bool = False,
    ):
        self.id = plugin_id
        self.calls = calls
        self.fail_init = fail_init
        self.fail_destroy = fail_destroy
        self.host: Any = None

    async def init(self, host: Any) -> None:
        self.calls.append(("init", self.id))
        self.host = host
        if self.fail_init:
            raise RuntimeError(f"{self.id} init failed")

    def destroy(self) -> None:
        self.calls.append(("destroy", self.id))
        if self.fail_destroy:
            raise RuntimeError(f"{self.id} destroy failed")


class FakeLoader:
    """Loader whose entries are factories that register a plugin when loaded."""

    def __init__(self):
        self.manager: Optional[PluginManager] = None
        self.factories: Dict[str, Callable[[], Any]] = {}
        self.loads: List[Tuple[str, bool]] = []
        self.evicted: List[str] = []

    def provide(self, locator: str, factory: Callable[[], Any]) -> None:
        self.factories[locator] = factory

    async def load(self, locator: str, *, force_reload: bool = False) -> bool:
        self.loads.append((locator, force_reload))
        factory = self.factories.get(locator)
        if factory is None:
            return False
        instance = factory()
        if instance is not None:
            self.manager.register(instance)
        return True

    def evict(self, locator: str) -> None:
        self.evicted.append(locator)


@pytest.fixture
def calls() -> List[Tuple[str, str]]:
    return []


@pytest.fixture
def loader() -> FakeLoader:
    return FakeLoader()


@pytest.fixture
def config(tmp_path) -> RuntimeConfig:
    return RuntimeConfig(
        plugin_dir=str(tmp_path),
        registration_timeout_ms=100,
        settings_flush_delay=0,
    )


@pytest_asyncio.fixture
async def manager(config, loader):
    manager = PluginManager(config=config, loader=loader, storage=MemoryStorage())
    loader.manager = manager
    yield manager
    await manager.shutdown()


@pytest.fixture
def provide(loader, calls):
    """Make a plugin loadable and return its manifest entry."""

    def _provide(plugin_id: str, dependencies: Optional[List[str]] = None, **kwargs: Any) -> Dict[str, Any]:
        entry = f"{plugin_id}.py"
        loader.provide(entry, lambda: RecordingPlugin(plugin_id, calls, **kwargs))
        descriptor: Dict[str, Any] = {"id": plugin_id, "entry": entry}
        if dependencies:
            descriptor["dependencies"] = dependencies
        return descriptor

    return _provide


@pytest.fixture
def recorded_events(manager):
    """Collect (event, payload) pairs for runtime events."""
    events: List[Tuple[str, Any]] = []
    names = [
        "plugin:registered",
        "plugin:enabled",
        "plugin:disabled",
        "plugin:loaded",
        "plugin:reloading",
        "plugin:reloaded",
        "plugins:starting",
        "plugins:started",
        "plugins:activating",
        "plugins:activated",
    ]
    for name in names:
        manager.on(name, lambda payload, name=name: events.append((name, payload)))
    return events
