"""Plugin runtime facade owning every runtime component."""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .host import HostContext, HostState
from .hot_reload import HotReloadController
from .interface import PluginDescriptor
from .lifecycle import LifecycleManager, UNSET
from .loader import Loader, ModuleLoader
from .registry import PluginRegistry
from ..core.config import RuntimeConfig, get_config
from ..core.event_bus import EventBus
from ..core.logger import get_logger, setup_logger
from ..core.settings import SettingsStore
from ..core.storage import Storage, init_storage

logger = get_logger(__name__)


class PluginManager:
    """
    Host-embeddable plugin runtime.

    One instance owns the event bus, settings store, registry, lifecycle
    manager and hot reload controller. Hosts call :meth:`start`; plugin code
    calls :meth:`register` (usually through ``plughost.register``).
    """

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        loader: Optional[Loader] = None,
        storage: Optional[Storage] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config or get_config()
        self.event_bus = event_bus or EventBus()
        self.loader = loader if loader is not None else ModuleLoader(self.config.get_plugin_path())
        self.settings = SettingsStore(
            self.event_bus,
            storage,
            key=self.config.settings_key,
            flush_delay=self.config.settings_flush_delay,
        )
        self.registry = PluginRegistry(
            self.event_bus,
            default_timeout_ms=self.config.registration_timeout_ms,
        )
        self.host_state = HostState(app_id=self.config.app_id, dev_mode=self.config.dev_mode)
        self.lifecycle = LifecycleManager(
            self.registry,
            self.event_bus,
            self.settings,
            loader=self.loader,
            host_state=self.host_state,
            manifest_path=self.config.get_manifest_path(),
            registration_timeout_ms=self.config.registration_timeout_ms,
        )
        self.hot_reload = HotReloadController(self.lifecycle, self.event_bus, self.is_dev_mode)

    @classmethod
    async def from_config(
        cls,
        config: Optional[RuntimeConfig] = None,
        loader: Optional[Loader] = None,
    ) -> "PluginManager":
        """
        Build a manager for a host process.

        Sets up logging from the config, opens settings storage at
        ``settings_db_path`` (in memory when unset) and installs the manager
        as the global one, so plugin modules calling ``plughost.register``
        reach it.
        """
        config = config or get_config()
        setup_logger(
            level=config.log_level,
            log_file=config.log_file or None,
            rich=config.log_rich
        )
        storage = await init_storage(config.settings_db_path or None)
        manager = cls(config=config, loader=loader, storage=storage)
        set_plugin_manager(manager)
        return manager

    # Registration

    def register(self, instance: Any) -> bool:
        """
        Register a plugin instance. Invalid payloads are logged and ignored.

        Returns:
            True if ``instance`` is (now) the registered plugin for its id
        """
        record = self.registry.register(instance)
        if record is None:
            return False
        if self.lifecycle.started:
            self.lifecycle.schedule_init(record.instance)
        return record.instance is instance

    def wait_for_registration(self, plugin_id: str, timeout_ms: Optional[float] = None):
        return self.registry.wait_for_registration(plugin_id, timeout_ms)

    # Lifecycle

    async def start(
        self,
        manifest: Optional[Iterable[Any]] = None,
        enabled: Any = None,
        app_id: Optional[str] = None,
        app_settings: Any = UNSET,
        dev_mode: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Start the runtime, or re-activate it with new configuration.

        Args:
            manifest: Plugin descriptors; defaults to the configured manifest
                file on the first call
            enabled: List of ids to add, or ``{id: {"enabled": bool}}`` map
            app_id: Host application id exposed to plugins
            app_settings: Host-level settings exposed to plugins
            dev_mode: Override the dev-mode flag

        Returns:
            ``{"enabled": [...]}``
        """
        return await self.lifecycle.start(
            manifest=manifest,
            enabled=enabled,
            app_id=app_id,
            app_settings=app_settings,
            dev_mode=dev_mode,
        )

    def apply_manifest(self, manifest: Optional[Iterable[Any]]) -> List[PluginDescriptor]:
        return self.lifecycle.apply_manifest(manifest)

    async def enable_plugin(self, plugin_id: str) -> bool:
        return await self.lifecycle.enable_plugin(plugin_id)

    async def disable_plugin(self, plugin_id: str) -> bool:
        return await self.lifecycle.disable_plugin(plugin_id)

    async def load_plugin(self, plugin_id: str) -> bool:
        return await self.lifecycle.load_plugin(plugin_id)

    # Queries

    def get_plugin(self, plugin_id: Any) -> Optional[Any]:
        return self.registry.get(plugin_id)

    def list_plugins(self) -> List[str]:
        return self.registry.list_ids()

    def get_manifest(self) -> List[PluginDescriptor]:
        return list(self.lifecycle.manifest)

    def get_enabled(self) -> List[str]:
        return self.lifecycle.get_enabled()

    def is_enabled(self, plugin_id: Any) -> bool:
        return self.lifecycle.is_enabled(plugin_id)

    def is_lazy(self, plugin_id: Any) -> bool:
        return self.lifecycle.is_lazy(plugin_id)

    def get_lazy_plugins(self) -> List[str]:
        return self.lifecycle.get_lazy_plugins()

    def get_dependencies(self, plugin_id: Any) -> List[str]:
        return self.lifecycle.resolver.get_dependencies(plugin_id)

    def get_dependents(self, plugin_id: Any) -> List[str]:
        return self.lifecycle.resolver.get_dependents(plugin_id)

    def get_host_context(self, plugin_id: str) -> HostContext:
        return self.lifecycle.get_host_context(plugin_id)

    # Host

    def extend_host(self, capabilities: Mapping[str, Any]) -> None:
        """Expose extra capabilities to every plugin's host context."""
        self.host_state.extend(capabilities)
        logger.debug("Host extended", capabilities=sorted(capabilities))

    # Events

    def on(self, event_name: str, handler: Callable[[Any], Any]) -> Callable[[], None]:
        return self.event_bus.on(event_name, handler)

    def off(self, event_name: str, handler: Callable[[Any], Any]) -> None:
        self.event_bus.off(event_name, handler)

    def emit(self, event_name: str, payload: Any = None) -> int:
        return self.event_bus.emit(event_name, payload)

    # Settings

    def get_plugin_settings(self, plugin_id: Any) -> Optional[Any]:
        return self.settings.get(plugin_id)

    def set_plugin_settings(self, plugin_id: Any, settings: Any) -> bool:
        return self.settings.set(plugin_id, settings)

    def update_plugin_settings(self, plugin_id: Any, patch: Mapping[str, Any]) -> bool:
        return self.settings.update(plugin_id, patch)

    def clear_plugin_settings(self, plugin_id: Any) -> bool:
        return self.settings.clear(plugin_id)

    # Dev mode and hot reload

    def set_dev_mode(self, enabled: bool) -> None:
        self.host_state.dev_mode = bool(enabled)
        logger.info("Dev mode changed", dev_mode=self.host_state.dev_mode)

    def is_dev_mode(self) -> bool:
        return self.host_state.dev_mode

    async def reload_plugin(self, plugin_id: str) -> Dict[str, Any]:
        return await self.hot_reload.reload_plugin(plugin_id)

    async def reload_all_plugins(self) -> Dict[str, Any]:
        return await self.hot_reload.reload_all_plugins()

    # Teardown

    async def shutdown(self) -> None:
        """Cancel pending work, flush settings and close storage."""
        await self.lifecycle.close()
        self.registry.close()
        await self.settings.close()
        await self.settings.storage.close()
        if _plugin_manager is self:
            set_plugin_manager(None)
        logger.info("Plugin runtime shut down")


# Global plugin manager
_plugin_manager: Optional[PluginManager] = None


def get_plugin_manager() -> PluginManager:
    """Get the global plugin manager, creating it from config on first use."""
    global _plugin_manager
    if _plugin_manager is None:
        _plugin_manager = PluginManager()
    return _plugin_manager


def set_plugin_manager(manager: Optional[PluginManager]) -> None:
    """Set (or with None, reset) the global plugin manager."""
    global _plugin_manager
    _plugin_manager = manager
