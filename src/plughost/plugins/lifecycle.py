"""Plugin lifecycle: enabled set, load passes, init and destroy."""

import asyncio
import inspect
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from .host import HostContext, HostState
from .interface import (
    DependentBlock,
    LifecycleError,
    PluginDescriptor,
    RegistrationTimeout,
    get_capability,
    get_plugin_id,
    load_manifest_file,
    normalize_id,
    parse_manifest,
)
from .loader import Loader
from .registry import PluginRecord, PluginRegistry
from .resolver import DependencyResolver
from ..core.event_bus import EventBus
from ..core.logger import get_logger
from ..core.settings import SettingsStore

logger = get_logger(__name__)

PLUGINS_STARTING = "plugins:starting"
PLUGINS_STARTED = "plugins:started"
PLUGINS_ACTIVATING = "plugins:activating"
PLUGINS_ACTIVATED = "plugins:activated"
PLUGIN_ENABLED = "plugin:enabled"
PLUGIN_DISABLED = "plugin:disabled"
PLUGIN_LOADED = "plugin:loaded"

UNSET: Any = object()


async def call_capability(instance: Any, name: str, *args: Any) -> bool:
    """
    Call an optional plugin capability, awaiting it if it returns an awaitable.

    Returns:
        False if the plugin does not expose the capability

    Raises:
        LifecycleError: If the capability raised
    """
    func = get_capability(instance, name)
    if func is None:
        return False
    try:
        result = func(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        raise LifecycleError(f"{name}() failed: {e}") from e
    return True


class LifecycleManager:
    """
    Drive plugins through enable, load, init and destroy.

    Owns the manifest, the enabled set (insertion ordered) and the set of
    lazy plugins still waiting for an explicit load.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        event_bus: EventBus,
        settings: SettingsStore,
        loader: Optional[Loader] = None,
        host_state: Optional[HostState] = None,
        manifest_path: Optional[Path] = None,
        registration_timeout_ms: Optional[float] = None,
    ):
        self.registry = registry
        self.event_bus = event_bus
        self.settings = settings
        self.loader = loader
        self.host_state = host_state or HostState()
        self.manifest_path = manifest_path
        self.registration_timeout_ms = registration_timeout_ms
        self.resolver = DependencyResolver(lambda: self.manifest)

        self.manifest: List[PluginDescriptor] = []
        self.started = False
        self._manifest_applied = False
        self._enabled: Dict[str, None] = {}
        self._lazy: Set[str] = set()
        self._contexts: Dict[str, HostContext] = {}
        self._start_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # Manifest and enabled set

    def apply_manifest(self, raw_manifest: Optional[Iterable[Any]]) -> List[PluginDescriptor]:
        """Replace the manifest wholesale and recompute the lazy set."""
        self.manifest = parse_manifest(raw_manifest)
        self._manifest_applied = True
        self._lazy = {
            d.id for d in self.manifest
            if d.lazy and not self.registry.is_inited(d.id)
        }
        logger.info("Manifest applied", plugins=len(self.manifest), lazy=len(self._lazy))
        return list(self.manifest)

    def _default_manifest(self) -> List[Any]:
        if self.manifest_path is None or not self.manifest_path.exists():
            return []
        try:
            return load_manifest_file(self.manifest_path)
        except (OSError, ValueError) as e:
            logger.error("Failed to read manifest file", path=str(self.manifest_path), error=str(e))
            return []

    def manifest_defaults(self) -> List[str]:
        """Ids the manifest enables by default, in manifest order."""
        return [d.id for d in self.manifest if d.enabled_by_default]

    def update_enabled(self, enabled: Any = None) -> None:
        """
        Merge explicit configuration into the enabled set.

        A sequence of ids is added to the current set. A mapping of
        ``{id: {"enabled": bool}}`` is applied over the manifest defaults and
        replaces the set. With nothing given an empty set falls back to the
        manifest defaults.
        """
        if isinstance(enabled, Mapping):
            result = dict.fromkeys(self.manifest_defaults())
            for raw_id, entry in enabled.items():
                pid = normalize_id(raw_id)
                if not pid:
                    continue
                flag = entry.get("enabled") if isinstance(entry, Mapping) else entry
                if flag is True:
                    result[pid] = None
                elif flag is False:
                    result.pop(pid, None)
            self._enabled = result
            return

        if enabled is not None and not isinstance(enabled, (str, bytes)):
            for raw_id in enabled:
                pid = normalize_id(raw_id)
                if pid:
                    self._enabled[pid] = None
            return

        if not self._enabled:
            self._enabled = dict.fromkeys(self.manifest_defaults())

    def get_enabled(self) -> List[str]:
        return list(self._enabled)

    def is_enabled(self, plugin_id: Any) -> bool:
        return normalize_id(plugin_id) in self._enabled

    def is_lazy(self, plugin_id: Any) -> bool:
        return normalize_id(plugin_id) in self._lazy

    def get_lazy_plugins(self) -> List[str]:
        return sorted(self._lazy)

    def ensure_enabled(self, plugin_id: str) -> List[str]:
        """
        Enable a plugin together with its missing dependencies.

        Dependencies are added first, deepest first, so the enabled set never
        holds a plugin without its requirements.

        Returns:
            The dependency ids that had to be auto-enabled
        """
        pid = normalize_id(plugin_id)
        if not pid:
            return []

        auto_enabled: List[str] = []
        for dep in self.resolver.get_dependencies(pid):
            if dep not in self._enabled:
                self._enabled[dep] = None
                auto_enabled.append(dep)
                logger.info("Auto-enabled dependency", plugin=pid, dependency=dep)

        self._enabled.setdefault(pid, None)
        return auto_enabled

    # Init and destroy

    def get_host_context(self, plugin_id: str) -> HostContext:
        pid = normalize_id(plugin_id)
        context = self._contexts.get(pid)
        if context is None:
            context = HostContext(pid, self.host_state, self.event_bus, self.settings, self.loader)
            self._contexts[pid] = context
        return context

    async def init_plugin_if_enabled(self, instance: Any) -> bool:
        """
        Initialize a registered plugin if it is enabled and not yet inited.

        The inited flag is set before ``init`` runs, so concurrent triggers
        cannot init twice. Errors from ``init`` are logged, never raised.

        Returns:
            True if ``init`` ran to completion
        """
        if instance is None:
            return False
        pid = get_plugin_id(instance)
        if not pid or pid not in self._enabled:
            return False

        record = self.registry.get_record(pid)
        if record is None or record.instance is not instance or record.inited:
            return False
        if get_capability(instance, "init") is None:
            return False

        record.inited = True
        try:
            await call_capability(instance, "init", self.get_host_context(pid))
        except LifecycleError as e:
            logger.error("Plugin init failed", plugin=pid, error=str(e.__cause__ or e), exc_info=True)
            return False

        logger.info("Plugin initialized", plugin=pid)
        return True

    async def teardown(self, record: PluginRecord) -> None:
        """Run the plugin's ``destroy`` (if any) and clear its inited flag."""
        try:
            await call_capability(record.instance, "destroy")
        except LifecycleError as e:
            logger.error("Plugin destroy failed", plugin=record.id, error=str(e.__cause__ or e), exc_info=True)
        finally:
            record.inited = False

    def schedule_init(self, instance: Any) -> None:
        """Queue an init attempt for a plugin registered after start."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, init deferred to next load pass", plugin=get_plugin_id(instance))
            return

        task = loop.create_task(self.init_plugin_if_enabled(instance))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Load passes

    async def _load_one(self, plugin_id: str) -> bool:
        record = self.registry.get_record(plugin_id)
        if record is not None:
            await self.init_plugin_if_enabled(record.instance)
            return True

        descriptor = self.resolver.get_descriptor(plugin_id)
        if descriptor is None or not descriptor.entry:
            logger.warning("Missing entry for enabled plugin", plugin=plugin_id)
            return False
        if self.loader is None:
            logger.warning("No loader configured, cannot load plugin", plugin=plugin_id)
            return False

        try:
            ok = await self.loader.load(descriptor.entry)
        except Exception as e:
            logger.error("Loader raised", plugin=plugin_id, entry=descriptor.entry, error=str(e), exc_info=True)
            return False
        if not ok:
            logger.warning("Failed to load plugin entry", plugin=plugin_id, entry=descriptor.entry)
            return False

        try:
            instance = await self.registry.wait_for_registration(plugin_id, self.registration_timeout_ms)
        except RegistrationTimeout as e:
            logger.warning("Plugin skipped", plugin=plugin_id, reason=str(e))
            return False

        await self.init_plugin_if_enabled(instance)
        return True

    async def load_enabled_plugins(self, roots: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """
        Load and init plugins in dependency order.

        Args:
            roots: Ids to load; defaults to every enabled, non-lazy plugin

        Returns:
            Mapping of each visited id to whether it ended up registered
        """
        if roots is None:
            root_ids = [pid for pid in self._enabled if pid not in self._lazy]
        else:
            root_ids = [pid for pid in (normalize_id(r) for r in roots) if pid]

        for pid in root_ids:
            self.ensure_enabled(pid)

        results: Dict[str, bool] = {}
        for pid in self.resolver.load_order(root_ids):
            self._lazy.discard(pid)
            results[pid] = await self._load_one(pid)
        return results

    # Public operations

    async def enable_plugin(self, plugin_id: Any) -> bool:
        """Enable a plugin (and its dependencies); loads it if already started."""
        pid = normalize_id(plugin_id)
        if not pid:
            return False
        if pid in self._enabled:
            return True

        self._lazy.discard(pid)
        auto_enabled = self.ensure_enabled(pid)
        logger.info("Plugin enabled", plugin=pid, dependencies=auto_enabled)

        if self.started:
            await self.load_enabled_plugins()
            self.event_bus.emit(PLUGIN_ENABLED, {"id": pid, "dependencies": auto_enabled})
        return True

    def _check_dependents(self, plugin_id: str) -> None:
        blockers = [d for d in self.resolver.get_dependents(plugin_id) if d in self._enabled]
        if blockers:
            raise DependentBlock(
                f'Plugin "{plugin_id}" is required by enabled plugins: {", ".join(blockers)}'
            )

    async def disable_plugin(self, plugin_id: Any) -> bool:
        """
        Disable a plugin.

        Refused (returns False, nothing changes) while an enabled plugin
        depends on it.
        """
        pid = normalize_id(plugin_id)
        if not pid:
            return False
        if pid not in self._enabled:
            return True

        try:
            self._check_dependents(pid)
        except DependentBlock as e:
            logger.warning("Cannot disable plugin", plugin=pid, reason=str(e))
            return False

        del self._enabled[pid]
        record = self.registry.get_record(pid)
        if record is not None:
            await self.teardown(record)

        logger.info("Plugin disabled", plugin=pid)
        self.event_bus.emit(PLUGIN_DISABLED, {"id": pid})
        return True

    async def load_plugin(self, plugin_id: Any) -> bool:
        """Enable and load one plugin on demand (used for lazy plugins)."""
        pid = normalize_id(plugin_id)
        if not pid:
            return False

        self._lazy.discard(pid)
        self.ensure_enabled(pid)
        results = await self.load_enabled_plugins([pid])
        loaded = results.get(pid, False)
        if loaded:
            self.event_bus.emit(PLUGIN_LOADED, {"id": pid})
        return loaded

    async def start(
        self,
        manifest: Optional[Iterable[Any]] = None,
        enabled: Any = None,
        app_id: Optional[str] = None,
        app_settings: Any = UNSET,
        dev_mode: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Start (or re-activate) the runtime.

        Calls are serialized: an overlapping call waits for the one in flight
        and then runs against the state it left behind.

        Returns:
            ``{"enabled": [...]}`` after the load pass
        """
        async with self._start_lock:
            if dev_mode is not None:
                self.host_state.dev_mode = bool(dev_mode)

            if not self.settings.loaded:
                await self.settings.load()

            if app_id:
                self.host_state.app_id = str(app_id)
            if app_settings is not UNSET:
                self.host_state.app_settings = app_settings

            if manifest is not None or not self._manifest_applied:
                self.apply_manifest(manifest if manifest is not None else self._default_manifest())

            self.update_enabled(enabled)

            first_start = not self.started
            self.started = True
            self.event_bus.emit(
                PLUGINS_STARTING if first_start else PLUGINS_ACTIVATING,
                {"enabled": self.get_enabled()}
            )

            results = await self.load_enabled_plugins()
            logger.info(
                "Plugin load pass completed",
                total=len(results),
                successful=sum(1 for v in results.values() if v)
            )

            self.event_bus.emit(
                PLUGINS_STARTED if first_start else PLUGINS_ACTIVATED,
                {"enabled": self.get_enabled()}
            )
            return {"enabled": self.get_enabled()}

    async def close(self) -> None:
        """Cancel queued init attempts."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
