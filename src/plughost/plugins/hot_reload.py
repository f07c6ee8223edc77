"""Dev-mode hot reload of individual plugins."""

from typing import Any, Callable, Dict

from .interface import DevModeRequired, RegistrationTimeout, normalize_id
from .lifecycle import LifecycleManager
from ..core.event_bus import EventBus
from ..core.logger import get_logger

logger = get_logger(__name__)

PLUGIN_RELOADING = "plugin:reloading"
PLUGIN_RELOADED = "plugin:reloaded"


def _failure(error: str) -> Dict[str, Any]:
    return {"success": False, "error": error}


class HotReloadController:
    """
    Destroy, evict, reload and re-init plugins without restarting the host.

    Every operation checks the dev-mode gate first and reports failures as
    ``{"success": False, "error": ...}`` instead of raising.
    """

    def __init__(
        self,
        lifecycle: LifecycleManager,
        event_bus: EventBus,
        is_dev_mode: Callable[[], bool],
    ):
        self.lifecycle = lifecycle
        self.registry = lifecycle.registry
        self.event_bus = event_bus
        self._is_dev_mode = is_dev_mode

    def _check_gate(self) -> None:
        if not self._is_dev_mode():
            raise DevModeRequired("Dev mode is required for hot reload")

    async def reload_plugin(self, plugin_id: Any) -> Dict[str, Any]:
        """
        Reload one plugin from its manifest entry.

        Args:
            plugin_id: Plugin id

        Returns:
            ``{"success": True}`` or ``{"success": False, "error": str}``
        """
        try:
            self._check_gate()
        except DevModeRequired as e:
            return _failure(str(e))

        pid = normalize_id(plugin_id)
        descriptor = self.lifecycle.resolver.get_descriptor(pid)
        if descriptor is None:
            return _failure(f'Plugin "{pid}" is not in the manifest')
        if not descriptor.entry:
            return _failure(f'Plugin "{pid}" has no entry to reload')

        loader = self.lifecycle.loader
        if loader is None:
            return _failure("No loader configured")

        logger.info("Reloading plugin", plugin=pid)
        self.event_bus.emit(PLUGIN_RELOADING, {"id": pid})

        record = self.registry.get_record(pid)
        if record is not None:
            await self.lifecycle.teardown(record)

        try:
            loader.evict(descriptor.entry)
        except Exception as e:
            logger.warning("Failed to evict loaded entry", plugin=pid, entry=descriptor.entry, error=str(e))

        self.registry.evict(pid)

        try:
            ok = await loader.load(descriptor.entry, force_reload=True)
        except Exception as e:
            logger.error("Reload failed", plugin=pid, error=str(e), exc_info=True)
            return _failure(f'Failed to reload "{pid}": {e}')
        if not ok:
            logger.error("Reload failed", plugin=pid, entry=descriptor.entry)
            return _failure(f'Failed to load entry for "{pid}"')

        try:
            instance = await self.registry.wait_for_registration(
                pid, self.lifecycle.registration_timeout_ms
            )
        except RegistrationTimeout as e:
            return _failure(str(e))

        if self.lifecycle.is_enabled(pid):
            await self.lifecycle.init_plugin_if_enabled(instance)

        logger.info("Plugin reloaded", plugin=pid)
        self.event_bus.emit(PLUGIN_RELOADED, {"id": pid})
        return {"success": True}

    async def reload_all_plugins(self) -> Dict[str, Any]:
        """Reload every enabled plugin in turn, collecting per-plugin results."""
        try:
            self._check_gate()
        except DevModeRequired as e:
            return _failure(str(e))

        results: Dict[str, Dict[str, Any]] = {}
        for pid in self.lifecycle.get_enabled():
            results[pid] = await self.reload_plugin(pid)

        logger.info(
            "Reloaded all plugins",
            total=len(results),
            successful=sum(1 for r in results.values() if r.get("success"))
        )
        return {"success": True, "results": results}
