"""Host context handed to plugin ``init``."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from ..core.event_bus import EventBus
from ..core.logger import bind_logger
from ..core.settings import SettingsStore
from .loader import Loader


@dataclass
class HostState:
    """Host-wide values shared by every plugin's context."""

    app_id: str = "plughost"
    app_settings: Any = None
    dev_mode: bool = False
    capabilities: Dict[str, Any] = field(default_factory=dict)

    def extend(self, capabilities: Mapping[str, Any]) -> None:
        self.capabilities.update(capabilities)


class HostContext:
    """
    Per-plugin view of the host.

    Event bus methods and the loader are shared; settings accessors and the
    logger are bound to ``plugin_id``. Capabilities added with
    ``extend_host`` are looked up live, so contexts created earlier see them.
    """

    def __init__(
        self,
        plugin_id: str,
        state: HostState,
        event_bus: EventBus,
        settings: SettingsStore,
        loader: Optional[Loader] = None,
    ):
        self.plugin_id = plugin_id
        self._state = state
        self._event_bus = event_bus
        self._settings = settings
        self._loader = loader
        self.logger = bind_logger(__name__, plugin=plugin_id)

    @property
    def app_id(self) -> str:
        return self._state.app_id

    @property
    def app_settings(self) -> Any:
        return self._state.app_settings

    @property
    def dev_mode(self) -> bool:
        return self._state.dev_mode

    def __getattr__(self, name: str) -> Any:
        # Only reached for names not defined on the context itself
        state = self.__dict__.get("_state")
        if state is not None and name in state.capabilities:
            return state.capabilities[name]
        raise AttributeError(f"Host has no capability {name!r}")

    def has_capability(self, name: str) -> bool:
        return name in self._state.capabilities

    # Event bus

    def on(self, event_name: str, handler: Callable[[Any], Any]) -> Callable[[], None]:
        return self._event_bus.on(event_name, handler)

    def off(self, event_name: str, handler: Callable[[Any], Any]) -> None:
        self._event_bus.off(event_name, handler)

    def emit(self, event_name: str, payload: Any = None) -> int:
        return self._event_bus.emit(event_name, payload)

    # Settings bound to this plugin

    def get_settings(self) -> Optional[Any]:
        return self._settings.get(self.plugin_id)

    def set_settings(self, settings: Any) -> bool:
        return self._settings.set(self.plugin_id, settings)

    def update_settings(self, patch: Mapping[str, Any]) -> bool:
        return self._settings.update(self.plugin_id, patch)

    # Logging

    def log(self, event: str, **kwargs: Any) -> None:
        self.logger.info(event, **kwargs)

    def warn(self, event: str, **kwargs: Any) -> None:
        self.logger.warning(event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self.logger.error(event, **kwargs)

    # Resources

    async def load(self, locator: str) -> bool:
        """Load an extra resource through the runtime's loader."""
        if self._loader is None:
            return False
        try:
            return await self._loader.load(locator)
        except Exception as e:
            self.logger.error("Failed to load resource", locator=locator, error=str(e), exc_info=True)
            return False

    def __repr__(self) -> str:
        return f"HostContext(plugin_id={self.plugin_id!r}, app_id={self.app_id!r})"
