"""Per-plugin settings store persisted as a single JSON blob."""

import asyncio
import json
from typing import Any, Dict, Mapping, Optional

from .event_bus import EventBus
from .logger import get_logger
from .storage import MemoryStorage, Storage

logger = get_logger(__name__)

SETTINGS_CHANGED = "settings-changed"
SETTINGS_CLEARED = "settings-cleared"


def _normalize_id(plugin_id: Any) -> str:
    if plugin_id is None:
        return ""
    return str(plugin_id).strip()


class SettingsStore:
    """
    Settings keyed by plugin id.

    Reads and mutations are synchronous and never raise. Every mutation marks
    the store dirty; one debounced flush task writes the whole store to the
    backing :class:`Storage` under ``key``. Mutations made while no event loop
    is running are written by the next :meth:`flush`.
    """

    def __init__(
        self,
        event_bus: EventBus,
        storage: Optional[Storage] = None,
        key: str = "plugin-settings",
        flush_delay: float = 0.05,
    ):
        self.event_bus = event_bus
        self.storage = storage or MemoryStorage()
        self.key = key
        self.flush_delay = flush_delay

        self._settings: Dict[str, Any] = {}
        self._loaded = False
        self._dirty = False
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """
        Load persisted settings from storage.

        Entries already set in memory win over persisted ones. A missing,
        unreadable or malformed blob leaves the store empty.
        """
        self._loaded = True
        try:
            blob = await self.storage.get(self.key)
        except Exception as e:
            logger.warning("Failed to read plugin settings", key=self.key, error=str(e))
            return

        if not blob:
            return

        try:
            data = json.loads(blob)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to parse plugin settings", key=self.key, error=str(e))
            return

        if not isinstance(data, dict):
            logger.warning(
                "Ignoring plugin settings blob that is not an object",
                key=self.key,
                type=type(data).__name__
            )
            return

        for plugin_id, value in data.items():
            self._settings.setdefault(str(plugin_id), value)
        logger.debug("Plugin settings loaded", plugins=len(data))

    def get(self, plugin_id: str) -> Optional[Any]:
        """Get settings for a plugin, or None if there are none."""
        pid = _normalize_id(plugin_id)
        if not pid:
            return None
        return self._settings.get(pid)

    def set(self, plugin_id: str, settings: Any) -> bool:
        """
        Replace a plugin's settings.

        Args:
            plugin_id: Plugin id
            settings: JSON-compatible settings value

        Returns:
            True if stored, False for an empty id or a value that cannot be
            serialized to JSON
        """
        pid = _normalize_id(plugin_id)
        if not pid:
            return False

        try:
            json.dumps(settings)
        except (TypeError, ValueError) as e:
            logger.warning("Rejected settings that are not JSON-compatible", plugin=pid, error=str(e))
            return False

        old_settings = self._settings.get(pid)
        self._settings[pid] = settings
        self._schedule_flush()

        self.event_bus.emit(SETTINGS_CHANGED, {
            "id": pid,
            "settings": settings,
            "old_settings": old_settings,
        })
        return True

    def update(self, plugin_id: str, patch: Mapping[str, Any]) -> bool:
        """Shallow-merge ``patch`` over the plugin's current settings."""
        pid = _normalize_id(plugin_id)
        if not pid:
            return False

        current = self._settings.get(pid)
        merged = dict(current) if isinstance(current, Mapping) else {}
        merged.update(patch or {})
        return self.set(pid, merged)

    def clear(self, plugin_id: str) -> bool:
        """Remove a plugin's settings."""
        pid = _normalize_id(plugin_id)
        if not pid:
            return False

        old_settings = self._settings.pop(pid, None)
        self._schedule_flush()

        self.event_bus.emit(SETTINGS_CLEARED, {"id": pid, "old_settings": old_settings})
        return True

    def snapshot(self) -> Dict[str, Any]:
        """Shallow copy of every stored entry."""
        return dict(self._settings)

    def _schedule_flush(self) -> None:
        self._dirty = True
        if self._flush_task is not None and not self._flush_task.done():
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        self._flush_task = loop.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        # Changes made while a write is in flight are picked up by the next round
        while self._dirty:
            await asyncio.sleep(self.flush_delay)
            if not await self.flush():
                break

    async def flush(self) -> bool:
        """
        Write the store to storage now if it has unsaved changes.

        Returns:
            False if the write failed, True otherwise
        """
        if not self._dirty:
            return True

        self._dirty = False
        blob = json.dumps(self._settings)
        try:
            await self.storage.set(self.key, blob)
        except Exception as e:
            self._dirty = True
            logger.error("Failed to persist plugin settings", key=self.key, error=str(e), exc_info=True)
            return False
        return True

    async def close(self) -> None:
        """Flush pending changes and cancel the debounce task."""
        task = self._flush_task
        self._flush_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.flush()
