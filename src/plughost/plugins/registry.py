"""Registry of plugin instances and pending registration waits."""

import asyncio
import functools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .interface import RegistrationRejected, RegistrationTimeout, get_plugin_id, normalize_id
from ..core.event_bus import EventBus
from ..core.logger import get_logger

logger = get_logger(__name__)

PLUGIN_REGISTERED = "plugin:registered"

_PRIMITIVES = (str, bytes, bytearray, int, float, bool)


@dataclass
class PluginRecord:
    """A registered plugin instance and its runtime bookkeeping."""

    id: str
    instance: Any
    inited: bool = False
    registered_at: datetime = field(default_factory=datetime.now)


@dataclass
class PendingRegistration:
    """An in-flight wait for ``register()``; settled exactly once."""

    future: asyncio.Future
    timeout_handle: Optional[asyncio.TimerHandle] = None


def _consume_exception(future: asyncio.Future) -> None:
    # Waits nobody awaits any more must not warn about unretrieved errors
    if not future.cancelled():
        future.exception()


def _forward_outcome(source: asyncio.Future, waiter: asyncio.Future) -> None:
    if waiter.done():
        return
    if source.cancelled():
        waiter.cancel()
    elif source.exception() is not None:
        waiter.set_exception(source.exception())
    else:
        waiter.set_result(source.result())


class PluginRegistry:
    """Holds plugin instances keyed by id. The first registration wins."""

    def __init__(self, event_bus: EventBus, default_timeout_ms: float = 8000):
        self.event_bus = event_bus
        self.default_timeout_ms = default_timeout_ms
        self._records: Dict[str, PluginRecord] = {}
        self._pending: Dict[str, PendingRegistration] = {}

    def validate(self, instance: Any) -> str:
        """
        Check a registration payload.

        Returns:
            The normalized plugin id

        Raises:
            RegistrationRejected: If the payload is not a plugin object or its
                id is missing or blank
        """
        if instance is None or isinstance(instance, _PRIMITIVES):
            raise RegistrationRejected(f"Invalid plugin registration: {instance!r}")
        plugin_id = get_plugin_id(instance)
        if not plugin_id:
            raise RegistrationRejected(f"Plugin registration with missing id: {instance!r}")
        return plugin_id

    def register(self, instance: Any) -> Optional[PluginRecord]:
        """
        Register a plugin instance.

        Args:
            instance: Plugin object or mapping with an ``id``

        Returns:
            The stored record (the earlier one for a duplicate id), or None if
            the payload was rejected
        """
        try:
            plugin_id = self.validate(instance)
        except RegistrationRejected as e:
            logger.warning("Ignored plugin registration", reason=str(e))
            return None

        record = self._records.get(plugin_id)
        if record is None:
            record = PluginRecord(id=plugin_id, instance=instance)
            self._records[plugin_id] = record
            logger.info("Plugin registered", plugin=plugin_id)
            self.event_bus.emit(PLUGIN_REGISTERED, {"id": plugin_id})
        elif record.instance is not instance:
            logger.warning("Ignored duplicate plugin registration", plugin=plugin_id)

        self._settle(plugin_id, record.instance)
        return record

    def _settle(self, plugin_id: str, instance: Any) -> None:
        pending = self._pending.pop(plugin_id, None)
        if pending is None:
            return
        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        if not pending.future.done():
            pending.future.set_result(instance)

    def _expire(self, plugin_id: str, timeout_ms: float) -> None:
        pending = self._pending.pop(plugin_id, None)
        if pending is None or pending.future.done():
            return
        logger.warning("Plugin registration timed out", plugin=plugin_id, timeout_ms=timeout_ms)
        pending.future.set_exception(RegistrationTimeout(plugin_id, timeout_ms))

    def wait_for_registration(
        self,
        plugin_id: str,
        timeout_ms: Optional[float] = None,
    ) -> asyncio.Future:
        """
        Wait for a plugin to call ``register()``.

        Concurrent callers for the same id share one underlying wait and
        timer; each gets its own future, so cancelling one caller does not
        affect the others. Must be called from a running event loop.

        Args:
            plugin_id: Plugin id to wait for
            timeout_ms: Wait window in milliseconds (default from config)

        Returns:
            Future resolving to the plugin instance (None for a blank id), or
            failing with RegistrationTimeout
        """
        loop = asyncio.get_running_loop()
        pid = normalize_id(plugin_id)

        existing = self._records.get(pid) if pid else None
        if not pid or existing is not None:
            future = loop.create_future()
            future.set_result(existing.instance if existing else None)
            return future

        pending = self._pending.get(pid)
        if pending is not None and pending.future.done():
            self._pending.pop(pid)
            pending = None

        if pending is None:
            timeout = self.default_timeout_ms if timeout_ms is None else timeout_ms
            future = loop.create_future()
            future.add_done_callback(_consume_exception)
            pending = PendingRegistration(future=future)
            pending.timeout_handle = loop.call_later(
                max(timeout, 0) / 1000.0, self._expire, pid, timeout
            )
            self._pending[pid] = pending

        # Cancelling one caller's waiter leaves the shared wait untouched
        waiter = loop.create_future()
        waiter.add_done_callback(_consume_exception)
        pending.future.add_done_callback(functools.partial(_forward_outcome, waiter=waiter))
        return waiter

    def has_pending(self, plugin_id: str) -> bool:
        return normalize_id(plugin_id) in self._pending

    def get(self, plugin_id: Any) -> Optional[Any]:
        """Get a registered plugin instance, or None."""
        record = self.get_record(plugin_id)
        return record.instance if record else None

    def get_record(self, plugin_id: Any) -> Optional[PluginRecord]:
        pid = normalize_id(plugin_id)
        if not pid:
            return None
        return self._records.get(pid)

    def list_ids(self) -> List[str]:
        """Sorted ids of all registered plugins."""
        return sorted(self._records)

    def is_inited(self, plugin_id: str) -> bool:
        record = self.get_record(plugin_id)
        return bool(record and record.inited)

    def evict(self, plugin_id: str) -> Optional[PluginRecord]:
        """Remove a plugin instance so that a later registration is accepted."""
        record = self._records.pop(normalize_id(plugin_id), None)
        if record is not None:
            record.inited = False
            logger.debug("Plugin evicted from registry", plugin=record.id)
        return record

    def close(self) -> None:
        """Cancel every pending registration wait."""
        for pending in self._pending.values():
            if pending.timeout_handle is not None:
                pending.timeout_handle.cancel()
            if not pending.future.done():
                pending.future.cancel()
        self._pending.clear()
