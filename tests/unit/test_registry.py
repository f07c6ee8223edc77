"""
Tests for the plugin registry.

This test suite covers:
1. First-registration-wins semantics
2. Rejection of invalid payloads
3. Registration waits: immediate, shared and timed out
"""

import asyncio

import pytest

from plughost.core.event_bus import EventBus
from plughost.plugins.interface import RegistrationTimeout
from plughost.plugins.registry import PLUGIN_REGISTERED, PluginRegistry


class Plugin:
    def __init__(self, plugin_id, label=""):
        self.id = plugin_id
        self.label = label


class TestRegister:
    """Test register()."""

    def test_first_registration_wins(self):
        """A second registration for the same id should be ignored."""
        bus = EventBus()
        registry = PluginRegistry(bus)
        received = []
        bus.on(PLUGIN_REGISTERED, received.append)

        first = Plugin("notes", "first")
        second = Plugin("notes", "second")
        registry.register(first)
        record = registry.register(second)

        assert record.instance is first
        assert registry.get("notes").label == "first"
        assert received == [{"id": "notes"}]

    def test_invalid_payloads_are_ignored(self):
        """Non-objects and blank ids should be rejected without raising."""
        registry = PluginRegistry(EventBus())

        for payload in (None, "notes", 42, True, b"x", Plugin(""), Plugin("   "), {"id": None}):
            assert registry.register(payload) is None

        assert registry.list_ids() == []

    def test_mapping_plugin_is_accepted(self):
        """Plain mappings with an id are valid plugins."""
        registry = PluginRegistry(EventBus())

        registry.register({"id": " mapped "})

        assert registry.list_ids() == ["mapped"]

    def test_lookups(self):
        """get() trims ids and list_ids() is sorted."""
        registry = PluginRegistry(EventBus())
        registry.register(Plugin("zeta"))
        registry.register(Plugin("alpha"))

        assert registry.list_ids() == ["alpha", "zeta"]
        assert registry.get(" zeta ").id == "zeta"
        assert registry.get("") is None
        assert registry.get(None) is None
        assert registry.get("missing") is None

    def test_evict_allows_new_registration(self):
        """After eviction a new instance can take the id."""
        registry = PluginRegistry(EventBus())
        old = Plugin("notes", "old")
        registry.register(old)
        registry.get_record("notes").inited = True

        evicted = registry.evict("notes")
        registry.register(Plugin("notes", "new"))

        assert evicted.instance is old
        assert evicted.inited is False
        assert registry.get("notes").label == "new"


class TestWaitForRegistration:
    """Test registration waits."""

    @pytest.mark.asyncio
    async def test_resolves_immediately_when_registered(self):
        """Waiting on a registered id should not block."""
        registry = PluginRegistry(EventBus())
        plugin = Plugin("notes")
        registry.register(plugin)

        assert await registry.wait_for_registration("notes") is plugin

    @pytest.mark.asyncio
    async def test_blank_id_resolves_to_none(self):
        """A blank id resolves immediately to None."""
        registry = PluginRegistry(EventBus())

        assert await registry.wait_for_registration("  ") is None

    @pytest.mark.asyncio
    async def test_concurrent_waiters_share_one_wait(self):
        """All waiters for one id should settle from a single register()."""
        registry = PluginRegistry(EventBus())

        first = registry.wait_for_registration("notes", 1000)
        second = registry.wait_for_registration(" notes ", 1000)
        assert first is not second
        assert registry.has_pending("notes")

        plugin = Plugin("notes")
        registry.register(plugin)

        assert await first is plugin
        assert await second is plugin
        assert not registry.has_pending("notes")

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_affect_others(self):
        """Cancelling one caller should leave the other waiters pending."""
        registry = PluginRegistry(EventBus())

        impatient = registry.wait_for_registration("notes", 1000)
        patient = registry.wait_for_registration("notes", 1000)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(impatient, 0.01)

        assert impatient.cancelled()
        assert not patient.done()
        assert registry.has_pending("notes")

        plugin = Plugin("notes")
        registry.register(plugin)

        assert await patient is plugin

    @pytest.mark.asyncio
    async def test_shared_timeout_reaches_every_waiter(self):
        """One timer should fail all waiters for the id together."""
        registry = PluginRegistry(EventBus())

        first = registry.wait_for_registration("ghost", 20)
        second = registry.wait_for_registration("ghost", 5000)

        with pytest.raises(RegistrationTimeout):
            await first
        with pytest.raises(RegistrationTimeout):
            await second

    @pytest.mark.asyncio
    async def test_times_out(self):
        """An id that never registers should fail with RegistrationTimeout."""
        registry = PluginRegistry(EventBus())
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(RegistrationTimeout) as exc_info:
            await registry.wait_for_registration("ghost", 50)

        elapsed = loop.time() - started
        assert 0.04 <= elapsed < 1.0
        assert exc_info.value.plugin_id == "ghost"
        assert not registry.has_pending("ghost")

    @pytest.mark.asyncio
    async def test_register_after_timeout_starts_fresh(self):
        """A timed-out wait should not affect later waits."""
        registry = PluginRegistry(EventBus())

        with pytest.raises(RegistrationTimeout):
            await registry.wait_for_registration("late", 10)

        waiter = registry.wait_for_registration("late", 1000)
        registry.register(Plugin("late"))

        assert (await waiter).id == "late"

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self):
        """close() should cancel every outstanding wait."""
        registry = PluginRegistry(EventBus())
        waiter = registry.wait_for_registration("ghost", 1000)

        registry.close()
        await asyncio.sleep(0)

        assert waiter.cancelled()
        assert not registry.has_pending("ghost")
