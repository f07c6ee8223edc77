"""Plugin contract, manifest descriptors and runtime error types."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from ..core.logger import get_logger

logger = get_logger(__name__)


class PluginError(Exception):
    """Base exception for plugin runtime errors."""
    pass


class RegistrationRejected(PluginError):
    """A registration payload was not a plugin or had no usable id."""
    pass


class RegistrationTimeout(PluginError, TimeoutError):
    """A plugin did not call register() within the wait window."""

    def __init__(self, plugin_id: str, timeout_ms: float):
        super().__init__(f'Plugin "{plugin_id}" did not register within {timeout_ms:g}ms')
        self.plugin_id = plugin_id
        self.timeout_ms = timeout_ms


class LifecycleError(PluginError):
    """A plugin's init() or destroy() raised."""
    pass


class DependencyCycle(PluginError):
    """A dependency edge closes a cycle and was dropped."""
    pass


class DependentBlock(PluginError):
    """A plugin cannot be disabled while enabled plugins depend on it."""
    pass


class DevModeRequired(PluginError):
    """Hot reload was requested while dev mode is off."""
    pass


def normalize_id(value: Any) -> str:
    """Coerce a plugin id to a trimmed string ('' when missing)."""
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class PluginDescriptor:
    """Manifest entry describing a loadable plugin."""

    id: str
    entry: str = ""
    enabled_by_default: bool = True
    dependencies: Tuple[str, ...] = field(default_factory=tuple)
    lazy: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PluginDescriptor":
        """Build a descriptor from a manifest mapping.

        Accepts both ``enabledByDefault`` and ``enabled_by_default``.
        """
        enabled_by_default = data.get("enabled_by_default", data.get("enabledByDefault", True))
        raw_deps = data.get("dependencies") or ()
        if isinstance(raw_deps, str):
            raw_deps = (raw_deps,)

        deps: List[str] = []
        for dep in raw_deps:
            dep_id = normalize_id(dep)
            if dep_id and dep_id not in deps:
                deps.append(dep_id)

        return cls(
            id=normalize_id(data.get("id")),
            entry=normalize_id(data.get("entry")),
            enabled_by_default=enabled_by_default is not False,
            dependencies=tuple(deps),
            lazy=bool(data.get("lazy", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert descriptor to a manifest mapping."""
        return {
            "id": self.id,
            "entry": self.entry,
            "enabled_by_default": self.enabled_by_default,
            "dependencies": list(self.dependencies),
            "lazy": self.lazy,
        }


def parse_manifest(raw: Optional[Iterable[Any]]) -> List[PluginDescriptor]:
    """
    Turn a raw manifest into descriptors.

    Args:
        raw: Iterable of mappings or PluginDescriptor objects

    Returns:
        Descriptors in manifest order; entries without an id are skipped
    """
    if raw is None or isinstance(raw, (str, bytes, Mapping)):
        return []

    descriptors: List[PluginDescriptor] = []
    for item in raw:
        if isinstance(item, PluginDescriptor):
            descriptor = item
        elif isinstance(item, Mapping):
            descriptor = PluginDescriptor.from_dict(item)
        else:
            logger.warning("Ignored manifest entry that is not a mapping", entry=repr(item))
            continue

        if not descriptor.id:
            logger.warning("Ignored manifest entry with missing id", entry=repr(item))
            continue
        descriptors.append(descriptor)
    return descriptors


def load_manifest_file(path: Path) -> List[PluginDescriptor]:
    """Read a JSON manifest file (a list of descriptor objects)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, Mapping):
        data = data.get("plugins", [])
    return parse_manifest(data)


@runtime_checkable
class PluginInstance(Protocol):
    """What plugin code hands to ``register()``.

    Only ``id`` is required. ``init(host)`` and ``destroy()`` are optional and
    may return awaitables; the runtime checks for them at call time.
    """

    id: str


def get_capability(instance: Any, name: str) -> Optional[Callable[..., Any]]:
    """Look up an optional callable on a plugin object or mapping."""
    if isinstance(instance, Mapping):
        candidate = instance.get(name)
    else:
        candidate = getattr(instance, name, None)
    return candidate if callable(candidate) else None


def get_plugin_id(instance: Any) -> str:
    """Read the normalized id of a plugin object or mapping."""
    if isinstance(instance, Mapping):
        return normalize_id(instance.get("id"))
    return normalize_id(getattr(instance, "id", None))


class BasePlugin:
    """Convenience base class for plugins.

    Subclasses set ``id`` and override ``init``/``destroy`` as needed.
    """

    id: str = ""

    def __init__(self, plugin_id: Optional[str] = None):
        if plugin_id is not None:
            self.id = plugin_id
        self.host: Any = None

    async def init(self, host: Any) -> None:
        """Called once when the plugin is activated."""
        self.host = host

    async def destroy(self) -> None:
        """Called when the plugin is disabled or reloaded."""
        self.host = None
