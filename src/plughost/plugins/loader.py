"""Loaders that make plugin code executable."""

import importlib.util
import itertools
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from ..core.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Loader(Protocol):
    """Loader capability used by the runtime.

    ``load`` returns whether the code behind ``locator`` was executed (or was
    already loaded). With ``force_reload`` it must execute the code again.
    ``evict`` forgets that a locator was loaded.
    """

    async def load(self, locator: str, *, force_reload: bool = False) -> bool:
        ...

    def evict(self, locator: str) -> None:
        ...


class ModuleLoader:
    """
    Load plugin entry files as Python modules.

    Locators are file paths, relative ones resolved against ``plugin_dir``.
    Plugin modules are expected to call ``plughost.register(...)`` at import
    time. Each forced reload imports the file under a fresh module name, so
    no cached module object is reused.
    """

    MODULE_PREFIX = "plughost_plugin_"

    def __init__(self, plugin_dir: Optional[Path] = None):
        self.plugin_dir = Path(plugin_dir) if plugin_dir else Path.cwd()
        self._loaded: Dict[Path, str] = {}  # resolved path -> module name
        self._counter = itertools.count(1)

    def resolve(self, locator: str) -> Optional[Path]:
        """Resolve a locator to an absolute file path (None when blank)."""
        text = str(locator or "").strip()
        if not text:
            return None
        path = Path(text)
        if not path.is_absolute():
            path = self.plugin_dir / path
        return path.resolve()

    def is_loaded(self, locator: str) -> bool:
        path = self.resolve(locator)
        return path is not None and path in self._loaded

    def evict(self, locator: str) -> None:
        """Forget a loaded locator and drop its module from ``sys.modules``."""
        path = self.resolve(locator)
        if path is None:
            return
        module_name = self._loaded.pop(path, None)
        if module_name and module_name in sys.modules:
            del sys.modules[module_name]

    def _module_name(self, path: Path) -> str:
        stem = re.sub(r"\W", "_", path.parent.name + "_" + path.stem)
        return f"{self.MODULE_PREFIX}{stem}_{next(self._counter)}"

    async def load(self, locator: str, *, force_reload: bool = False) -> bool:
        """
        Execute a plugin entry file.

        Args:
            locator: Path to the entry file
            force_reload: Execute the file again even if it was loaded before

        Returns:
            True if the module executed (or was already loaded)
        """
        path = self.resolve(locator)
        if path is None:
            return False

        if force_reload:
            self.evict(locator)
        elif path in self._loaded:
            return True

        if not path.is_file():
            logger.warning("Plugin entry not found", path=str(path))
            return False

        module_name = self._module_name(path)
        try:
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                logger.error("Failed to create module spec", path=str(path))
                return False

            module = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = module
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            logger.error("Failed to load plugin module", path=str(path), error=str(e), exc_info=True)
            return False

        self._loaded[path] = module_name
        logger.debug("Plugin module loaded", path=str(path), module=module_name)
        return True

    def get_module(self, locator: str) -> Optional[Any]:
        """Return the module object loaded for a locator, if any."""
        path = self.resolve(locator)
        if path is None or path not in self._loaded:
            return None
        return sys.modules.get(self._loaded[path])
