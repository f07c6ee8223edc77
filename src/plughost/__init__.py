"""plughost - host-embeddable plugin runtime.

Plugin modules register themselves with the process-wide runtime::

    import plughost

    class Greeter(plughost.BasePlugin):
        id = "greeter"

        async def init(self, host):
            host.on("document:opened", lambda doc: host.log("opened", doc=doc))

    plughost.register(Greeter())
"""

from typing import Any

from .core.config import RuntimeConfig
from .core.logger import setup_logger
from .plugins import (
    BasePlugin,
    Loader,
    ModuleLoader,
    PluginDescriptor,
    PluginError,
    PluginManager,
    RegistrationTimeout,
    get_plugin_manager,
    set_plugin_manager,
)

__version__ = "0.1.0"


def register(instance: Any) -> bool:
    """Register a plugin with the global plugin manager."""
    return get_plugin_manager().register(instance)


__all__ = [
    "__version__",
    "BasePlugin",
    "Loader",
    "ModuleLoader",
    "PluginDescriptor",
    "PluginError",
    "PluginManager",
    "RegistrationTimeout",
    "RuntimeConfig",
    "get_plugin_manager",
    "register",
    "set_plugin_manager",
    "setup_logger",
]
