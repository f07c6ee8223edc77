"""Plugin registry, dependency resolution, lifecycle and hot reload."""

from .interface import (
    BasePlugin,
    PluginDescriptor,
    PluginError,
    PluginInstance,
    RegistrationTimeout,
    parse_manifest,
)
from .loader import Loader, ModuleLoader
from .manager import PluginManager, get_plugin_manager, set_plugin_manager

__all__ = [
    "BasePlugin",
    "PluginDescriptor",
    "PluginError",
    "PluginInstance",
    "RegistrationTimeout",
    "parse_manifest",
    "Loader",
    "ModuleLoader",
    "PluginManager",
    "get_plugin_manager",
    "set_plugin_manager",
]
