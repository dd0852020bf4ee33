from .defaults import DEFAULT_PLUGINS, default_plugin
from .loader import PluginLoader, PluginNotFoundError
from .manager import (
    PluginCycleError,
    PluginInitializationError,
    PluginManager,
    topological_sort,
)

__all__ = [
    "DEFAULT_PLUGINS",
    "PluginCycleError",
    "PluginInitializationError",
    "PluginLoader",
    "PluginManager",
    "PluginNotFoundError",
    "default_plugin",
    "topological_sort",
]
