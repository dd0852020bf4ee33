from .loader import load_config
from .models import (
    ContentConfig,
    DatabaseConfig,
    EmbeddingConfig,
    MediaConfig,
    PluginSettings,
    PluginsConfig,
    StorageConfig,
    VaultpressConfig,
    WorkerConfig,
)

__all__ = [
    "ContentConfig",
    "DatabaseConfig",
    "EmbeddingConfig",
    "MediaConfig",
    "PluginSettings",
    "PluginsConfig",
    "StorageConfig",
    "VaultpressConfig",
    "WorkerConfig",
    "load_config",
]
