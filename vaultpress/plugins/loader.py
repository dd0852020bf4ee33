"""Dynamic plugin discovery and loading via entry points."""

from __future__ import annotations

import importlib
import importlib.metadata
import logging
from typing import TYPE_CHECKING

from vaultpress.interfaces.plugin import CapabilityKind, Plugin, SharedResources

if TYPE_CHECKING:
    from vaultpress.config.models import PluginSettings, VaultpressConfig

logger = logging.getLogger(__name__)


class PluginNotFoundError(Exception):
    """Raised when a requested plugin cannot be found."""

    def __init__(self, plugin_type: str, name: str | None = None):
        self.plugin_type = plugin_type
        self.name = name
        msg = f"No {plugin_type} plugin found"
        if name:
            msg += f" with name '{name}'"
        super().__init__(msg)


class PluginLoader:
    """Resolves configured plugin names to instances.

    Fallback chain for an enabled capability: entry point registered under
    ``vaultpress.plugins.<kind>`` > built-in implementation. A name that
    resolves to neither raises :class:`PluginNotFoundError`. Disabled
    capabilities produce nothing; the manager substitutes the no-op.
    """

    # Entry point group names
    GROUPS = {kind: f"vaultpress.plugins.{kind.value}" for kind in CapabilityKind}

    # Built-in implementations (lazy import paths)
    BUILTINS: dict[CapabilityKind, dict[str, tuple[str, str]]] = {
        CapabilityKind.image_processor: {
            "pillow": ("vaultpress.plugins.builtin.pillow_image", "PillowImageProcessor"),
            "copy": ("vaultpress.plugins.defaults", "CopyOnlyImageProcessor"),
        },
        CapabilityKind.text_embedder: {
            "sentence-transformers": (
                "vaultpress.plugins.builtin.st_embedder", "SentenceTransformerTextEmbedder",
            ),
            "none": ("vaultpress.plugins.defaults", "NoOpTextEmbedder"),
        },
        CapabilityKind.image_embedder: {
            "sentence-transformers": (
                "vaultpress.plugins.builtin.st_embedder", "SentenceTransformerImageEmbedder",
            ),
            "none": ("vaultpress.plugins.defaults", "NoOpImageEmbedder"),
        },
        CapabilityKind.similarity: {
            "cosine": ("vaultpress.plugins.builtin.cosine", "CosineSimilarity"),
            "none": ("vaultpress.plugins.defaults", "NoOpSimilarity"),
        },
        CapabilityKind.database: {
            "sqlite": ("vaultpress.plugins.builtin.sqlite_db", "SQLiteDatabase"),
            "none": ("vaultpress.plugins.defaults", "NoOpDatabase"),
        },
        CapabilityKind.mermaid_renderer: {
            "mmdc": ("vaultpress.plugins.builtin.mermaid_cli", "MmdcMermaidRenderer"),
            "passthrough": ("vaultpress.plugins.defaults", "PassthroughMermaidRenderer"),
        },
    }

    # Used when a capability is enabled without naming an implementation.
    DEFAULT_NAMES = {
        CapabilityKind.image_processor: "pillow",
        CapabilityKind.text_embedder: "sentence-transformers",
        CapabilityKind.image_embedder: "sentence-transformers",
        CapabilityKind.similarity: "cosine",
        CapabilityKind.database: "sqlite",
        CapabilityKind.mermaid_renderer: "mmdc",
    }

    def __init__(self, config: VaultpressConfig, resources: SharedResources | None = None):
        self._config = config
        self.resources = resources or SharedResources()

    def discover(self) -> dict[str, list[str]]:
        """Scan entry points and built-ins. Returns {kind: [name, ...]}."""
        result: dict[str, list[str]] = {}
        for kind, group in self.GROUPS.items():
            eps = importlib.metadata.entry_points(group=group)
            names = [ep.name for ep in eps]
            names.extend(n for n in self.BUILTINS.get(kind, {}) if n not in names)
            result[kind.value] = names
        return result

    def settings_for(self, kind: CapabilityKind) -> PluginSettings:
        return getattr(self._config.plugins, kind.name)

    def _load_from_entry_point(self, kind: CapabilityKind, name: str) -> type[Plugin] | None:
        """Try to load a specific named entry point."""
        eps = importlib.metadata.entry_points(group=self.GROUPS[kind])
        for ep in eps:
            if ep.name == name:
                return ep.load()
        return None

    def _load_builtin(self, kind: CapabilityKind, name: str) -> type[Plugin] | None:
        spec = self.BUILTINS.get(kind, {}).get(name)
        if spec is None:
            return None
        module_path, class_name = spec
        module = importlib.import_module(module_path)
        return getattr(module, class_name)

    def load_class(self, kind: CapabilityKind, name: str | None = None) -> type[Plugin]:
        """Fallback chain: entry_points > built-ins. Never silently substitutes."""
        resolved = name or self.settings_for(kind).name or self.DEFAULT_NAMES[kind]
        plugin_cls = self._load_from_entry_point(kind, resolved)
        if plugin_cls is None:
            plugin_cls = self._load_builtin(kind, resolved)
        if plugin_cls is None:
            raise PluginNotFoundError(kind.value, resolved)
        if not (isinstance(plugin_cls, type) and issubclass(plugin_cls, Plugin)):
            raise TypeError(f"{kind.value} plugin '{resolved}' is not a Plugin subclass")
        if plugin_cls.kind != kind:
            raise TypeError(
                f"Plugin '{resolved}' provides {plugin_cls.kind.value}, not {kind.value}"
            )
        return plugin_cls

    def create(self, kind: CapabilityKind, name: str | None = None) -> Plugin:
        settings = self.settings_for(kind)
        plugin_cls = self.load_class(kind, name)
        plugin = plugin_cls(settings.options, resources=self.resources)
        if settings.requires is not None:
            plugin.requires = tuple(CapabilityKind(r) for r in settings.requires)
        return plugin

    def load_enabled(self) -> list[Plugin]:
        """Instantiate every enabled capability, in CapabilityKind order."""
        plugins = []
        for kind in CapabilityKind:
            if not self.settings_for(kind).enabled:
                continue
            plugin = self.create(kind)
            logger.debug("Loaded %s plugin: %s", kind.value, plugin.implementation)
            plugins.append(plugin)
        return plugins
