"""Dependency-ordered plugin lifecycle management."""

from __future__ import annotations

import logging
from collections import deque
from typing import TypeVar

from vaultpress.interfaces.database import Database
from vaultpress.interfaces.embedding import ImageEmbedder, TextEmbedder
from vaultpress.interfaces.image import ImageProcessor
from vaultpress.interfaces.plugin import CapabilityKind, Plugin, PluginContext
from vaultpress.interfaces.renderer import MermaidRenderer
from vaultpress.interfaces.similarity import Similarity
from vaultpress.issues import IssueCategory, IssueCollector, IssueSeverity

from .defaults import default_plugin

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=Plugin)


class PluginCycleError(Exception):
    """Raised when configured plugins depend on each other in a loop."""

    def __init__(self, names: list[str]):
        self.names = sorted(names)
        super().__init__(
            "Circular plugin dependency detected involving: " + ", ".join(self.names)
        )


class PluginInitializationError(Exception):
    """A plugin's initialize() failed. Aborts the build."""

    def __init__(self, plugin: str, cause: Exception):
        self.plugin = plugin
        self.cause = cause
        super().__init__(f"Failed to initialize plugin {plugin}: {cause}")


def topological_sort(plugins: list[Plugin]) -> list[Plugin]:
    """Order plugins so each appears after every configured dependency.

    Edges run dependency -> dependent. Dependencies on kinds outside the
    configured set are ignored. Ties keep registration order.
    """
    by_kind: dict[CapabilityKind, Plugin] = {p.kind: p for p in plugins}
    in_degree: dict[CapabilityKind, int] = {k: 0 for k in by_kind}
    dependents: dict[CapabilityKind, list[CapabilityKind]] = {k: [] for k in by_kind}

    for plugin in plugins:
        for dep in plugin.requires:
            if dep not in by_kind:
                continue
            dependents[dep].append(plugin.kind)
            in_degree[plugin.kind] += 1

    queue = deque(k for k in by_kind if in_degree[k] == 0)
    ordered: list[Plugin] = []
    while queue:
        kind = queue.popleft()
        ordered.append(by_kind[kind])
        for dependent in dependents[kind]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) < len(by_kind):
        unresolved = [k.value for k, d in in_degree.items() if d > 0]
        raise PluginCycleError(unresolved)
    return ordered


class PluginManager:
    """Owns configured plugins for the lifetime of one build.

    Plugins are initialized strictly sequentially in dependency order and
    disposed in exactly the reverse order. Lookups only succeed for plugins
    that finished initializing.
    """

    def __init__(self, issues: IssueCollector | None = None) -> None:
        self.issues = issues or IssueCollector()
        self._registered: dict[CapabilityKind, Plugin] = {}
        self._initialized: dict[CapabilityKind, Plugin] = {}
        self._order: list[Plugin] = []

    # -- registration ----------------------------------------------------------

    def register(self, plugin: Plugin) -> None:
        if self._order:
            raise RuntimeError("Cannot register plugins after initialization")
        if plugin.kind in self._registered:
            logger.warning(
                "Replacing %s plugin %s with %s",
                plugin.kind.value,
                self._registered[plugin.kind].implementation,
                plugin.implementation,
            )
        self._registered[plugin.kind] = plugin

    @property
    def registered(self) -> list[Plugin]:
        return list(self._registered.values())

    @property
    def initialization_order(self) -> list[CapabilityKind]:
        return [p.kind for p in self._order]

    # -- lifecycle -------------------------------------------------------------

    async def initialize(self, context: PluginContext) -> None:
        ordered = topological_sort(list(self._registered.values()))
        context.issues = self.issues
        context.get_plugin = self.get_plugin
        logger.info(
            "Initializing plugins: %s",
            ", ".join(p.kind.value for p in ordered) or "(none)",
        )
        for plugin in ordered:
            try:
                await plugin.initialize(context)
            except Exception as exc:
                self.issues.add_plugin_error(
                    plugin.kind.value, f"Plugin {plugin.kind.value} failed to initialize: {exc}"
                )
                raise PluginInitializationError(plugin.kind.value, exc) from exc
            self._initialized[plugin.kind] = plugin
            self._order.append(plugin)
            logger.debug("Plugin ready: %s (%s)", plugin.kind.value, plugin.implementation)

    async def dispose(self) -> None:
        """Dispose in reverse initialization order, collecting failures."""
        for plugin in reversed(self._order):
            try:
                await plugin.dispose()
            except Exception as exc:
                logger.error("Error disposing plugin %s: %s", plugin.kind.value, exc)
                self.issues.add(
                    IssueCategory.plugin_error,
                    f"Error disposing plugin {plugin.kind.value}: {exc}",
                    severity=IssueSeverity.warning,
                    module="plugins",
                    plugin=plugin.kind.value,
                )
        self._initialized.clear()
        self._order = []

    # -- lookup ----------------------------------------------------------------

    def get_plugin(self, kind: CapabilityKind) -> Plugin | None:
        """Return the live plugin for ``kind``, or None if not initialized."""
        return self._initialized.get(kind)

    def has_plugin(self, kind: CapabilityKind) -> bool:
        return kind in self._initialized

    def require_plugin(self, kind: CapabilityKind, expected: type[P]) -> P:
        """Return the live plugin, falling back to the canonical no-op."""
        plugin = self._initialized.get(kind)
        if plugin is None:
            plugin = default_plugin(kind)
        if not isinstance(plugin, expected):
            raise TypeError(
                f"Plugin for {kind.value} is {type(plugin).__name__}, expected {expected.__name__}"
            )
        return plugin

    # Typed accessors used by the pipeline stages.

    def image_processor(self) -> ImageProcessor:
        return self.require_plugin(CapabilityKind.image_processor, ImageProcessor)

    def text_embedder(self) -> TextEmbedder:
        return self.require_plugin(CapabilityKind.text_embedder, TextEmbedder)

    def image_embedder(self) -> ImageEmbedder:
        return self.require_plugin(CapabilityKind.image_embedder, ImageEmbedder)

    def similarity(self) -> Similarity:
        return self.require_plugin(CapabilityKind.similarity, Similarity)

    def database(self) -> Database:
        return self.require_plugin(CapabilityKind.database, Database)

    def mermaid_renderer(self) -> MermaidRenderer:
        return self.require_plugin(CapabilityKind.mermaid_renderer, MermaidRenderer)
