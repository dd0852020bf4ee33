"""Base plugin contract shared by every capability kind."""

from __future__ import annotations

import logging
import threading
from abc import ABC
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from vaultpress.issues import IssueCollector

if TYPE_CHECKING:
    from vaultpress.config.models import VaultpressConfig

T = TypeVar("T")


class CapabilityKind(str, Enum):
    """The capability a plugin provides. Each plugin implements exactly one."""

    image_processor = "image-processor"
    text_embedder = "text-embedder"
    image_embedder = "image-embedder"
    similarity = "similarity"
    database = "database"
    mermaid_renderer = "mermaid-renderer"


class PluginState(str, Enum):
    uninitialized = "uninitialized"
    ready = "ready"
    disposed = "disposed"


@dataclass
class SharedResources:
    """Process-wide objects plugins reuse across jobs, such as loaded models.

    Created once by the process (worker app or CLI) and handed to every
    plugin it constructs.
    """

    values: dict[str, Any] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_or_create(self, key: str, factory: Callable[[], T]) -> T:
        with self._lock:
            if key not in self.values:
                self.values[key] = factory()
            return self.values[key]


@dataclass
class PluginContext:
    """Everything a plugin may touch while initializing or running."""

    output_dir: Path
    source_dir: Path | None = None
    config: VaultpressConfig | None = None
    issues: IssueCollector = field(default_factory=IssueCollector)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("vaultpress.plugins"))
    # Accessor for dependencies that finished initializing earlier in the run.
    get_plugin: Callable[[CapabilityKind], Plugin | None] = lambda kind: None


class Plugin(ABC):
    """A swappable implementation of one capability kind.

    Subclasses set ``kind`` and override :meth:`setup`/:meth:`teardown`.
    The manager drives :meth:`initialize` and :meth:`dispose`; pipeline code
    never calls them directly.
    """

    kind: ClassVar[CapabilityKind]
    implementation: ClassVar[str] = "custom"
    default_requires: ClassVar[tuple[CapabilityKind, ...]] = ()

    def __init__(
        self,
        options: dict[str, Any] | None = None,
        resources: SharedResources | None = None,
    ) -> None:
        self.options: dict[str, Any] = dict(options or {})
        self.resources = resources or SharedResources()
        self.requires: tuple[CapabilityKind, ...] = self.default_requires
        self.state = PluginState.uninitialized

    @property
    def name(self) -> CapabilityKind:
        return self.kind

    async def initialize(self, context: PluginContext) -> None:
        await self.setup(context)
        self.state = PluginState.ready

    def is_ready(self) -> bool:
        return self.state == PluginState.ready

    async def dispose(self) -> None:
        try:
            await self.teardown()
        finally:
            self.state = PluginState.disposed

    async def setup(self, context: PluginContext) -> None:
        """Acquire resources. Raise to abort the build."""

    async def teardown(self) -> None:
        """Release resources acquired in setup."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.kind.value}:{self.implementation} {self.state.value}>"
