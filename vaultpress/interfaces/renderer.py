"""Mermaid diagram renderer capability."""

from __future__ import annotations

from abc import abstractmethod
from enum import Enum

from pydantic import BaseModel, ConfigDict

from .plugin import CapabilityKind, Plugin


class MermaidStrategy(str, Enum):
    """How a diagram block ends up in the rendered page."""

    inline_svg = "inline-svg"
    img_svg = "img-svg"
    img_png = "img-png"
    pre_mermaid = "pre-mermaid"


class MermaidRenderOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: MermaidStrategy = MermaidStrategy.inline_svg
    theme: str = "default"
    background: str = "transparent"


class MermaidResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    output: str
    strategy: MermaidStrategy
    error: str | None = None


class MermaidRenderer(Plugin):
    kind = CapabilityKind.mermaid_renderer

    @abstractmethod
    async def render(self, code: str, options: MermaidRenderOptions) -> MermaidResult: ...

    @abstractmethod
    async def is_available(self) -> bool: ...
