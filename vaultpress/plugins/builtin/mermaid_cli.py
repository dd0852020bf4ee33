"""Mermaid renderer that shells out to the mermaid-cli (mmdc) binary."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

from vaultpress.hashing import compute_hash, short_hash
from vaultpress.interfaces.plugin import PluginContext, SharedResources
from vaultpress.interfaces.renderer import (
    MermaidRenderer,
    MermaidRenderOptions,
    MermaidResult,
    MermaidStrategy,
)
from vaultpress.issues import IssueCategory
from vaultpress.plugins.defaults import pre_mermaid

logger = logging.getLogger(__name__)


class MmdcMermaidRenderer(MermaidRenderer):
    """Renders diagrams to SVG/PNG.

    When ``mmdc`` is not on PATH every block degrades to ``pre-mermaid`` and a
    single warning is recorded at setup.
    """

    implementation = "mmdc"

    def __init__(
        self, options: dict | None = None, resources: SharedResources | None = None
    ) -> None:
        super().__init__(options, resources)
        self._command: str | None = None
        self._output_dir: Path | None = None

    @property
    def timeout(self) -> float:
        return float(self.options.get("timeout", 30))

    @property
    def media_dir(self) -> str:
        return self.options.get("media_dir", "_media/mermaid")

    async def setup(self, context: PluginContext) -> None:
        self._output_dir = context.output_dir
        self._command = shutil.which(self.options.get("command", "mmdc"))
        if self._command is None:
            context.issues.add(
                IssueCategory.mermaid_error,
                "mmdc not found on PATH; diagrams will be rendered client-side",
                module="mermaid",
            )

    async def is_available(self) -> bool:
        return self._command is not None

    async def render(self, code: str, options: MermaidRenderOptions) -> MermaidResult:
        if options.strategy == MermaidStrategy.pre_mermaid or self._command is None:
            return MermaidResult(output=pre_mermaid(code), strategy=MermaidStrategy.pre_mermaid)

        ext = "png" if options.strategy == MermaidStrategy.img_png else "svg"
        try:
            data = await self._run_mmdc(code, ext, options)
        except (OSError, RuntimeError, asyncio.TimeoutError) as e:
            logger.warning("Mermaid render failed: %s", e)
            return MermaidResult(
                output=pre_mermaid(code), strategy=MermaidStrategy.pre_mermaid, error=str(e)
            )

        if options.strategy == MermaidStrategy.inline_svg:
            return MermaidResult(output=data.decode("utf-8"), strategy=options.strategy)

        name = f"{short_hash(compute_hash(code))}.{ext}"
        rel = f"{self.media_dir}/{name}"
        if self._output_dir is None:
            raise RuntimeError("MmdcMermaidRenderer used before initialization")
        target = self._output_dir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return MermaidResult(
            output=f'<img class="mermaid-diagram" src="/{rel}" alt="diagram" />',
            strategy=options.strategy,
        )

    async def _run_mmdc(self, code: str, ext: str, options: MermaidRenderOptions) -> bytes:
        with tempfile.TemporaryDirectory(prefix="vaultpress-mmd-") as tmp:
            src = Path(tmp) / "diagram.mmd"
            out = Path(tmp) / f"diagram.{ext}"
            src.write_text(code)
            proc = await asyncio.create_subprocess_exec(
                self._command,
                "-i", str(src),
                "-o", str(out),
                "-t", options.theme,
                "-b", options.background,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise
            if proc.returncode != 0 or not out.exists():
                raise RuntimeError(stderr.decode("utf-8", "replace").strip() or f"mmdc exited {proc.returncode}")
            return out.read_bytes()
