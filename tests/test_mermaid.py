"""Tests for the mmdc mermaid renderer."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vaultpress.interfaces.plugin import PluginContext
from vaultpress.interfaces.renderer import MermaidRenderOptions, MermaidStrategy
from vaultpress.issues import IssueCategory, IssueCollector
from vaultpress.plugins.builtin.mermaid_cli import MmdcMermaidRenderer

CODE = "graph TD; A-->B"


def _fake_mmdc(data: bytes = b"<svg>diagram</svg>", returncode: int = 0):
    """create_subprocess_exec stand-in that writes ``data`` to the -o path."""

    async def _exec(*args, **kwargs):
        out = Path(args[args.index("-o") + 1])
        if returncode == 0:
            out.write_bytes(data)
        proc = MagicMock()
        proc.returncode = returncode
        proc.communicate = AsyncMock(return_value=(b"", b"" if returncode == 0 else b"parse error"))
        proc.wait = AsyncMock(return_value=returncode)
        return proc

    return _exec


async def _renderer(tmp_path, which: str | None = "/usr/bin/mmdc") -> tuple[MmdcMermaidRenderer, IssueCollector]:
    issues = IssueCollector()
    renderer = MmdcMermaidRenderer()
    with patch("vaultpress.plugins.builtin.mermaid_cli.shutil.which", return_value=which):
        await renderer.initialize(PluginContext(output_dir=tmp_path, issues=issues))
    return renderer, issues


class TestMissingCli:
    @pytest.mark.asyncio
    async def test_falls_back_to_pre_and_warns_once(self, tmp_path):
        renderer, issues = await _renderer(tmp_path, which=None)
        assert not await renderer.is_available()

        result = await renderer.render(CODE, MermaidRenderOptions())
        assert result.strategy == MermaidStrategy.pre_mermaid
        assert result.output == '<pre class="mermaid">graph TD; A--&gt;B</pre>'
        await renderer.render(CODE, MermaidRenderOptions())
        assert len(issues.by_category(IssueCategory.mermaid_error)) == 1


class TestRender:
    @pytest.mark.asyncio
    async def test_inline_svg(self, tmp_path):
        renderer, _ = await _renderer(tmp_path)
        with patch(
            "vaultpress.plugins.builtin.mermaid_cli.asyncio.create_subprocess_exec",
            side_effect=_fake_mmdc(),
        ):
            result = await renderer.render(CODE, MermaidRenderOptions())
        assert result.output == "<svg>diagram</svg>"
        assert result.strategy == MermaidStrategy.inline_svg

    @pytest.mark.asyncio
    async def test_img_png_written_to_media_dir(self, tmp_path):
        renderer, _ = await _renderer(tmp_path)
        with patch(
            "vaultpress.plugins.builtin.mermaid_cli.asyncio.create_subprocess_exec",
            side_effect=_fake_mmdc(b"\x89PNG"),
        ):
            result = await renderer.render(CODE, MermaidRenderOptions(strategy=MermaidStrategy.img_png))
        written = list((tmp_path / "_media" / "mermaid").glob("*.png"))
        assert len(written) == 1
        assert written[0].read_bytes() == b"\x89PNG"
        assert f'src="/_media/mermaid/{written[0].name}"' in result.output

    @pytest.mark.asyncio
    async def test_failed_render_degrades_with_error(self, tmp_path):
        renderer, _ = await _renderer(tmp_path)
        with patch(
            "vaultpress.plugins.builtin.mermaid_cli.asyncio.create_subprocess_exec",
            side_effect=_fake_mmdc(returncode=1),
        ):
            result = await renderer.render(CODE, MermaidRenderOptions(strategy=MermaidStrategy.img_svg))
        assert result.strategy == MermaidStrategy.pre_mermaid
        assert result.error == "parse error"

    @pytest.mark.asyncio
    async def test_pre_mermaid_never_spawns(self, tmp_path):
        renderer, _ = await _renderer(tmp_path)
        with patch(
            "vaultpress.plugins.builtin.mermaid_cli.asyncio.create_subprocess_exec",
        ) as exec_mock:
            result = await renderer.render(CODE, MermaidRenderOptions(strategy=MermaidStrategy.pre_mermaid))
        exec_mock.assert_not_called()
        assert result.output.startswith('<pre class="mermaid">')
