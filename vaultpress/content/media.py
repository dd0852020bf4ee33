"""Content-addressed media output through the image processor plugin."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

from vaultpress.config.models import MediaConfig
from vaultpress.hashing import compute_file_hash, short_hash
from vaultpress.interfaces.image import ImageProcessOptions, ImageProcessor
from vaultpress.issues import IssueCategory, IssueCollector

from .models import MediaKind, ProcessedMedia

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff", ".avif",
    ".svg", ".ico", ".mp4", ".webm", ".mp3", ".pdf",
}

_IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff", ".avif", ".ico"}


def is_media_file(path: Path) -> bool:
    return path.suffix.lower() in MEDIA_EXTENSIONS


class MediaProcessor:
    """Turns referenced source files into ProcessedMedia, once per file.

    The main output is ``<media_dir>/<hash32>.<format>``; each configured size
    narrower than the source becomes ``<hash32>-<size>.<format>``. Files the
    image processor cannot handle are copied under their own extension.

    Hashes in ``published`` already exist in the object store; those files get
    a full record but nothing is written for them.
    """

    def __init__(
        self,
        processor: ImageProcessor,
        config: MediaConfig,
        source_dir: Path,
        output_dir: Path,
        issues: IssueCollector,
        published: set[str] | None = None,
    ) -> None:
        self.processor = processor
        self.config = config
        self.source_dir = source_dir
        self.output_dir = output_dir
        self.issues = issues
        self._published = {h[:32].lower() for h in published or ()}
        self.reused = 0
        self._tasks: dict[Path, asyncio.Task[ProcessedMedia | None]] = {}
        self._by_basename: dict[str, Path] = {}

    def index_basenames(self, paths: list[Path]) -> None:
        """Allow bare file names (Obsidian style) to resolve anywhere in the tree."""
        for p in paths:
            self._by_basename.setdefault(p.name.lower(), p.resolve())

    def locate(self, reference: str, rel_path: PurePosixPath) -> Path | None:
        """Resolve a reference relative to the document, then the root, then by name."""
        ref = unquote(reference.strip())
        root = self.source_dir.resolve()
        if ref.startswith("/"):
            candidates = [root / ref.lstrip("/")]
        else:
            candidates = [root / rel_path.parent / ref, root / ref]
        for c in candidates:
            resolved = c.resolve()
            if resolved.is_file() and resolved.is_relative_to(root):
                return resolved
        return self._by_basename.get(PurePosixPath(ref).name.lower())

    @property
    def media_root(self) -> Path:
        return self.output_dir / self.config.output_dir

    def _rel(self, name: str) -> str:
        return f"{self.config.output_dir}/{name}"

    async def ensure(self, path: Path) -> ProcessedMedia | None:
        """Process ``path`` if not already done; concurrent callers share the work."""
        key = path.resolve()
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(self._process(key))
            self._tasks[key] = task
        return await task

    def processed(self) -> list[ProcessedMedia]:
        unique = {}
        for task in self._tasks.values():
            if task.done() and task.exception() is None and task.result() is not None:
                media = task.result()
                unique[media.hash] = media
        return [unique[h] for h in sorted(unique)]

    def referenced_paths(self) -> set[Path]:
        return set(self._tasks)

    def local_path(self, media: ProcessedMedia) -> Path:
        return self.source_dir / media.original_path

    @staticmethod
    def public_path(media: ProcessedMedia) -> str:
        return "/" + media.sizes["original"]

    async def _process(self, path: Path) -> ProcessedMedia | None:
        rel = path.relative_to(self.source_dir.resolve()).as_posix()
        try:
            digest = await asyncio.to_thread(compute_file_hash, path)
        except OSError as e:
            self.issues.add(
                IssueCategory.file_access, f"Cannot read media: {e}", module="media", file=rel
            )
            return None
        h32 = short_hash(digest)
        suffix = path.suffix.lower()
        size_bytes = path.stat().st_size
        optimizable = self.config.optimize and self.processor.can_process(path)

        if h32 in self._published:
            try:
                media = await self._describe_published(path, rel, digest, h32, size_bytes, optimizable)
            except Exception as e:
                logger.warning("Cannot describe published media %s, processing again: %s", rel, e)
            else:
                self.reused += 1
                logger.debug("Media %s already published as %s", rel, h32)
                return media

        if optimizable:
            try:
                return await self._optimize(path, rel, digest, h32, size_bytes)
            except Exception as e:
                logger.warning("Optimizing %s failed, copying instead: %s", rel, e)
                self.issues.add(
                    IssueCategory.media_processing,
                    f"Image optimization failed, original copied: {e}",
                    module="media",
                    file=rel,
                )

        name = f"{h32}{suffix}"
        try:
            await self.processor.copy(path, self.media_root / name)
        except OSError as e:
            self.issues.add(
                IssueCategory.file_access, f"Cannot copy media: {e}", module="media", file=rel
            )
            return None
        return self._copied(path, rel, digest, h32, size_bytes)

    def _variant_sizes(self, source_width: int | None) -> list[tuple[str, int]]:
        """Configured sizes narrower than the source, smallest first."""
        return [
            (name, width)
            for name, width in sorted(self.config.sizes.items(), key=lambda kv: kv[1])
            # never upscale
            if not source_width or width < source_width
        ]

    def _copied(
        self, path: Path, rel: str, digest: str, h32: str, size_bytes: int
    ) -> ProcessedMedia:
        suffix = path.suffix.lower()
        return ProcessedMedia(
            id=h32,
            hash=digest,
            original_path=rel,
            file_name=path.name,
            format=suffix.lstrip("."),
            kind=MediaKind.svg if suffix == ".svg" else (
                MediaKind.image if suffix in _IMAGE_SUFFIXES else MediaKind.other
            ),
            size_bytes=size_bytes,
            sizes={"original": self._rel(f"{h32}{suffix}")},
        )

    async def _describe_published(
        self, path: Path, rel: str, digest: str, h32: str, size_bytes: int, optimizable: bool
    ) -> ProcessedMedia:
        if not optimizable:
            return self._copied(path, rel, digest, h32, size_bytes)
        meta = await self.processor.get_metadata(path)
        fmt = self.processor.output_format(self.config.format)
        sizes = {"original": self._rel(f"{h32}.{fmt}")}
        for size_name, _ in self._variant_sizes(meta.width):
            sizes[size_name] = self._rel(f"{h32}-{size_name}.{fmt}")
        return ProcessedMedia(
            id=h32,
            hash=digest,
            original_path=rel,
            file_name=path.name,
            format=fmt,
            kind=MediaKind.image,
            width=meta.width,
            height=meta.height,
            size_bytes=size_bytes,
            sizes=sizes,
        )

    async def _optimize(
        self, path: Path, rel: str, digest: str, h32: str, size_bytes: int
    ) -> ProcessedMedia:
        meta = await self.processor.get_metadata(path)
        fmt = self.config.format
        main = await self.processor.process(
            path,
            self.media_root / f"{h32}.{fmt}",
            ImageProcessOptions(format=fmt, quality=self.config.quality),
        )
        fmt = main.format
        sizes = {"original": self._rel(Path(main.output_path).name)}

        for size_name, width in self._variant_sizes(meta.width):
            variant = await self.processor.process(
                path,
                self.media_root / f"{h32}-{size_name}.{fmt}",
                ImageProcessOptions(width=width, format=fmt, quality=self.config.quality),
            )
            sizes[size_name] = self._rel(Path(variant.output_path).name)

        return ProcessedMedia(
            id=h32,
            hash=digest,
            original_path=rel,
            file_name=path.name,
            format=fmt,
            kind=MediaKind.image,
            width=main.width or meta.width,
            height=main.height or meta.height,
            size_bytes=size_bytes,
            sizes=sizes,
        )
