"""Task router: each task name maps to a fixed composition of build stages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vaultpress.config.models import VaultpressConfig
from vaultpress.embedding.pipeline import load_previous_embeddings
from vaultpress.interfaces.plugin import SharedResources
from vaultpress.interfaces.storage import ObjectStore
from vaultpress.processor import BuildProcessor, BuildResult, IncrementalInputs
from vaultpress.publish.optimizer import (
    AssetKind,
    ExistingAssets,
    PublishReport,
    UploadOptimizer,
    check_safe_id,
)

from .acquire import acquire_source
from .models import Job, TaskKind
from .wordpress import decode_export, import_wordpress

logger = logging.getLogger(__name__)


class UnknownTaskError(Exception):
    def __init__(self, task: str) -> None:
        self.task = task
        known = ", ".join(k.value for k in TaskKind)
        super().__init__(f"Unknown task '{task}' (expected one of: {known})")


class TaskDataError(ValueError):
    """Job data is missing a field the task needs."""


@dataclass
class TaskContext:
    """Everything a task may touch. ``work_dir`` belongs to this job alone."""

    job: Job
    work_dir: Path
    config: VaultpressConfig
    store: ObjectStore
    resources: SharedResources
    # set by tasks whose output is the work directory itself
    retain_work_dir: bool = False

    @property
    def data(self) -> dict[str, Any]:
        return self.job.data

    def require(self, name: str) -> Any:
        value = self.data.get(name)
        if value in (None, ""):
            raise TaskDataError(f"Job data needs '{name}' for task {self.job.task}")
        return value


TaskFn = Callable[[TaskContext], Awaitable[dict[str, Any]]]


# -- stages --------------------------------------------------------------------


async def _source_dir(ctx: TaskContext) -> tuple[Path, dict[str, Any]]:
    if ctx.data.get("sourceDir"):
        path = Path(ctx.data["sourceDir"])
        return path, {"sourceDir": str(path)}
    return await _acquire(ctx)


async def _acquire(ctx: TaskContext) -> tuple[Path, dict[str, Any]]:
    acquired = await acquire_source(ctx.data, ctx.work_dir, ctx.config.worker.git_timeout)
    return Path(acquired.source_dir), acquired.model_dump()


def _optimizer(ctx: TaskContext) -> UploadOptimizer:
    return UploadOptimizer(
        ctx.store,
        prefix=ctx.config.storage.prefix,
        max_keys=ctx.config.storage.max_keys,
    )


async def _existing(ctx: TaskContext) -> tuple[IncrementalInputs, ExistingAssets]:
    """Published media hashes for the project, plus embeddings from ``previousRev``."""
    project_id = check_safe_id(str(ctx.require("projectId")), "projectId")
    optimizer = _optimizer(ctx)
    existing = await optimizer.fetch_existing(project_id)
    incremental = IncrementalInputs(published_media=existing.hashes(AssetKind.media))
    previous_rev = ctx.data.get("previousRev")
    if previous_rev:
        check_safe_id(str(previous_rev), "previousRev")
        incremental.previous_embeddings = await load_previous_embeddings(
            ctx.store, f"{optimizer.project_root(project_id)}/{previous_rev}"
        )
    return incremental, existing


async def _build(
    ctx: TaskContext,
    source_dir: Path,
    config: VaultpressConfig | None = None,
    incremental: IncrementalInputs | None = None,
) -> BuildResult:
    processor = BuildProcessor(config or ctx.config, resources=ctx.resources)
    return await processor.run(source_dir, ctx.work_dir / "dist", incremental)


async def _publish(
    ctx: TaskContext, build_dir: Path, existing: ExistingAssets | None = None
) -> PublishReport:
    return await _optimizer(ctx).publish(
        build_dir, str(ctx.require("projectId")), ctx.job.id, existing
    )


async def _build_and_publish(ctx: TaskContext, source_dir: Path) -> dict[str, Any]:
    incremental, existing = await _existing(ctx)
    build = await _build(ctx, source_dir, incremental=incremental)
    report = await _publish(ctx, Path(build.output_dir), existing)
    return {"build": build.summary(), "publish": report.summary()}


# -- tasks ---------------------------------------------------------------------


async def acquire_user_repo(ctx: TaskContext) -> dict[str, Any]:
    """Fetch the source and leave it on disk for a later job."""
    _, source = await _acquire(ctx)
    ctx.retain_work_dir = True
    return {"source": source, "tempFolderPath": str(ctx.work_dir)}


async def build_assets(ctx: TaskContext) -> dict[str, Any]:
    source_dir, source = await _source_dir(ctx)
    incremental = (await _existing(ctx))[0] if ctx.data.get("projectId") else None
    build = await _build(ctx, source_dir, incremental=incremental)
    return {"source": source, "build": build.summary()}


async def build_database(ctx: TaskContext) -> dict[str, Any]:
    """Build with the embedding stages switched off; only the database matters."""
    source_dir, source = await _source_dir(ctx)
    config = ctx.config.model_copy(deep=True)
    for name in ("text_embedder", "image_embedder", "similarity"):
        getattr(config.plugins, name).enabled = False
    build = await _build(ctx, source_dir, config)
    return {"source": source, "database": build.summary()["database"], "build": build.summary()}


async def process_all(ctx: TaskContext) -> dict[str, Any]:
    ctx.require("projectId")
    source_dir, source = await _source_dir(ctx)
    return {"source": source, **await _build_and_publish(ctx, source_dir)}


async def deploy_repo(ctx: TaskContext) -> dict[str, Any]:
    """Acquire the repository into this job's directory, then build and publish it."""
    ctx.require("projectId")
    source_dir, source = await _acquire(ctx)
    return {"source": source, **await _build_and_publish(ctx, source_dir)}


async def publish_build_files(ctx: TaskContext) -> dict[str, Any]:
    """Publish an already built bundle directory."""
    build_dir = Path(ctx.require("buildDir"))
    if not build_dir.is_dir():
        raise TaskDataError(f"Build directory not found: {build_dir}")
    report = await _publish(ctx, build_dir)
    return {"publish": report.summary()}


async def wp_import(ctx: TaskContext) -> dict[str, Any]:
    ctx.require("projectId")
    xml_bytes = await asyncio.to_thread(decode_export, ctx.data)
    source_dir = ctx.work_dir / "source"
    imported = await asyncio.to_thread(import_wordpress, xml_bytes, source_dir)
    return {
        "wpImport": imported.model_dump(exclude={"files"}),
        **await _build_and_publish(ctx, source_dir),
    }


TASKS: dict[TaskKind, TaskFn] = {
    TaskKind.process_all: process_all,
    TaskKind.build_assets: build_assets,
    TaskKind.build_database: build_database,
    TaskKind.acquire_user_repo: acquire_user_repo,
    TaskKind.process_with_repo: process_all,
    TaskKind.deploy_repo: deploy_repo,
    TaskKind.publish_build_files: publish_build_files,
    TaskKind.wp_import: wp_import,
}


def resolve_task(name: str, tasks: dict[TaskKind, TaskFn] | None = None) -> TaskFn:
    try:
        kind = TaskKind(name)
    except ValueError:
        raise UnknownTaskError(name) from None
    registry = TASKS if tasks is None else tasks
    if kind not in registry:
        raise UnknownTaskError(name)
    return registry[kind]
