"""Fetch a job's source tree into its temp directory."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_CREDENTIALS_RE = re.compile(r"://[^/@\s]+@")


class SourceAcquisitionError(Exception):
    """The source tree could not be cloned or copied."""


class AcquiredSource(BaseModel):
    source_dir: str
    origin: str
    branch: str | None = None
    commit: str | None = None


def with_token(repo_url: str, token: str | None) -> str:
    """Inject ``token`` as basic-auth credentials into an https clone URL."""
    if not token:
        return repo_url
    parts = urlsplit(repo_url)
    if parts.scheme != "https" or "@" in parts.netloc:
        return repo_url
    return urlunsplit(parts._replace(netloc=f"x-access-token:{token}@{parts.netloc}"))


def redact_url(text: str) -> str:
    """Hide credentials embedded in any URL within ``text``."""
    return _CREDENTIALS_RE.sub("://***@", text)


async def _run_git(args: list[str], cwd: Path | None, timeout: float) -> str:
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise SourceAcquisitionError("git executable not found") from e
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise SourceAcquisitionError(f"git {args[0]} timed out after {timeout:.0f}s") from e
    if proc.returncode != 0:
        message = stderr.decode(errors="replace").strip()[:500]
        raise SourceAcquisitionError(f"git {args[0]} exited {proc.returncode}: {redact_url(message)}")
    return stdout.decode(errors="replace").strip()


async def clone_repo(
    repo_url: str,
    dest: Path,
    *,
    branch: str | None = None,
    token: str | None = None,
    timeout: float = 300.0,
) -> AcquiredSource:
    """Shallow-clone ``repo_url`` into ``dest``."""
    args = ["clone", "--depth", "1"]
    if branch:
        args += ["--branch", branch]
    args += [with_token(repo_url, token), str(dest)]
    logger.info("Cloning %s%s", redact_url(repo_url), f" ({branch})" if branch else "")
    await _run_git(args, None, timeout)
    commit = await _run_git(["rev-parse", "HEAD"], dest, timeout)
    return AcquiredSource(source_dir=str(dest), origin=redact_url(repo_url), branch=branch, commit=commit)


async def copy_local(repo_path: Path, dest: Path) -> AcquiredSource:
    if not repo_path.is_dir():
        raise SourceAcquisitionError(f"Source directory not found: {repo_path}")
    logger.info("Copying local source %s", repo_path)
    await asyncio.to_thread(
        shutil.copytree, repo_path, dest, ignore=shutil.ignore_patterns(".git"), dirs_exist_ok=True
    )
    return AcquiredSource(source_dir=str(dest), origin=str(repo_path))


async def acquire_source(data: dict, work_dir: Path, timeout: float = 300.0) -> AcquiredSource:
    """Resolve the job's source from ``repoUrl`` (git) or ``repoPath`` (local)."""
    dest = work_dir / "source"
    if data.get("repoUrl"):
        return await clone_repo(
            str(data["repoUrl"]),
            dest,
            branch=data.get("branch"),
            token=data.get("gitToken"),
            timeout=timeout,
        )
    if data.get("repoPath"):
        return await copy_local(Path(data["repoPath"]).expanduser(), dest)
    raise SourceAcquisitionError("Job data needs either 'repoUrl' or 'repoPath'")
