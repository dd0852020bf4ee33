"""YAML config loading with env var expansion."""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import VaultpressConfig

# Storage credentials may be referenced from YAML; anything else must carry
# the VAULTPRESS_ prefix.
_ALLOWED_ENV_VARS = frozenset({
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_REGION",
    "R2_ACCOUNT_ID",
    "R2_ACCESS_KEY_ID",
    "R2_SECRET_ACCESS_KEY",
    "R2_BUCKET_NAME",
    "HOME",
    "TMPDIR",
})
_ALLOWED_PREFIX = "VAULTPRESS_"

_ENV_REF_RE = re.compile(r"\$\{(\w+)\}")


def load_config(cli_path: str | None = None) -> VaultpressConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults."""
    config_paths = [
        Path(cli_path) if cli_path else None,
        Path("./vaultpress.yaml"),
        Path.home() / ".vaultpress" / "config.yaml",
    ]

    for path in config_paths:
        if path and path.exists():
            try:
                with open(path) as f:
                    raw = yaml.safe_load(f)
                if raw is None:
                    continue
                raw = _expand_env_vars(raw)
                return _apply_env_overrides(VaultpressConfig(**raw))
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
            except ValidationError as e:
                raise ValueError(f"Invalid config in {path}: {e}") from e

    return _apply_env_overrides(VaultpressConfig())


def _is_allowed(name: str) -> bool:
    return name in _ALLOWED_ENV_VARS or name.startswith(_ALLOWED_PREFIX)


def _expand_env_vars(obj: object) -> object:
    """Recursively expand ${VAR} references in strings.

    Only allowlisted variables are expanded. An allowlisted variable that is
    not set raises ValueError rather than silently becoming "".
    """
    if isinstance(obj, str):
        def _replace(m: re.Match) -> str:
            name = m.group(1)
            if not _is_allowed(name):
                raise ValueError(f"Environment variable '{name}' is not allowed in config")
            value = os.environ.get(name)
            if value is None:
                raise ValueError(f"Environment variable '{name}' is not set")
            return value

        return _ENV_REF_RE.sub(_replace, obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def _env_flag(name: str) -> bool | None:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config: VaultpressConfig) -> VaultpressConfig:
    """Honor KEEP_TMP_FILES, PURGE_TMP_DIR and WORKER_SECRET from the environment."""
    keep = _env_flag("KEEP_TMP_FILES")
    purge = _env_flag("PURGE_TMP_DIR")
    if keep or purge is False:
        config.worker.keep_tmp_files = True
    secret = os.environ.get("WORKER_SECRET")
    if secret and not config.worker.secret:
        config.worker.secret = secret
    return config


# Default YAML template for `vaultpress config init`
DEFAULT_CONFIG_TEMPLATE = """\
# vaultpress.yaml

# Plugins (one per capability)
plugins:
  image_processor:
    enabled: true
    name: "pillow"             # pillow | copy
  text_embedder:
    enabled: false
    name: "sentence-transformers"
    options:
      model: "all-MiniLM-L6-v2"
  image_embedder:
    enabled: false
    name: "sentence-transformers"
    options:
      model: "clip-ViT-B-32"
  similarity:
    enabled: false
    name: "cosine"
  database:
    enabled: true
    name: "sqlite"
  mermaid_renderer:
    enabled: false
    name: "mmdc"
    options:
      strategy: "inline-svg"   # inline-svg | img-svg | img-png | pre-mermaid

# Media
media:
  optimize: true
  output_dir: "_media"
  format: "webp"               # webp | jpeg | png | avif
  quality: 80
  # sizes: {xs: 320, sm: 640, md: 1024, lg: 1920, xl: 2560}

# Content
content:
  process_all_files: false
  min_word_count: 50
  required_fields: [title]

# Embeddings
embedding:
  batch_size: 32
  max_concurrency: 2
  similarity_top_n: 10

# Database
database:
  file_name: "content.sqlite"
  fts: true

# Storage
storage:
  provider: "local"            # local | s3
  # bucket: "${R2_BUCKET_NAME}"
  # endpoint_url: "https://${R2_ACCOUNT_ID}.r2.cloudflarestorage.com"
  prefix: "projects"
  local_root: ".vaultpress/storage"

# Worker
worker:
  host: "0.0.0.0"
  port: 5522
  tmp_root: "/tmp/vaultpress"
  keep_tmp_files: false
  callback_timeout: 30
  # secret: "${VAULTPRESS_WORKER_SECRET}"

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
