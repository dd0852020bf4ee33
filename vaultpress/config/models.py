from typing import Any, Literal

from pydantic import BaseModel, Field


class PluginSettings(BaseModel):
    enabled: bool = False
    name: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)
    requires: list[str] | None = None


class PluginsConfig(BaseModel):
    image_processor: PluginSettings = Field(
        default_factory=lambda: PluginSettings(enabled=True, name="pillow")
    )
    text_embedder: PluginSettings = Field(default_factory=PluginSettings)
    image_embedder: PluginSettings = Field(default_factory=PluginSettings)
    similarity: PluginSettings = Field(default_factory=PluginSettings)
    database: PluginSettings = Field(
        default_factory=lambda: PluginSettings(enabled=True, name="sqlite")
    )
    mermaid_renderer: PluginSettings = Field(default_factory=PluginSettings)


class MediaConfig(BaseModel):
    optimize: bool = True
    output_dir: str = "_media"
    format: Literal["webp", "jpeg", "png", "avif"] = "webp"
    quality: int = Field(default=80, ge=1, le=100)
    sizes: dict[str, int] = Field(default_factory=lambda: {
        "xs": 320, "sm": 640, "md": 1024, "lg": 1920, "xl": 2560,
    })


class ContentConfig(BaseModel):
    process_all_files: bool = False
    min_word_count: int = 50
    required_fields: list[str] = Field(default_factory=lambda: ["title"])
    cover_fields: list[str] = Field(default_factory=lambda: [
        "cover", "image", "thumbnail", "coverImage", "cover_image",
    ])
    ignore_dirs: list[str] = Field(default_factory=lambda: [
        ".git", "node_modules", ".github", ".obsidian",
    ])


class EmbeddingConfig(BaseModel):
    batch_size: int = Field(default=32, gt=0)
    max_concurrency: int = Field(default=2, gt=0)
    max_chars: int = 8000
    similarity_top_n: int = Field(default=10, gt=0)


class DatabaseConfig(BaseModel):
    file_name: str = "content.sqlite"
    fts: bool = True


class StorageConfig(BaseModel):
    provider: Literal["local", "s3"] = "local"
    bucket: str = ""
    prefix: str = "projects"
    endpoint_url: str | None = None
    region: str | None = None
    local_root: str = ".vaultpress/storage"
    max_keys: int = Field(default=1000, gt=0)


class WorkerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 5522
    tmp_root: str = "/tmp/vaultpress"
    keep_tmp_files: bool = False
    callback_timeout: float = 30.0
    audit_db_path: str = ".vaultpress/callbacks.db"
    # Bearer token required on POST /process; unset disables auth
    secret: str | None = None
    git_timeout: float = 300.0


class VaultpressConfig(BaseModel):
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    content: ContentConfig = Field(default_factory=ContentConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
