from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the OTM results importer.

These are the typed results of `otm_importer.config.loader.load_config`.
Defaults mirror the limits the admin import screens have always used:
10MB uploads, a one hour preview context and six hours before orphaned
upload artifacts are swept.
"""

DEFAULT_MAX_UPLOAD_BYTES = 10_000_000
DEFAULT_CONTEXT_TTL_SECONDS = 3600
DEFAULT_ARTIFACT_TTL_SECONDS = 6 * 3600
DEFAULT_DRAFT_TTL_SECONDS = 24 * 3600
DEFAULT_PREVIEW_LIMIT = 120


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class LimitsConfig:
    """Upload size and state lifetime limits."""
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    context_ttl_seconds: int = DEFAULT_CONTEXT_TTL_SECONDS  # preview -> commit window
    artifact_ttl_seconds: int = DEFAULT_ARTIFACT_TTL_SECONDS  # sweep threshold for stored uploads
    draft_ttl_seconds: int = DEFAULT_DRAFT_TTL_SECONDS
    preview_limit: int = DEFAULT_PREVIEW_LIMIT  # rows shown in a preview listing


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for the importer."""
    state_directory: str  # JsonFileStore root (contexts + drafts)
    upload_directory: str  # where staged upload artifacts live
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
