from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass
from pathlib import Path

from ..models.config_models import LimitsConfig
from .store import KeyValueStore

"""Import context: the preview -> commit handshake.

A successful upload stores the artifact as `otm_<token>.<ext>` in the upload
directory and records an ImportContext under the operator's session. A
commit must present the same token within the context TTL; anything else is
refused before the results store is touched.

Artifacts are also swept on their own schedule (older than the artifact TTL)
whether or not a context still points at them.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ALLOWED_EXTENSIONS",
    "ContextError",
    "ImportContext",
    "ImportContextManager",
    "UploadRejectedError",
    "sniff_content_type",
]

ALLOWED_EXTENSIONS = ("xlsx", "csv")
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MIME = "text/csv"
ZIP_MAGIC = b"PK\x03\x04"
_SNIFF_BYTES = 8192

_CONTEXT_PREFIX = "ctx:"


class ContextError(Exception):
    """Raised when a commit presents an unknown, mismatched or expired context."""


class UploadRejectedError(Exception):
    """Raised when an upload fails the extension, size or content checks."""


@dataclass(frozen=True)
class ImportContext:
    token: str
    path: str
    name: str
    size: int
    created: float

    @property
    def artifact(self) -> Path:
        return Path(self.path)

    def age(self, now: float) -> float:
        return max(0.0, now - self.created)

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_dict(d: dict) -> ImportContext:
        return ImportContext(
            token=str(d["token"]),
            path=str(d["path"]),
            name=str(d.get("name", "")),
            size=int(d.get("size", 0)),
            created=float(d["created"]),
        )


def sniff_content_type(data: bytes) -> str | None:
    """Best effort content type from the leading bytes (xlsx or csv only)."""
    head = data[:_SNIFF_BYTES]
    if head.startswith(ZIP_MAGIC):
        return XLSX_MIME
    if b"\x00" in head:
        return None
    return CSV_MIME


def _extension(filename: str) -> str:
    return Path(filename).suffix.lower().lstrip(".")


class ImportContextManager:
    def __init__(
        self,
        store: KeyValueStore,
        upload_directory: Path,
        limits: LimitsConfig | None = None,
    ) -> None:
        self.store = store
        self.upload_directory = Path(upload_directory)
        self.limits = limits or LimitsConfig()

    def _key(self, session: str) -> str:
        return f"{_CONTEXT_PREFIX}{session}"

    @property
    def max_upload_label(self) -> str:
        return f"{self.limits.max_upload_bytes // 1_000_000}MB"

    def stage_upload(self, session: str, filename: str, data: bytes) -> ImportContext:
        ext = _extension(filename)
        if ext not in ALLOWED_EXTENSIONS:
            raise UploadRejectedError("Invalid file type. Use XLSX/CSV.")
        size = len(data)
        if size <= 0 or size > self.limits.max_upload_bytes:
            raise UploadRejectedError(f"File is too large or empty (max {self.max_upload_label}).")
        mime = sniff_content_type(data)
        expected = XLSX_MIME if ext == "xlsx" else CSV_MIME
        if mime != expected:
            raise UploadRejectedError("Invalid file type. Use XLSX/CSV.")

        self.sweep_artifacts()
        previous = self.current(session)
        if previous is not None:
            previous.artifact.unlink(missing_ok=True)

        self.upload_directory.mkdir(parents=True, exist_ok=True)
        token = secrets.token_hex(16)
        path = self.upload_directory / f"otm_{token}.{ext}"
        path.write_bytes(data)
        ctx = ImportContext(
            token=token,
            path=str(path),
            name=Path(filename).name,
            size=size,
            created=self.store.now(),
        )
        self.store.set(self._key(session), ctx.to_dict(), ttl_seconds=self.limits.artifact_ttl_seconds)
        logger.info("staged upload name=%s size=%d token=%s", ctx.name, size, token[:8])
        return ctx

    def current(self, session: str) -> ImportContext | None:
        raw = self.store.get(self._key(session))
        if not raw:
            return None
        try:
            return ImportContext.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("dropping malformed import context for session=%s", session)
            self.store.delete(self._key(session))
            return None

    def require(self, session: str, token: str) -> ImportContext:
        ctx = self.current(session)
        if ctx is None:
            raise ContextError("Import session expired. Preview again.")
        if not token or not secrets.compare_digest(ctx.token, token):
            raise ContextError("Import context does not match this upload. Preview again.")
        if ctx.age(self.store.now()) > self.limits.context_ttl_seconds:
            raise ContextError(
                f"Import session expired (older than {self._ttl_label()}). Preview again."
            )
        if not ctx.artifact.is_file():
            raise ContextError("Uploaded file is missing. Preview again.")
        return ctx

    def _ttl_label(self) -> str:
        secs = self.limits.context_ttl_seconds
        if secs % 3600 == 0:
            hours = secs // 3600
            return f"{hours} hour" + ("s" if hours != 1 else "")
        return f"{max(1, secs // 60)} minutes"

    def consume(self, session: str) -> None:
        """Delete the context and its artifact after a successful commit."""
        ctx = self.current(session)
        if ctx is not None:
            ctx.artifact.unlink(missing_ok=True)
        self.store.delete(self._key(session))

    def reset(self, session: str) -> bool:
        """Operator-initiated discard. Returns True when a context existed."""
        existed = self.current(session) is not None
        self.consume(session)
        return existed

    def sweep_artifacts(self) -> int:
        """Delete stored artifacts older than the artifact TTL. Returns the count."""
        if not self.upload_directory.is_dir():
            return 0
        cutoff = self.store.now() - self.limits.artifact_ttl_seconds
        removed = 0
        for ext in ALLOWED_EXTENSIONS:
            for path in self.upload_directory.glob(f"otm_*.{ext}"):
                try:
                    if path.stat().st_mtime < cutoff:
                        path.unlink()
                        removed += 1
                except FileNotFoundError:
                    continue
        if removed:
            logger.info("swept %d stale upload artifact(s)", removed)
        return removed
