from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

One record per server-side failure of a commit. `correlation_id` is the
reference shown to the operator, so a support request can be matched to the
full detail here. `row` is -1 when the failure is not tied to a source row.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        correlation_id: Reference shared with the operator-facing message
        source: Artifact name, or "paste" / "grid" for non-file input
        row: Source line number (1-based). -1 when unknown
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Database error message or description
    """
    timestamp: str  # ISO8601 UTC
    correlation_id: str
    source: str
    row: int
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(correlation_id: str, source: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            correlation_id=correlation_id,
            source=source,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        """Serialize to one JSON line; the key set is fixed by the dataclass."""
        return json.dumps(asdict(self), ensure_ascii=False)
