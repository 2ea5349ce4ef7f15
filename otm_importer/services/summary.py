from __future__ import annotations

from ..models.import_plan import CommitResult, ImportPlan

"""SUMMARY line rendering.

One line per CLI run, after the plan (and, if any, the commit) is known.
Scripts parse it, so the key order and spelling are fixed.
"""

__all__ = [
    "render_summary_line",
]


def render_summary_line(plan: ImportPlan, result: CommitResult | None = None, *, dry_run: bool = False) -> str:
    """Render the SUMMARY line for one pipeline run.

    Format:
    SUMMARY rows={total} skipped={skip} valid={valid} errors={error}
    inserts={insert} updates={update} dry_run={true|false}

    `inserts`/`updates` are what was written, or what would be written on a
    dry-run; a blocked or preview-only run reports 0 for both.

    Examples:
        >>> from otm_importer.models.import_plan import ImportPlan
        >>> render_summary_line(ImportPlan())
        'SUMMARY rows=0 skipped=0 valid=0 errors=0 inserts=0 updates=0 dry_run=false'
    """
    inserts = updates = 0
    if result is not None and not result.errors:
        inserts = result.inserted
        updates = result.updated
    return (
        f"SUMMARY rows={plan.total} "
        f"skipped={plan.skip_count} "
        f"valid={plan.valid_count} "
        f"errors={plan.error_count} "
        f"inserts={inserts} "
        f"updates={updates} "
        f"dry_run={'true' if dry_run else 'false'}"
    )
