from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display with tqdm (TTY only).

One bar per write phase, advanced by the number of rows sent in each
upsert chunk. In non-TTY environments (CI, web workers) the bar is never
created, so no ANSI control sequences end up in captured output.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled."""
    return sys.stdout.isatty()


class ProgressTracker:
    """Row-level progress bar for the commit phase.

    Disabled (all methods no-ops) unless stdout is a TTY.
    """

    def __init__(self, total_rows: int, *, description: str = "Writing results") -> None:
        self.total_rows = total_rows
        self.description = description
        self.written = 0

        self.enabled = is_tty_enabled() and total_rows > 0
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, rows: int) -> None:
        self.written += rows
        if self.enabled and self.pbar is not None:
            self.pbar.update(rows)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
