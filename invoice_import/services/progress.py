from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display over the files of one batch (tqdm, TTY only).

In non-TTY environments (CI, redirected output) no bar is created, so the
log stays free of ANSI control sequences. Counters are kept either way.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]

BAR_WIDTH = 80


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and progress should be displayed."""
    return sys.stdout.isatty()


class ProgressTracker:
    """One bar step per CSV file; usable as a context manager."""

    def __init__(self, total_files: int, *, description: str = "Importing files") -> None:
        self.total_files = total_files
        self.description = description
        self.current_file = 0
        self.failed_files = 0
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None = self._open_bar() if self.enabled else None

    def _open_bar(self) -> TqdmType[Any]:
        return tqdm(
            total=self.total_files,
            desc=self.description,
            unit="file",
            leave=True,
            ncols=BAR_WIDTH,
            ascii=True,
        )

    def start_file(self, file_name: str) -> None:
        self.current_file += 1
        if self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({file_name})")

    def finish_file(self, success: bool = True) -> None:
        self.failed_files += 0 if success else 1
        if self.pbar is None:
            return
        self.pbar.update(1)
        self.pbar.set_description(self.description)

    def set_postfix(self, **stats: Any) -> None:
        """Show per-file stats (e.g. rows=..., rejected=...) after the bar."""
        if self.pbar is not None:
            self.pbar.set_postfix(**stats)

    def close(self) -> None:
        bar, self.pbar = self.pbar, None
        if bar is not None:
            bar.close()

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
