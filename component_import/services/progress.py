from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.import_run import RunProgress

"""Progress display with tqdm (TTY only).

A single bar counts planned instances as chunks commit. In non-TTY
environments (CI, redirected output) no bar is created so logs stay free of
control sequences.
"""

__all__ = [
    "ChunkProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """True when stdout is a TTY and a progress bar should be drawn."""
    return sys.stdout.isatty()


class ChunkProgressTracker:
    """tqdm wrapper fed by the committer's progress callback.

    Usable directly as the progress_callback: each RunProgress moves the
    bar to its processed count.
    """

    def __init__(self, total: int, *, description: str = "Importing components") -> None:
        self.total = total
        self.description = description
        self.position = 0
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total,
                desc=description,
                unit="inst",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def __call__(self, progress: RunProgress) -> None:
        if progress.total != self.total:
            self.total = progress.total
            if self.pbar is not None:
                self.pbar.reset(total=progress.total)
                self.pbar.update(self.position)
        self.update_to(progress.processed)

    def update_to(self, processed: int) -> None:
        """Advance to an absolute count; the bar never moves backwards."""
        delta = processed - self.position
        if delta <= 0:
            return
        self.position = processed
        if self.pbar is not None:
            self.pbar.update(delta)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ChunkProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
