"""Durable pay-index checkpoint.

A single decimal integer in a text file: the index handed to the next
waitanyinvoice call. Reads fail soft to 0; writes are atomic and any
OSError propagates to the caller.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

log = logging.getLogger(__name__)


class CheckpointStore:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> int:
        """Return the stored index, or 0 if the file is missing or corrupt."""
        try:
            raw = self._path.read_text().strip()
        except FileNotFoundError:
            return 0
        except OSError as exc:
            log.warning("Could not read checkpoint %s: %s, starting from 0", self._path, exc)
            return 0

        try:
            index = int(raw)
        except ValueError:
            log.warning("Corrupt checkpoint %s (%r), starting from 0", self._path, raw[:32])
            return 0
        if index < 0:
            log.warning("Negative checkpoint %s (%d), starting from 0", self._path, index)
            return 0
        return index

    def write(self, index: int) -> None:
        """Atomically replace the stored index."""
        if index < 0:
            raise ValueError(f"checkpoint index must be non-negative, got {index}")

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(f"{index}\n")
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        log.debug("Checkpoint %s advanced to %d", self._path, index)
