"""Append-only, human-readable record of the storage order a run produced."""

from __future__ import annotations

import datetime
from pathlib import Path
from typing import List, Tuple

SEPARATOR = "-" * 40

LABEL_NEW = "new"
LABEL_IMMERSION = "immersion"
LABEL_OTHER = "other"


class OrderLog:
    """Append-only logger for ``<label> <filename>`` lines.

    Every run starts with a separator line followed by a timestamp line.
    """

    def __init__(self, path: Path):
        self.path = path

    def _append(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def start_run(self, now: datetime.datetime) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._append(SEPARATOR)
        self._append(now.strftime("%Y-%m-%d %H:%M:%S"))

    def record(self, label: str, filename: str) -> None:
        self._append(f"{label} {filename}")

    def read_runs(self) -> List[Tuple[str, List[Tuple[str, str]]]]:
        """Return ``(timestamp, [(label, filename), ...])`` for every run, oldest first."""
        if not self.path.exists():
            return []
        runs: List[Tuple[str, List[Tuple[str, str]]]] = []
        expect_timestamp = False
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if line == SEPARATOR:
                expect_timestamp = True
                continue
            if expect_timestamp:
                runs.append((line, []))
                expect_timestamp = False
                continue
            if not runs or not line:
                continue
            label, _, filename = line.partition(" ")
            runs[-1][1].append((label, filename))
        return runs
