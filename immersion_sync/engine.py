"""Core sync-and-shuffle engine for Immersion Sync.

Simple MP3 players play a folder in storage (directory entry) order
rather than by filename.  The :class:`ShufflerEngine` rewrites that order
by moving every audio file out of the player's root into one of two
temporary *buckets* and then back again in the desired sequence:

1. Recovery: leftover buckets from an aborted run are emptied into the
   root and removed.
2. Categorization: audio files whose genre is an immersion genre, or
   whose name is also in the host library, go to ``immersion/``; every
   other audio file goes to ``other/``.  Non-audio files never move.
3. Mirror: ``immersion/`` is made identical to the host library.
4. Recency promotion: recently modified immersion files go back first.
5. Ratio computation from the remaining bucket sizes.
6. Interleaving: random batches of immersion and other files are moved
   back in turns according to the ratio.
7. Cleanup: the empty buckets are removed.

The first failed move aborts the run.  Nothing tries to resume a half
shuffled device; the next run's recovery step brings it back to a flat
state instead.

The engine is decoupled from any user interface and depends only on a
:class:`~immersion_sync.config_service.ShuffleConfig`, a
:class:`~immersion_sync.genre_service.GenreService` and an
:class:`~immersion_sync.order_log.OrderLog`.
"""

from __future__ import annotations

import datetime
import json
import random
import shutil
import sys
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set

from .config_service import ShuffleConfig
from .errors import InvalidPathError, MarkerMissingError, MoveError
from .genre_service import GenreService
from .mirror import mirror_directory
from .order_log import LABEL_IMMERSION, LABEL_NEW, LABEL_OTHER, OrderLog

IMMERSION_BUCKET = "immersion"
OTHER_BUCKET = "other"
BUCKET_NAMES = (IMMERSION_BUCKET, OTHER_BUCKET)

REPORT_FILENAME = "last_run.json"


class Ratio(NamedTuple):
    immersion: int
    other: int


def compute_ratios(i_total: int, o_total: int, cap: int = 0) -> Ratio:
    """Return how many immersion and other files to move per round.

    Both sides use floor division against the other side's size, so the
    pair is not a true inverse when both totals exceed one (7 and 3 give
    2 and 1).  Neither side ever drops below one, and a positive ``cap``
    limits the other side.
    """
    i_ratio = max(1, i_total // o_total if o_total > 0 else i_total)
    o_ratio = max(1, o_total // i_total if i_total > 0 else o_total)
    if cap > 0 and o_ratio > cap:
        o_ratio = cap
    return Ratio(i_ratio, o_ratio)


@dataclass
class ShufflerEngine:
    """Sync the immersion library onto a player and reshuffle its storage order."""

    config: ShuffleConfig
    genre_service: GenreService
    order_log: OrderLog
    rng: Optional[random.Random] = None
    verbose: bool = False
    sleep: Optional[Callable[[float], None]] = None
    seed: Optional[int] = field(default=None, init=False)

    def __post_init__(self) -> None:
        if self.rng is None:
            self.seed = self.config.seed if self.config.seed is not None else random.SystemRandom().randrange(2 ** 32)
            self.rng = random.Random(self.seed)
        self._extensions = {ext.lower() for ext in self.config.audio_extensions}

    @property
    def root(self) -> Path:
        return self.config.target_dir

    def bucket(self, name: str) -> Path:
        return self.root / name

    def _say(self, message: str) -> None:
        if self.verbose:
            print(message, file=sys.stderr)

    # ------------------------------------------------------------------
    # Filesystem helpers

    def _is_audio(self, path: Path) -> bool:
        return path.is_file() and path.suffix.lower() in self._extensions

    def _list_files(self, directory: Path) -> List[Path]:
        """Return the regular files in ``directory`` sorted by name.

        A missing directory is reported as :class:`InvalidPathError` rather
        than silently treated as empty.
        """
        if not directory.is_dir():
            raise InvalidPathError(f"Not a directory: {directory}")
        return sorted(p for p in directory.iterdir() if p.is_file())

    def _audio_in_root(self) -> List[Path]:
        return [p for p in self._list_files(self.root) if self._is_audio(p)]

    def _bucket_files(self, name: str) -> List[Path]:
        bucket_dir = self.bucket(name)
        if not bucket_dir.exists():
            return []
        return self._list_files(bucket_dir)

    def _move(self, src: Path, dest_dir: Path) -> Path:
        """Move ``src`` into ``dest_dir`` keeping its name.

        Raises :class:`InvalidPathError` when either side is missing and
        :class:`MoveError` when the destination is taken or the OS refuses.
        """
        if not src.exists():
            raise InvalidPathError(f"Source vanished: {src}")
        if not dest_dir.is_dir():
            raise InvalidPathError(f"Destination folder invalid: {dest_dir}")
        dest = dest_dir / src.name
        if dest.exists():
            raise MoveError(f"Refusing to overwrite {dest}")
        try:
            shutil.move(str(src), str(dest))
        except OSError as exc:
            raise MoveError(f"Failed to move {src} to {dest_dir}: {exc}") from exc
        self._say(f"moved {src} -> {dest}")
        return dest

    def _ensure_bucket(self, name: str) -> Path:
        bucket_dir = self.bucket(name)
        try:
            bucket_dir.mkdir(exist_ok=True)
        except OSError as exc:
            raise MoveError(f"Cannot create bucket {bucket_dir}: {exc}") from exc
        return bucket_dir

    def _remove_bucket(self, name: str) -> bool:
        bucket_dir = self.bucket(name)
        if not bucket_dir.is_dir():
            return False
        try:
            bucket_dir.rmdir()
        except OSError as exc:
            raise MoveError(f"Cannot remove bucket {bucket_dir}: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # Steps

    def check_marker(self) -> None:
        """Fail unless the marker file identifies the target as the right device."""
        if not self.root.is_dir():
            raise InvalidPathError(f"Target folder invalid: {self.root}")
        if not self.config.marker_path.is_file():
            raise MarkerMissingError(
                f"Marker file {self.config.marker_path} not found; is the right device mounted?"
            )

    def has_leftover_buckets(self) -> bool:
        return any(self.bucket(name).exists() for name in BUCKET_NAMES)

    def recover(self) -> List[str]:
        """Flatten leftover buckets from an aborted run back into the root."""
        restored: List[str] = []
        for name in BUCKET_NAMES:
            bucket_dir = self.bucket(name)
            if not bucket_dir.exists():
                continue
            if not bucket_dir.is_dir():
                raise InvalidPathError(f"Bucket path is not a directory: {bucket_dir}")
            # directories too, rmdir needs an empty bucket
            for entry in sorted(bucket_dir.iterdir()):
                self._move(entry, self.root)
                restored.append(entry.name)
            self._remove_bucket(name)
        if restored:
            print(f"Warning: recovered {len(restored)} file(s) left behind by an interrupted run.", file=sys.stderr)
        return restored

    def categorize(self) -> Dict[str, int]:
        """Split the root's audio files into the immersion and other buckets.

        A file that also exists in the source library counts as immersion
        whatever its genre tag says, since the mirror step owns that name and
        would otherwise copy a second file of the same name into the bucket.
        """
        immersion_dir = self._ensure_bucket(IMMERSION_BUCKET)
        other_dir = self._ensure_bucket(OTHER_BUCKET)
        audio = self._audio_in_root()
        library = self._library_names()
        immersion = [p for p in audio if p.name in library or self.genre_service.is_immersion(p)]
        for file_path in immersion:
            self._move(file_path, immersion_dir)
        others = self._audio_in_root()
        for file_path in others:
            self._move(file_path, other_dir)
        return {"immersion": len(immersion), "other": len(others)}

    def _library_names(self) -> Set[str]:
        source = self.config.source_dir
        if not source.is_dir():
            return set()
        return {p.name for p in source.iterdir() if self._is_audio(p)}

    def mirror(self) -> Dict[str, int]:
        result = mirror_directory(self.config.source_dir, self.bucket(IMMERSION_BUCKET), self._extensions)
        return result.as_dict()

    def _is_recent(self, path: Path, now: datetime.datetime) -> bool:
        if self.config.recency_days <= 0:
            return False
        threshold = now - datetime.timedelta(days=self.config.recency_days)
        return datetime.datetime.fromtimestamp(path.stat().st_mtime) > threshold

    def promote_recent(self, now: datetime.datetime) -> List[str]:
        """Move recently modified immersion files to the root ahead of the shuffle."""
        promoted: List[str] = []
        for file_path in self._bucket_files(IMMERSION_BUCKET):
            if self._is_recent(file_path, now):
                self._move(file_path, self.root)
                self.order_log.record(LABEL_NEW, file_path.name)
                promoted.append(file_path.name)
        return promoted

    def _move_random_batch(self, bucket: str, count: Optional[int], label: str, order: List[str]) -> int:
        files = self._bucket_files(bucket)
        self.rng.shuffle(files)
        batch = files if count is None else files[:count]
        for file_path in batch:
            self._move(file_path, self.root)
            self.order_log.record(label, file_path.name)
            order.append(f"{label} {file_path.name}")
        return len(batch)

    def interleave(self, ratio: Ratio, order: Optional[List[str]] = None) -> int:
        """Move the buckets back into the root in turns; return the rounds used.

        Each round moves up to ``ratio.immersion`` random immersion files and
        then up to ``ratio.other`` random other files.  Once the immersion
        bucket is empty the remaining other files go back in one shuffled
        batch, which counts as a final round.
        """
        if order is None:
            order = []
        rounds = 0
        while self._bucket_files(IMMERSION_BUCKET):
            rounds += 1
            self._move_random_batch(IMMERSION_BUCKET, ratio.immersion, LABEL_IMMERSION, order)
            if self._bucket_files(OTHER_BUCKET):
                self._move_random_batch(OTHER_BUCKET, ratio.other, LABEL_OTHER, order)
        if self._bucket_files(OTHER_BUCKET):
            rounds += 1
            self._move_random_batch(OTHER_BUCKET, None, LABEL_OTHER, order)
        return rounds

    def cleanup(self) -> None:
        for name in BUCKET_NAMES:
            self._remove_bucket(name)

    def startup_delay(self) -> None:
        minutes = self.config.startup_delay_minutes
        if minutes <= 0:
            return
        print(f"Starting in {minutes:g} minute(s); press Ctrl+C to cancel.", file=sys.stderr)
        remaining = minutes * 60
        while remaining > 0:
            step = min(60.0, remaining)
            (self.sleep or time.sleep)(step)
            remaining -= step

    # ------------------------------------------------------------------
    # Entry points

    def run(self, delay: bool = True) -> Dict[str, Any]:
        """Perform one full sync-and-shuffle pass and return a run report.

        The marker check happens before anything else, so a wrong mount
        point leaves the filesystem and the order log untouched.  The report
        is also written as JSON next to the order log.
        """
        self.check_marker()
        if not self.config.source_dir.is_dir():
            raise InvalidPathError(f"Source folder invalid: {self.config.source_dir}")
        if delay:
            self.startup_delay()
        now = datetime.datetime.now()
        run_id = now.strftime("%Y%m%d_%H%M%S_") + uuid.uuid4().hex[:8]
        report: Dict[str, Any] = {
            "run_id": run_id,
            "timestamp": now.isoformat(),
            "seed": self.seed,
            "target_dir": str(self.root),
            "source_dir": str(self.config.source_dir),
        }
        report["recovered"] = len(self.recover())
        self.order_log.start_run(now)
        report["categorized"] = self.categorize()
        report["mirror"] = self.mirror()
        promoted = self.promote_recent(now)
        report["promoted"] = promoted
        i_total = len(self._bucket_files(IMMERSION_BUCKET))
        o_total = len(self._bucket_files(OTHER_BUCKET))
        ratio = compute_ratios(i_total, o_total, self.config.others_cap)
        report["totals"] = {"immersion": i_total, "other": o_total}
        report["ratio"] = {"immersion": ratio.immersion, "other": ratio.other}
        order = [f"{LABEL_NEW} {name}" for name in promoted]
        report["rounds"] = self.interleave(ratio, order)
        self.cleanup()
        report["order"] = order
        self._save_report(report)
        return report

    def _save_report(self, report: Dict[str, Any]) -> None:
        report_path = self.config.log_file.parent / REPORT_FILENAME
        report_path.parent.mkdir(parents=True, exist_ok=True)
        with open(report_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)

    def analyze(self, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
        """Describe what a run would see right now without touching anything.

        Files still sitting in leftover buckets are counted as if recovery had
        already put them back.  The mirror step is not simulated.
        """
        self.check_marker()
        now = now or datetime.datetime.now()
        candidates = self._audio_in_root()
        leftover: List[Path] = []
        for name in BUCKET_NAMES:
            leftover.extend(p for p in self._bucket_files(name) if self._is_audio(p))
        candidates.extend(leftover)
        library = self._library_names()
        immersion = [p for p in candidates if p.name in library or self.genre_service.is_immersion(p)]
        recent = [p.name for p in immersion if self._is_recent(p, now)]
        i_total = len(immersion) - len(recent)
        o_total = len(candidates) - len(immersion)
        ratio = compute_ratios(i_total, o_total, self.config.others_cap)
        non_audio = [p.name for p in self._list_files(self.root) if not self._is_audio(p)]
        return {
            "leftover_bucket_files": len(leftover),
            "immersion": len(immersion),
            "other": o_total,
            "recent": recent,
            "non_audio": non_audio,
            "ratio": {"immersion": ratio.immersion, "other": ratio.other},
        }
