"""One-directional mirror of the host immersion library onto the player.

Only the top level of ``source`` is mirrored because the player directory
is flat.  A file is copied when it is missing from ``dest`` or differs in
size or by two seconds or more in modification time.  FAT stores write
times in two-second steps, so a tighter comparison would recopy about
half of the unchanged files on every run.  ``shutil.copy2`` keeps the source
mtime so the next run sees the pair as unchanged.  Files in ``dest`` that
no longer exist in ``source`` are deleted.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import InvalidPathError, MoveError

MODIFY_WINDOW = 2.0


@dataclass
class MirrorResult:
    copied: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "copied": len(self.copied),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "unchanged": len(self.unchanged),
        }


def validate_source_dest(src: Path, dest: Path) -> None:
    if not src.exists() or not src.is_dir():
        raise InvalidPathError(f"Source folder invalid: {src}")
    if not dest.exists() or not dest.is_dir():
        raise InvalidPathError(f"Destination folder invalid: {dest}")


def _matches(path: Path, extensions: Optional[Iterable[str]]) -> bool:
    return extensions is None or path.suffix.lower() in extensions


def _differs(src: Path, dst: Path) -> bool:
    a, b = src.stat(), dst.stat()
    return a.st_size != b.st_size or abs(a.st_mtime - b.st_mtime) >= MODIFY_WINDOW


def mirror_directory(source: Path, dest: Path, extensions: Optional[Iterable[str]] = None) -> MirrorResult:
    """Make the files of ``dest`` match the files of ``source``.

    When ``extensions`` is given only files with those (lower-case, dotted)
    suffixes are copied or deleted; anything else in ``dest`` is left alone.
    """
    validate_source_dest(source, dest)
    if extensions is not None:
        extensions = {ext.lower() for ext in extensions}
    result = MirrorResult()
    wanted = {
        p.name: p
        for p in sorted(source.iterdir())
        if p.is_file() and _matches(p, extensions)
    }
    try:
        for existing in sorted(dest.iterdir()):
            if not existing.is_file() or not _matches(existing, extensions):
                continue
            if existing.name not in wanted:
                existing.unlink()
                result.deleted.append(existing.name)
        for name, src_file in wanted.items():
            dst_file = dest / name
            if not dst_file.exists():
                shutil.copy2(str(src_file), str(dst_file))
                result.copied.append(name)
            elif _differs(src_file, dst_file):
                shutil.copy2(str(src_file), str(dst_file))
                result.updated.append(name)
            else:
                result.unchanged.append(name)
    except OSError as exc:
        raise MoveError(f"Mirror of {source} into {dest} failed: {exc}") from exc
    return result
