"""Genre lookup used to split audio into immersion and other files.

The engine treats the genre as an opaque label: a probe returns a single
genre string (or ``""`` when a file has none) and :class:`GenreService`
decides whether that label is one of the configured immersion genres.

Two probes are provided:

* :class:`MutagenGenreProbe` reads tags in-process with ``mutagen``.
* :class:`FfprobeGenreProbe` shells out to ``ffprobe`` for setups where
  ffmpeg reads a container mutagen does not.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Set

import mutagen
from mutagen import MutagenError

from .errors import ConfigError, ProbeError

GenreProbe = Callable[[Path], str]


def _first_text(value) -> str:
    """Return the first entry of a tag value as text.

    Easy and MP4 tags are lists of strings, ID3 frames carry ``genres`` (with
    numeric ID3v1 references resolved) and ASF attributes stringify.
    """
    if value is None:
        return ""
    if hasattr(value, "genres"):
        value = value.genres
    elif hasattr(value, "text"):
        value = value.text
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    return str(value).strip()


class MutagenGenreProbe:
    """Return the first genre tag of a file.

    mutagen's easy interface only maps ``genre`` for MP3, MP4 and Vorbis
    style containers; WAV and AIFF keep raw ID3 frames and WMA keeps ASF
    attributes, so those raw keys are checked when the easy lookup is empty.
    """

    RAW_GENRE_KEYS = ("TCON", "WM/Genre", "\xa9gen")

    def __call__(self, path: Path) -> str:
        try:
            audio = mutagen.File(str(path), easy=True)
        except (MutagenError, OSError):
            return ""
        if audio is None or not audio.tags:
            return ""
        for key in ("genre",) + self.RAW_GENRE_KEYS:
            genre = _first_text(audio.tags.get(key))
            if genre:
                return genre
        return ""


@dataclass
class FfprobeGenreProbe:
    """Return the container-level genre tag as reported by ``ffprobe``."""

    binary: str = "ffprobe"

    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def __call__(self, path: Path) -> str:
        cmd = [
            self.binary,
            "-v", "quiet",
            "-show_entries", "format_tags=genre",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as exc:
            raise ProbeError(f"ffprobe not found: {self.binary}") from exc
        if proc.returncode != 0:
            return ""
        lines = proc.stdout.strip().splitlines()
        return lines[0].strip() if lines else ""


@dataclass
class GenreService:
    """Classify audio files as immersion material by their genre tag."""

    immersion_genres: Iterable[str]
    probe: GenreProbe = field(default_factory=MutagenGenreProbe)
    _normalised: Set[str] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._normalised = {g.strip().casefold() for g in self.immersion_genres}

    @classmethod
    def from_config(cls, config) -> "GenreService":
        if config.genre_backend == "mutagen":
            probe: GenreProbe = MutagenGenreProbe()
        elif config.genre_backend == "ffprobe":
            probe = FfprobeGenreProbe()
        else:
            raise ConfigError(f"Unknown genre backend: {config.genre_backend}")
        return cls(config.immersion_genres, probe)

    def genre_of(self, path: Path) -> str:
        return self.probe(path) or ""

    def is_immersion(self, path: Path) -> bool:
        return self.genre_of(path).strip().casefold() in self._normalised
