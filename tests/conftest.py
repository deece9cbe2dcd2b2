from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Iterable

import pytest

from immersion_sync.config_service import ShuffleConfig
from immersion_sync.engine import ShufflerEngine
from immersion_sync.genre_service import GenreService
from immersion_sync.order_log import OrderLog

MARKER = ".immersion_sync_marker"
OLD = time.time() - 30 * 86400


def stub_probe(path: Path) -> str:
    """Files named ``imm_*`` are immersion material, everything else a podcast."""
    return "Immersion" if path.name.startswith("imm_") else "Podcast"


def make_files(directory: Path, names: Iterable[str], mtime: float = OLD) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for name in names:
        path = directory / name
        path.write_bytes(b"\0" * 64)
        os.utime(path, (mtime, mtime))


@pytest.fixture
def player(tmp_path: Path) -> Path:
    target = tmp_path / "player"
    target.mkdir()
    (target / MARKER).write_text("", encoding="utf-8")
    return target


@pytest.fixture
def library(tmp_path: Path) -> Path:
    source = tmp_path / "library"
    source.mkdir()
    return source


@pytest.fixture
def make_engine(tmp_path: Path, player: Path, library: Path):
    def _make(**overrides) -> ShufflerEngine:
        settings = dict(
            target_dir=player,
            source_dir=library,
            log_file=tmp_path / "logs" / "order.log",
            recency_days=0,
            others_cap=0,
            seed=1234,
        )
        settings.update(overrides)
        config = ShuffleConfig(**settings)
        return ShufflerEngine(
            config=config,
            genre_service=GenreService(config.immersion_genres, stub_probe),
            order_log=OrderLog(config.log_file),
            sleep=lambda seconds: None,
        )

    return _make
