"""Top‑level package for Immersion Sync.

Immersion Sync keeps a removable MP3 player stocked with foreign-language
listening material.  One pass mirrors the host-side immersion library onto
the player, puts newly added material first, and interleaves the rest with
everything else on the device in a fixed ratio.  Because simple players
play files in storage order rather than by name, the order is produced by
moving files out into temporary bucket folders and back again.

The public API surface consists of the following key classes and
functions:

* :class:`immersion_sync.config_service.ConfigService` – resolves the
  configuration directory (AppData/XDG or portable mode), loads and
  validates ``config.json``.
* :class:`immersion_sync.config_service.ShuffleConfig` – the settings of
  a single run.
* :class:`immersion_sync.genre_service.GenreService` – decides whether an
  audio file is immersion material from its genre tag.
* :class:`immersion_sync.engine.ShufflerEngine` – recovery, categorization,
  mirroring, recency promotion and the interleaved shuffle.
* :mod:`immersion_sync.cli` – the ``immersion-sync`` command, run it via
  ``python -m immersion_sync.cli``.
"""

from .config_service import ConfigService, ShuffleConfig  # noqa: F401
from .genre_service import GenreService  # noqa: F401
from .engine import ShufflerEngine, compute_ratios  # noqa: F401
