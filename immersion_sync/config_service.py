"""Configuration management for Immersion Sync.

This module centralises all logic related to finding and loading the
configuration file.  It supports both AppData and portable installation
modes, resolves the appropriate configuration directory, and validates
``config.json`` against the JSON schema bundled with the package.

Portable mode is enabled by passing ``--portable`` to the CLI or by
placing a ``portable.flag`` file in the application directory; the
configuration then lives next to the application instead of under
``$XDG_CONFIG_HOME/ImmersionSync`` (``~/.config/ImmersionSync``) or
``%APPDATA%\\ImmersionSync`` on Windows.

Unlike a cosmetic setting, a broken configuration here would point a
destructive shuffle at the wrong place, so validation failures raise
:class:`~immersion_sync.errors.ConfigError` instead of falling back to
defaults.

Example usage::

    from immersion_sync.config_service import ConfigService

    config_service = ConfigService(app_dir=Path.cwd())
    cfg = config_service.load_config()
    cfg["target_dir"] = "/media/player"
    config_service.save_config(cfg)
    shuffle_config = config_service.build_shuffle_config(cfg)
"""

from __future__ import annotations

import json
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from .errors import ConfigError

APP_NAME = "ImmersionSync"

DEFAULT_AUDIO_EXTENSIONS = [".mp3", ".m4a", ".aac", ".ogg", ".opus", ".flac", ".wav", ".wma"]

SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"


def _get_appdata_root(app_name: str = APP_NAME) -> Path:
    """Return the platform‑specific base directory for config files."""
    system = platform.system().lower()
    if system == "windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / app_name
        return Path.home() / f"AppData/Roaming/{app_name}"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / app_name
    return Path.home() / ".config" / app_name


def _load_json(file_path: Path) -> Any:
    if not file_path.exists():
        return None
    with file_path.open("r", encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{file_path} is not valid JSON: {exc}") from exc


def _save_json(data: Any, file_path: Path) -> None:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def _validate_json(data: Any, schema_path: Path) -> None:
    schema = _load_json(schema_path)
    if not schema:
        return
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc.message}") from exc


@dataclass(frozen=True)
class ShuffleConfig:
    """Settings for one sync-and-shuffle pass, fixed at process start."""

    target_dir: Path
    source_dir: Path
    log_file: Path
    marker_file: str = ".immersion_sync_marker"
    immersion_genres: List[str] = field(default_factory=lambda: ["Immersion"])
    audio_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_AUDIO_EXTENSIONS))
    recency_days: float = 3
    others_cap: int = 1
    startup_delay_minutes: float = 0
    genre_backend: str = "mutagen"
    seed: Optional[int] = None

    @property
    def marker_path(self) -> Path:
        return self.target_dir / self.marker_file

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_log_file: Path) -> "ShuffleConfig":
        """Build a config from a validated dict, filling in defaults.

        ``target_dir`` and ``source_dir`` are mandatory here even though the
        schema allows them to be missing, because the CLI may supply them on
        the command line instead of the file.
        """
        missing = [key for key in ("target_dir", "source_dir") if not data.get(key)]
        if missing:
            raise ConfigError(f"Missing required setting(s): {', '.join(missing)}")
        extensions = data.get("audio_extensions") or DEFAULT_AUDIO_EXTENSIONS
        log_file = data.get("log_file")
        return cls(
            target_dir=Path(data["target_dir"]).expanduser(),
            source_dir=Path(data["source_dir"]).expanduser(),
            log_file=Path(log_file).expanduser() if log_file else default_log_file,
            marker_file=data.get("marker_file", cls.marker_file),
            immersion_genres=list(data.get("immersion_genres") or ["Immersion"]),
            audio_extensions=[_normalise_extension(ext) for ext in extensions],
            recency_days=data.get("recency_days", cls.recency_days),
            others_cap=int(data.get("others_cap", cls.others_cap)),
            startup_delay_minutes=data.get("startup_delay_minutes", cls.startup_delay_minutes),
            genre_backend=data.get("genre_backend", cls.genre_backend),
            seed=data.get("seed"),
        )


def _normalise_extension(ext: str) -> str:
    ext = ext.strip().lower()
    if not ext.startswith("."):
        ext = "." + ext
    return ext


@dataclass
class ConfigService:
    """Resolve and manage Immersion Sync configuration."""

    app_dir: Path
    portable_flag_filename: str = "portable.flag"
    config_filename: str = "config.json"
    log_filename: str = "shuffle_order.log"
    schema_name: str = "config.schema.json"
    _cached_mode: Optional[bool] = field(default=None, init=False, repr=False)

    def _portable_flag_exists(self) -> bool:
        return (self.app_dir / self.portable_flag_filename).exists()

    def detect_mode(self, cli_portable: bool = False) -> bool:
        """Return ``True`` if portable mode should be used.

        The result is cached per instance so later calls agree with the
        first one even if the flag file appears mid-run.
        """
        if self._cached_mode is None:
            self._cached_mode = cli_portable or self._portable_flag_exists()
        return self._cached_mode

    def get_config_dir(self, cli_portable: bool = False) -> Path:
        if self.detect_mode(cli_portable=cli_portable):
            return self.app_dir
        return _get_appdata_root()

    def get_config_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.config_filename

    def get_default_log_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.log_filename

    def get_schema_path(self) -> Path:
        return SCHEMA_DIR / self.schema_name

    def load_config(self, cli_portable: bool = False, config_path: Optional[Path] = None) -> Dict[str, Any]:
        """Load and validate the configuration; a missing file yields ``{}``."""
        cfg_path = config_path or self.get_config_path(cli_portable)
        data = _load_json(cfg_path)
        cfg: Dict[str, Any] = data if data is not None else {}
        _validate_json(cfg, self.get_schema_path())
        return cfg

    def save_config(self, config: Dict[str, Any], cli_portable: bool = False) -> None:
        """Write configuration to disk, validating against the schema first."""
        _validate_json(config, self.get_schema_path())
        _save_json(config, self.get_config_path(cli_portable))

    def merge_overrides(self, config: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Return ``config`` with the non-``None`` overrides applied, validated."""
        merged = dict(config)
        for key, value in (overrides or {}).items():
            if value is not None:
                merged[key] = value
        _validate_json(merged, self.get_schema_path())
        return merged

    def build_shuffle_config(
        self,
        config: Dict[str, Any],
        overrides: Optional[Dict[str, Any]] = None,
        cli_portable: bool = False,
    ) -> ShuffleConfig:
        """Merge CLI overrides into ``config`` and return a :class:`ShuffleConfig`.

        Overrides with a value of ``None`` are ignored.  The merged result
        is validated again so a bad command-line value is reported the same
        way as a bad file value.
        """
        merged = self.merge_overrides(config, overrides)
        return ShuffleConfig.from_dict(merged, default_log_file=self.get_default_log_path(cli_portable))
