"""Command‑line interface for Immersion Sync.

Each subcommand delegates to :class:`immersion_sync.engine.ShufflerEngine`.
Run ``python -m immersion_sync.cli --help`` for usage.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from .config_service import ConfigService, ShuffleConfig
from .engine import ShufflerEngine
from .errors import ImmersionSyncError
from .genre_service import FfprobeGenreProbe, GenreService
from .order_log import OrderLog


def _parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Immersion Sync – mirror and shuffle immersion audio onto an MP3 player",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("command", choices=[
        "run", "analyze", "recover", "doctor", "last-order"
    ], help="Action to perform")
    parser.add_argument("--portable", "-p", action="store_true", help="Force portable mode")
    parser.add_argument("--config", type=Path, default=None, help="Explicit path to config.json")
    parser.add_argument("--target", default=None, help="Mounted player directory (overrides config)")
    parser.add_argument("--source", default=None, help="Host immersion library (overrides config)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible shuffle")
    parser.add_argument("--delay", type=float, default=None, help="Startup delay in minutes (overrides config)")
    parser.add_argument("--no-delay", action="store_true", help="Skip the startup delay")
    parser.add_argument("--verbose", action="store_true", help="Print every move as it happens")
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> dict:
    return {
        "target_dir": args.target,
        "source_dir": args.source,
        "seed": args.seed,
        "startup_delay_minutes": args.delay,
    }


def _build_config(args: argparse.Namespace, config_service: ConfigService) -> ShuffleConfig:
    config = config_service.load_config(cli_portable=args.portable, config_path=args.config)
    return config_service.build_shuffle_config(config, _overrides(args), cli_portable=args.portable)


def _build_engine(config: ShuffleConfig, verbose: bool) -> ShufflerEngine:
    return ShufflerEngine(
        config=config,
        genre_service=GenreService.from_config(config),
        order_log=OrderLog(config.log_file),
        verbose=verbose,
    )


def _doctor(args: argparse.Namespace, config_service: ConfigService) -> dict:
    """Report on the setup without requiring it to be complete.

    Works from the merged settings dict rather than a :class:`ShuffleConfig`
    so missing paths are reported instead of aborting the diagnosis.
    """
    config_path = args.config or config_service.get_config_path(args.portable)
    config = config_service.load_config(cli_portable=args.portable, config_path=args.config)
    settings = config_service.merge_overrides(config, _overrides(args))
    target = Path(settings["target_dir"]).expanduser() if settings.get("target_dir") else None
    source = Path(settings["source_dir"]).expanduser() if settings.get("source_dir") else None
    marker_file = settings.get("marker_file", ShuffleConfig.marker_file)
    backend = settings.get("genre_backend", ShuffleConfig.genre_backend)
    probe_ok = True
    if backend == "ffprobe":
        probe_ok = FfprobeGenreProbe().available()
    log_file = settings.get("log_file") or config_service.get_default_log_path(args.portable)
    return {
        "config_file": str(config_path),
        "config_exists": Path(config_path).is_file(),
        "missing_settings": [key for key in ("target_dir", "source_dir") if not settings.get(key)],
        "target_dir": str(target) if target else None,
        "target_ok": bool(target and target.is_dir()),
        "marker_present": bool(target and (target / marker_file).is_file()),
        "source_dir": str(source) if source else None,
        "source_ok": bool(source and source.is_dir()),
        "genre_backend": backend,
        "genre_backend_ok": probe_ok,
        "log_file": str(log_file),
    }


def _last_order(config: ShuffleConfig) -> dict:
    runs = OrderLog(config.log_file).read_runs()
    if not runs:
        return {"error": "No runs logged yet"}
    timestamp, entries = runs[-1]
    return {
        "timestamp": timestamp,
        "entries": [f"{label} {name}" for label, name in entries],
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_arguments(argv)
    config_service = ConfigService(app_dir=Path(sys.argv[0]).resolve().parent)
    command = args.command
    try:
        if command == "doctor":
            result = _doctor(args, config_service)
        elif command == "last-order":
            result = _last_order(_build_config(args, config_service))
        else:
            engine = _build_engine(_build_config(args, config_service), args.verbose)
            if command == "analyze":
                result = engine.analyze()
            elif command == "recover":
                engine.check_marker()
                result = {"recovered": engine.recover()}
            else:
                result = engine.run(delay=not args.no_delay)
    except ImmersionSyncError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
