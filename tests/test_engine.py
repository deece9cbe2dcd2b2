from __future__ import annotations

import math
import shutil
import time
from pathlib import Path

import pytest

from conftest import MARKER, make_files
from immersion_sync.engine import IMMERSION_BUCKET, OTHER_BUCKET, REPORT_FILENAME
from immersion_sync.errors import InvalidPathError, MarkerMissingError, MoveError
from immersion_sync.order_log import OrderLog


def _labels(report: dict) -> list:
    return [entry.split(" ", 1)[0] for entry in report["order"]]


def _root_files(player: Path) -> set:
    return {p.name for p in player.iterdir() if p.is_file()}


def test_alternates_one_to_one_when_sizes_match(player, library, make_engine) -> None:
    make_files(library, [f"imm_{i}.mp3" for i in range(4)])
    make_files(player, [f"pod_{i}.mp3" for i in range(4)])

    report = make_engine().run(delay=False)

    assert report["totals"] == {"immersion": 4, "other": 4}
    assert report["ratio"] == {"immersion": 1, "other": 1}
    assert report["rounds"] == 4
    assert _labels(report) == ["immersion", "other"] * 4
    assert not (player / IMMERSION_BUCKET).exists()
    assert not (player / OTHER_BUCKET).exists()


def test_ten_immersion_three_others_with_cap(player, library, make_engine) -> None:
    make_files(library, [f"imm_{i:02d}.mp3" for i in range(10)])
    make_files(player, ["pod_a.mp3", "pod_b.mp3", "pod_c.mp3"])

    report = make_engine(others_cap=1).run(delay=False)

    assert report["ratio"] == {"immersion": 3, "other": 1}
    expected = (["immersion"] * 3 + ["other"]) * 3 + ["immersion"]
    assert _labels(report) == expected
    assert report["rounds"] == 4


def test_immersion_only_drains_in_one_pass(player, library, make_engine) -> None:
    make_files(library, [f"imm_{i}.mp3" for i in range(5)])

    report = make_engine().run(delay=False)

    assert report["ratio"] == {"immersion": 5, "other": 1}
    assert report["rounds"] == 1
    assert _labels(report) == ["immersion"] * 5


def test_others_drain_in_one_batch_after_immersion_runs_out(player, library, make_engine) -> None:
    make_files(library, ["imm_a.mp3"])
    make_files(player, [f"pod_{i}.mp3" for i in range(6)])

    report = make_engine(others_cap=2).run(delay=False)

    # 1 immersion and 6 others give a 1:6 ratio capped to 1:2
    assert report["ratio"] == {"immersion": 1, "other": 2}
    assert _labels(report) == ["immersion", "other", "other"] + ["other"] * 4
    assert report["rounds"] == 2


def test_missing_marker_performs_no_moves(player, library, make_engine, tmp_path: Path) -> None:
    (player / MARKER).unlink()
    make_files(library, ["imm_a.mp3"])
    make_files(player, ["pod_a.mp3"])
    before = sorted(p.name for p in player.rglob("*"))

    with pytest.raises(MarkerMissingError):
        make_engine().run(delay=False)

    assert sorted(p.name for p in player.rglob("*")) == before
    assert not (tmp_path / "logs").exists()


def test_missing_source_is_fatal(player, library, make_engine) -> None:
    shutil.rmtree(library)
    make_files(player, ["pod_a.mp3"])

    with pytest.raises(InvalidPathError):
        make_engine().run(delay=False)

    assert (player / "pod_a.mp3").exists()


def test_non_audio_files_stay_put(player, library, make_engine) -> None:
    make_files(library, ["imm_a.mp3"])
    make_files(player, ["pod_a.mp3", "notes.txt"])

    report = make_engine().run(delay=False)

    assert (player / "notes.txt").exists()
    assert (player / MARKER).exists()
    assert all("notes.txt" not in entry for entry in report["order"])


def test_mirror_adds_and_removes_immersion_but_keeps_others(player, library, make_engine) -> None:
    make_files(library, ["imm_keep.mp3", "imm_fresh.mp3"])
    make_files(player, ["imm_keep.mp3", "imm_stale.mp3", "pod_manual.mp3"])

    report = make_engine().run(delay=False)

    assert report["mirror"] == {"copied": 1, "updated": 0, "deleted": 1, "unchanged": 1}
    assert _root_files(player) == {MARKER, "imm_keep.mp3", "imm_fresh.mp3", "pod_manual.mp3"}


def test_mirror_preserves_modification_time(player, library, make_engine) -> None:
    make_files(library, ["imm_a.mp3"])
    source_mtime = (library / "imm_a.mp3").stat().st_mtime

    make_engine().run(delay=False)

    assert int((player / "imm_a.mp3").stat().st_mtime) == int(source_mtime)


def test_recent_files_are_promoted_first(player, library, make_engine) -> None:
    make_files(library, [f"imm_{i}.mp3" for i in range(4)])
    make_files(library, ["imm_zz_new.mp3", "imm_aa_new.mp3"], mtime=time.time())
    make_files(player, ["pod_a.mp3", "pod_b.mp3"])
    engine = make_engine(recency_days=3)

    report = engine.run(delay=False)

    assert report["promoted"] == ["imm_aa_new.mp3", "imm_zz_new.mp3"]
    assert report["order"][:2] == ["new imm_aa_new.mp3", "new imm_zz_new.mp3"]
    assert report["totals"] == {"immersion": 4, "other": 2}
    assert "new" not in _labels(report)[2:]
    _timestamp, entries = OrderLog(engine.config.log_file).read_runs()[-1]
    assert entries[:2] == [("new", "imm_aa_new.mp3"), ("new", "imm_zz_new.mp3")]


def test_recency_disabled_with_zero_days(player, library, make_engine) -> None:
    make_files(library, ["imm_new.mp3"], mtime=time.time())

    report = make_engine(recency_days=0).run(delay=False)

    assert report["promoted"] == []
    assert report["order"] == ["immersion imm_new.mp3"]


def test_every_file_is_conserved(player, library, make_engine) -> None:
    immersion = [f"imm_{i}.mp3" for i in range(7)]
    others = [f"pod_{i}.ogg" for i in range(3)]
    make_files(library, immersion)
    make_files(player, others + ["cover.jpg"])

    report = make_engine(others_cap=0).run(delay=False)

    assert _root_files(player) == set(immersion) | set(others) | {"cover.jpg", MARKER}
    ordered = [entry.split(" ", 1)[1] for entry in report["order"]]
    assert sorted(ordered) == sorted(immersion + others)


def test_recovery_flattens_leftover_buckets_and_is_idempotent(player, make_engine) -> None:
    make_files(player / IMMERSION_BUCKET, ["imm_a.mp3", "imm_b.mp3"])
    make_files(player / OTHER_BUCKET, ["pod_a.mp3"])
    make_files(player, ["pod_b.mp3"])
    engine = make_engine()

    restored = engine.recover()

    assert sorted(restored) == ["imm_a.mp3", "imm_b.mp3", "pod_a.mp3"]
    assert not engine.has_leftover_buckets()
    snapshot = sorted(p.name for p in player.rglob("*"))
    assert engine.recover() == []
    assert sorted(p.name for p in player.rglob("*")) == snapshot


def test_failed_move_aborts_and_next_run_recovers(player, library, make_engine, monkeypatch) -> None:
    make_files(library, [f"imm_{i}.mp3" for i in range(4)])
    make_files(player, [f"pod_{i}.mp3" for i in range(4)])
    original_move = shutil.move
    calls = {"count": 0}

    def _fail_midway(src, dst):
        calls["count"] += 1
        # 4 categorization moves, then fail during the interleave
        if calls["count"] == 7:
            raise PermissionError("Simulated disconnect")
        return original_move(src, dst)

    monkeypatch.setattr(shutil, "move", _fail_midway)
    with pytest.raises(MoveError):
        make_engine().run(delay=False)
    monkeypatch.setattr(shutil, "move", original_move)

    assert (player / IMMERSION_BUCKET).exists() or (player / OTHER_BUCKET).exists()

    report = make_engine().run(delay=False)

    assert report["recovered"] > 0
    assert not (player / IMMERSION_BUCKET).exists()
    assert not (player / OTHER_BUCKET).exists()
    assert len(report["order"]) == 8


def test_same_seed_gives_same_order(tmp_path: Path, make_engine) -> None:
    orders = []
    for attempt in range(2):
        player = tmp_path / f"player_{attempt}"
        library = tmp_path / f"library_{attempt}"
        make_files(library, [f"imm_{i}.mp3" for i in range(6)])
        make_files(player, [f"pod_{i}.mp3" for i in range(3)])
        (player / MARKER).write_text("", encoding="utf-8")
        report = make_engine(target_dir=player, source_dir=library, seed=99).run(delay=False)
        orders.append(report["order"])
    assert orders[0] == orders[1]


@pytest.mark.parametrize("i_count,o_count,cap", [(1, 9, 0), (9, 2, 1), (3, 3, 2), (0, 4, 1), (12, 5, 3)])
def test_interleave_terminates_within_bound(player, library, make_engine, i_count, o_count, cap) -> None:
    make_files(library, [f"imm_{i:02d}.mp3" for i in range(i_count)])
    make_files(player, [f"pod_{i:02d}.mp3" for i in range(o_count)])

    report = make_engine(others_cap=cap).run(delay=False)

    i_ratio = report["ratio"]["immersion"]
    assert report["rounds"] <= math.ceil(i_count / i_ratio) + 1
    assert len(report["order"]) == i_count + o_count
    if cap > 0:
        assert report["ratio"]["other"] <= cap


def test_log_has_separator_and_timestamp_per_run(player, library, make_engine) -> None:
    make_files(library, ["imm_a.mp3"])
    engine = make_engine()

    engine.run(delay=False)
    engine.run(delay=False)

    lines = engine.config.log_file.read_text(encoding="utf-8").splitlines()
    assert lines.count("-" * 40) == 2
    assert len(OrderLog(engine.config.log_file).read_runs()) == 2
    assert (engine.config.log_file.parent / REPORT_FILENAME).exists()


def test_startup_delay_sleeps_for_configured_minutes(player, library, make_engine) -> None:
    slept = []
    engine = make_engine(startup_delay_minutes=2.5)
    engine.sleep = slept.append

    engine.run(delay=True)

    assert sum(slept) == pytest.approx(150)


def test_analyze_counts_without_moving(player, library, make_engine) -> None:
    make_files(player / OTHER_BUCKET, ["imm_left.mp3"])
    make_files(player, ["imm_a.mp3", "imm_b.mp3", "pod_a.mp3", "readme.txt"])
    before = sorted(str(p) for p in player.rglob("*"))

    result = make_engine().analyze()

    assert result["leftover_bucket_files"] == 1
    assert result["immersion"] == 3
    assert result["other"] == 1
    assert result["ratio"] == {"immersion": 3, "other": 1}
    assert "readme.txt" in result["non_audio"]
    assert sorted(str(p) for p in player.rglob("*")) == before


def test_generated_sample_layout(tmp_path: Path, make_engine) -> None:
    from generate_test_data import generate

    generate(tmp_path / "sample")
    player = tmp_path / "sample" / "player"
    engine = make_engine(target_dir=player, source_dir=tmp_path / "sample" / "library", recency_days=3)

    report = engine.run(delay=False)

    assert report["promoted"] == ["imm_episode_06.mp3"]
    assert report["totals"] == {"immersion": 5, "other": 3}
    assert report["ratio"] == {"immersion": 1, "other": 1}
    assert report["mirror"]["deleted"] == 1
    assert not (player / "imm_stale_episode.mp3").exists()
    assert (player / "cover.jpg").exists()


def test_library_file_without_immersion_genre_survives_repeat_runs(player, library, make_engine) -> None:
    # stub_probe calls this file a podcast, but the library owns the name
    make_files(library, ["lesson_01.mp3"])
    make_files(player, ["pod_a.mp3"])

    reports = [make_engine(seed=seed).run(delay=False) for seed in (1, 2, 3)]

    for report in reports[1:]:
        assert report["categorized"] == {"immersion": 1, "other": 1}
        assert report["mirror"]["unchanged"] == 1
        assert sorted(report["order"]) == ["immersion lesson_01.mp3", "other pod_a.mp3"]
    assert _root_files(player) == {MARKER, "lesson_01.mp3", "pod_a.mp3"}


def test_recovery_moves_directories_out_of_leftover_buckets(player, make_engine) -> None:
    make_files(player / OTHER_BUCKET / "Album", ["track_01.mp3"])
    make_files(player / OTHER_BUCKET, ["pod_a.mp3"])
    engine = make_engine()

    restored = engine.recover()

    assert sorted(restored) == ["Album", "pod_a.mp3"]
    assert not engine.has_leftover_buckets()
    assert (player / "Album" / "track_01.mp3").exists()
