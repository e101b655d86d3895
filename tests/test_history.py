import json
import logging
from datetime import datetime, timedelta, timezone

from trmnl_cli.history import HistoryFilter, HistoryLog
from trmnl_cli.utils import HistoryEntry

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def make_entry(minutes_ago=0, success=True, size=100, duration=50, when=None):
    ts = when or NOW - timedelta(minutes=minutes_ago)
    return HistoryEntry(
        timestamp=ts.isoformat(),
        plugin="home",
        size_bytes=size,
        tier="free",
        payload={"merge_variables": {"content": "x"}},
        success=success,
        status_code=200 if success else 500,
        duration_ms=duration,
    )


def test_append_then_read_keeps_write_order(history):
    entries = [make_entry(minutes_ago=m) for m in (5, 30, 1, 90)]
    for e in entries:
        history.append(e)
    assert history.read_all() == entries


def test_one_json_object_per_line(history):
    history.append(make_entry())
    history.append(make_entry(success=False))
    lines = history.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["plugin"] == "home"
    assert "error" not in first


def test_corrupt_lines_are_skipped(history):
    history.append(make_entry(minutes_ago=2))
    with history.path.open("a", encoding="utf-8") as f:
        f.write("not json\n")
        f.write('{"timestamp": "yesterday", "size_bytes": 1}\n')
        good = make_entry(minutes_ago=1).to_dict()
        for field, bad in (("size_bytes", "x"), ("duration_ms", 1.5), ("success", "yes"), ("payload", "hi")):
            f.write(json.dumps({**good, field: bad}) + "\n")
        f.write('{"timestamp": "2025-06-15T11:00:00+00:00", "succ')
    assert len(history.read_all()) == 1


def test_missing_file_reads_empty(tmp_path):
    log = HistoryLog(tmp_path / "nope.jsonl")
    assert log.read_all() == []
    assert log.query(HistoryFilter(last=5)) == []
    assert log.stats() is None


def test_query_sorts_newest_first_then_caps(history):
    for m in (30, 5, 90, 1, 60):
        history.append(make_entry(minutes_ago=m))
    recent = history.query(HistoryFilter(last=2), now=NOW)
    assert [e.sent_at for e in recent] == [NOW - timedelta(minutes=1), NOW - timedelta(minutes=5)]


def test_success_and_failed_filters(history):
    history.append(make_entry(minutes_ago=3, success=True))
    history.append(make_entry(minutes_ago=2, success=False))
    history.append(make_entry(minutes_ago=1, success=True))
    assert len(history.query(HistoryFilter(success=True), now=NOW)) == 2
    assert len(history.query(HistoryFilter(failed=True), now=NOW)) == 1
    assert history.query(HistoryFilter(success=True, failed=True), now=NOW) == []


def test_since_and_until_are_inclusive(history):
    for m in (0, 10, 20, 30):
        history.append(make_entry(minutes_ago=m))
    flt = HistoryFilter(since=NOW - timedelta(minutes=20), until=NOW - timedelta(minutes=10))
    got = history.query(flt, now=NOW)
    assert [e.sent_at for e in got] == [NOW - timedelta(minutes=10), NOW - timedelta(minutes=20)]


def test_today_filter_uses_local_midnight(history):
    now = datetime(2025, 6, 15, 12, 0).astimezone()
    history.append(make_entry(when=now - timedelta(hours=1)))
    history.append(make_entry(when=now - timedelta(days=1)))
    history.append(make_entry(when=now + timedelta(hours=1)))
    got = history.query(HistoryFilter(today=True), now=now)
    assert [e.sent_at for e in got] == [now - timedelta(hours=1)]


def test_filtering_is_idempotent(history):
    for m, ok in ((1, True), (2, False), (3, True), (400, False)):
        history.append(make_entry(minutes_ago=m, success=ok))
    flt = HistoryFilter(failed=True, since=NOW - timedelta(hours=2))
    once = history.query(flt, now=NOW)

    other = HistoryLog(history.path.with_name("again.jsonl"))
    for e in once:
        other.append(e)
    assert other.query(flt, now=NOW) == once


def test_stats(history):
    history.append(make_entry(minutes_ago=5, success=True, size=100, duration=10))
    history.append(make_entry(minutes_ago=60 * 24 * 3, success=True, size=200, duration=20))
    history.append(make_entry(minutes_ago=60 * 24 * 30, success=False, size=300, duration=31))

    stats = history.stats(now=NOW)

    assert stats.entries == 3
    assert stats.success_count == 2
    assert stats.failure_count == 1
    assert stats.success_percent == 66.7
    assert stats.failure_percent == 33.3
    assert stats.avg_size_bytes == 200
    assert stats.avg_duration_ms == 20
    assert stats.size_bytes == history.path.stat().st_size
    assert stats.this_week == 2


def test_stats_on_empty_file_has_no_percentages(history):
    history.path.parent.mkdir(parents=True, exist_ok=True)
    history.path.write_text("", encoding="utf-8")
    stats = history.stats(now=NOW)
    assert stats.entries == 0
    assert stats.success_percent is None
    assert stats.failure_percent is None
    assert stats.avg_size_bytes == 0


def test_clear(history):
    history.append(make_entry())
    assert history.clear() is True
    assert history.read_all() == []
    assert history.stats() is None
    assert history.clear() is False


def test_oversized_log_warns(tmp_path, caplog):
    log = HistoryLog(tmp_path / "h.jsonl", max_size_mb=0.0001)
    with caplog.at_level(logging.WARNING, logger="trmnl_cli.history"):
        log.append(make_entry())
        log.append(make_entry())
    assert "trmnl history clear" in caplog.text
    assert len(log.read_all()) == 2


def test_naive_timestamps_are_local(history):
    local = datetime(2025, 6, 15, 9, 30)
    history.append(HistoryEntry(
        timestamp=local.isoformat(), size_bytes=1, tier="free",
        payload={}, success=True, duration_ms=1,
    ))
    assert history.read_all()[0].sent_at == local.astimezone()


def test_stats_survive_mistyped_lines(history):
    history.append(make_entry(minutes_ago=1, size=300, duration=40))
    with history.path.open("a", encoding="utf-8") as f:
        f.write(json.dumps({**make_entry().to_dict(), "size_bytes": "x"}) + "\n")
        f.write(json.dumps({**make_entry().to_dict(), "duration_ms": "slow"}) + "\n")
    stats = history.stats(now=NOW)
    assert stats.entries == 1
    assert stats.avg_size_bytes == 300
    assert stats.avg_duration_ms == 40
