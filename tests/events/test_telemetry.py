"""Tests for swarm telemetry."""

import orjson

from teamelites.events.telemetry import (
    EVENTS_FILE,
    configure_telemetry,
    log_swarm_event,
    read_swarm_events,
    telemetry_path,
)


def test_event_written_as_jsonl(telemetry_dir):
    entry = log_swarm_event("route_success", {"nicheKey": "telegram-coding", "agentId": "a1"})

    lines = (telemetry_dir / EVENTS_FILE).read_bytes().splitlines()
    assert len(lines) == 1
    written = orjson.loads(lines[0])
    assert written == entry
    assert written["event"] == "route_success"
    assert written["nicheKey"] == "telegram-coding"
    assert "timestamp" in written


def test_read_returns_most_recent(telemetry_dir):
    for i in range(5):
        log_swarm_event("tick", {"i": i})

    events = read_swarm_events(limit=2)
    assert [e["i"] for e in events] == [3, 4]


def test_read_skips_corrupt_lines(telemetry_dir):
    log_swarm_event("first")
    with (telemetry_dir / EVENTS_FILE).open("ab") as fh:
        fh.write(b"{broken\n")
    log_swarm_event("second")

    assert [e["event"] for e in read_swarm_events()] == ["first", "second"]


def test_unwritable_path_is_ignored(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    configure_telemetry(blocker)  # a file, so the log can never be created

    entry = log_swarm_event("route_fallback", {"nicheKey": "slack-general"})

    assert entry["event"] == "route_fallback"
    assert read_swarm_events() == []


def test_configure_points_at_directory(tmp_path):
    configure_telemetry(tmp_path / "other")
    assert telemetry_path() == tmp_path / "other" / EVENTS_FILE
