from __future__ import annotations

import json

import pytest

from voltage_history import (
    HISTORY_FILENAME,
    HISTORY_LIMIT,
    LATEST_FILENAME,
    HistoryError,
    Reading,
    load_history,
    record,
    trim_history,
)


def _reading(index: int) -> Reading:
    return Reading(
        phase_a=220.0 + index % 10,
        phase_b=230.0,
        phase_c=240.0,
        timestamp=f"2026-10-19T00:{index % 60:02d}:00.000Z",
    )


def test_reading_serializes_with_device_field_names() -> None:
    reading = Reading(phase_a=228.4, phase_b=230.1, phase_c=229.9, timestamp="2026-10-19T08:05:00.123Z")

    payload = reading.to_dict()

    assert list(payload) == ["phaseA", "phaseB", "phaseC", "timestamp"]
    assert Reading.from_dict(payload) == reading


def test_record_creates_data_dir_and_both_files(tmp_path) -> None:
    data_dir = tmp_path / "data"
    reading = _reading(1)

    total = record(reading, data_dir)

    assert total == 1
    assert json.loads((data_dir / LATEST_FILENAME).read_text(encoding="utf-8")) == reading.to_dict()
    assert json.loads((data_dir / HISTORY_FILENAME).read_text(encoding="utf-8")) == [reading.to_dict()]


def test_record_writes_pretty_printed_json(tmp_path) -> None:
    record(_reading(1), tmp_path)

    latest_text = (tmp_path / LATEST_FILENAME).read_text(encoding="utf-8")
    assert latest_text.startswith('{\n  "phaseA"')


def test_existing_data_dir_is_reused_without_touching_other_files(tmp_path) -> None:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    unrelated = data_dir / "notes.txt"
    unrelated.write_text("keep me", encoding="utf-8")

    record(_reading(1), data_dir)
    record(_reading(2), data_dir)

    assert unrelated.read_text(encoding="utf-8") == "keep me"
    assert len(load_history(data_dir / HISTORY_FILENAME)) == 2


def test_latest_matches_last_history_entry(tmp_path) -> None:
    for index in range(5):
        record(_reading(index), tmp_path)

    latest = json.loads((tmp_path / LATEST_FILENAME).read_text(encoding="utf-8"))
    history = load_history(tmp_path / HISTORY_FILENAME)

    assert latest == history[-1] == _reading(4).to_dict()


def test_full_history_drops_oldest_entry(tmp_path) -> None:
    history = [_reading(index).to_dict() for index in range(HISTORY_LIMIT)]
    history[0]["timestamp"] = "oldest"
    history[1]["timestamp"] = "second"
    (tmp_path / HISTORY_FILENAME).write_text(json.dumps(history), encoding="utf-8")

    newest = Reading(phase_a=231.0, phase_b=232.0, phase_c=233.0, timestamp="newest")
    total = record(newest, tmp_path)

    stored = load_history(tmp_path / HISTORY_FILENAME)
    assert total == HISTORY_LIMIT
    assert len(stored) == HISTORY_LIMIT
    assert stored[0]["timestamp"] == "second"
    assert stored[-1] == newest.to_dict()
    assert stored[1:-1] == history[2:]


def test_custom_limit_is_honoured(tmp_path) -> None:
    for index in range(4):
        total = record(_reading(index), tmp_path, limit=3)

    stored = load_history(tmp_path / HISTORY_FILENAME)
    assert total == 3
    assert stored == [_reading(index).to_dict() for index in (1, 2, 3)]


def test_trim_history_keeps_short_sequences() -> None:
    assert trim_history([1, 2], limit=3) == [1, 2]
    assert trim_history([1, 2, 3, 4], limit=3) == [2, 3, 4]


def test_trim_history_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        trim_history([1], limit=0)


def test_missing_history_loads_as_empty(tmp_path) -> None:
    assert load_history(tmp_path / HISTORY_FILENAME) == []


@pytest.mark.parametrize("content", ["{not json", '{"phaseA": 230}'])
def test_corrupt_history_fails_before_writing(tmp_path, content) -> None:
    history_path = tmp_path / HISTORY_FILENAME
    history_path.write_text(content, encoding="utf-8")

    with pytest.raises(HistoryError):
        record(_reading(1), tmp_path)

    assert history_path.read_text(encoding="utf-8") == content
    assert not (tmp_path / LATEST_FILENAME).exists()


@pytest.mark.parametrize(
    "entries",
    [
        [{"phaseA": 230.0, "phaseB": 230.0, "timestamp": "2026-10-19T00:00:00.000Z"}],
        [{"phaseA": "n/a", "phaseB": 230.0, "phaseC": 230.0, "timestamp": "t"}],
        ["230.0 / 230.0 / 230.0"],
    ],
)
def test_history_with_malformed_entry_is_rejected(tmp_path, entries) -> None:
    history_path = tmp_path / HISTORY_FILENAME
    history_path.write_text(json.dumps(entries), encoding="utf-8")

    with pytest.raises(HistoryError, match="index 0"):
        load_history(history_path)
