"""Persist stabilizer voltage readings to flat JSON files.

Two files live in the data directory:

* ``latest.json`` holds the newest reading and is overwritten on every run.
* ``voltage-history.json`` holds a chronological array of readings capped at
  the most recent :data:`HISTORY_LIMIT` entries.

The files are rewritten in place without locking, so only one collector run
may touch a data directory at a time.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

# 288 samples per day at a 5 minute interval, kept for 7 days.
HISTORY_LIMIT = 2016
LATEST_FILENAME = "latest.json"
HISTORY_FILENAME = "voltage-history.json"


class HistoryError(RuntimeError):
    """Raised when the stored history cannot be read back."""


@dataclass(frozen=True)
class Reading:
    """A validated three-phase voltage sample."""

    phase_a: float
    phase_b: float
    phase_c: float
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phaseA": self.phase_a,
            "phaseB": self.phase_b,
            "phaseC": self.phase_c,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Reading":
        return cls(
            phase_a=float(data["phaseA"]),
            phase_b=float(data["phaseB"]),
            phase_c=float(data["phaseC"]),
            timestamp=str(data["timestamp"]),
        )


def write_json(path: Path, content: Any) -> None:
    path.write_text(json.dumps(content, indent=2) + "\n", encoding="utf-8")


def load_history(path: Path) -> List[Dict[str, Any]]:
    """Return the stored history, or an empty list when none exists yet.

    Raises :class:`HistoryError` if the file is not a JSON array of readings.
    """

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except json.JSONDecodeError as exc:
        raise HistoryError(f"Invalid JSON in {path}: {exc}") from exc

    if not isinstance(data, list):
        raise HistoryError(
            f"Expected a JSON array in {path}, found {type(data).__name__}"
        )

    for index, entry in enumerate(data):
        try:
            Reading.from_dict(entry)
        except (KeyError, TypeError, ValueError) as exc:
            raise HistoryError(f"Invalid reading at index {index} in {path}: {exc!r}") from exc
    return data


def trim_history(entries: Sequence[Any], limit: int = HISTORY_LIMIT) -> List[Any]:
    """Keep only the newest ``limit`` entries, preserving their order."""

    if limit <= 0:
        raise ValueError(f"History limit must be positive, got {limit}")
    if len(entries) > limit:
        return list(entries[-limit:])
    return list(entries)


def record(reading: Reading, data_dir: Path, limit: int = HISTORY_LIMIT) -> int:
    """Store ``reading`` as the latest sample and append it to the history.

    Returns the number of entries in the history after trimming.
    """

    data_dir.mkdir(parents=True, exist_ok=True)
    history_path = data_dir / HISTORY_FILENAME

    # Read first so a damaged history aborts the run before anything is written.
    history = load_history(history_path)

    payload = reading.to_dict()
    write_json(data_dir / LATEST_FILENAME, payload)

    history.append(payload)
    history = trim_history(history, limit)
    write_json(history_path, history)
    return len(history)
