"""
Persistent storage for RoomAcoustic.

Stores recordings (with the exact measurement configuration they were made
with), room dimension measurements and speaker positions per room in a
SQLite database. A MeasurementStore is constructed explicitly and passed to
whatever needs it.
"""

import os
import json
import time
import sqlite3
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from .signal_generator import MeasurementConfig

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS recordings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id INTEGER NOT NULL,
    file_path TEXT NOT NULL,
    played_path TEXT,
    peak_dbfs REAL NOT NULL,
    rms_dbfs REAL NOT NULL,
    duration_sec REAL NOT NULL,
    config_json TEXT,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_recordings_room ON recordings(room_id);

CREATE TABLE IF NOT EXISTS measures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id INTEGER NOT NULL,
    width REAL NOT NULL,
    depth REAL NOT NULL,
    height REAL NOT NULL,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_measures_room ON measures(room_id);

CREATE TABLE IF NOT EXISTS speakers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id INTEGER NOT NULL,
    x REAL NOT NULL,
    y REAL NOT NULL,
    z REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_speakers_room ON speakers(room_id);
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


class MeasurementStore:
    """SQLite-backed storage for recordings, room dimensions and speakers."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        directory = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(directory, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)
        logger.info(f"Measurement store ready at {db_path}")

    @contextmanager
    def _connect(self):
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    @staticmethod
    def _recording_from_row(row) -> Dict[str, Any]:
        record = dict(row)
        config_json = record.pop("config_json")
        record["config"] = json.loads(config_json) if config_json else None
        return record

    # Recordings

    def save_recording(self, room_id: int, file_path: str, peak_dbfs: float, rms_dbfs: float,
                       duration_sec: float, config: Optional[MeasurementConfig] = None,
                       played_path: Optional[str] = None, created_at: Optional[int] = None) -> int:
        """Insert a recording and return its id."""
        config_json = json.dumps(config.to_dict()) if config is not None else None
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO recordings (room_id, file_path, played_path, peak_dbfs, rms_dbfs, "
                "duration_sec, config_json, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (room_id, file_path, played_path, peak_dbfs, rms_dbfs, duration_sec,
                 config_json, created_at if created_at is not None else _now_ms()),
            )
            recording_id = cursor.lastrowid
        logger.info(f"Saved recording {recording_id} for room {room_id}: {os.path.basename(file_path)}")
        return recording_id

    def get_recording(self, recording_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM recordings WHERE id = ?", (recording_id,)).fetchone()
        return self._recording_from_row(row) if row else None

    def latest_recording(self, room_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM recordings WHERE room_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
                (room_id,),
            ).fetchone()
        return self._recording_from_row(row) if row else None

    def list_recordings(self, room_id: int) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM recordings WHERE room_id = ? ORDER BY created_at DESC, id DESC",
                (room_id,),
            ).fetchall()
        return [self._recording_from_row(r) for r in rows]

    @staticmethod
    def recording_config(record: Dict[str, Any]) -> Optional[MeasurementConfig]:
        """The MeasurementConfig stored with a recording, if any."""
        if not record or not record.get("config"):
            return None
        return MeasurementConfig.from_dict(record["config"])

    # Room dimensions

    def save_measure(self, room_id: int, width: float, depth: float, height: float,
                     created_at: Optional[int] = None) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO measures (room_id, width, depth, height, created_at) VALUES (?, ?, ?, ?, ?)",
                (room_id, width, depth, height, created_at if created_at is not None else _now_ms()),
            )
            return cursor.lastrowid

    def latest_measure(self, room_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM measures WHERE room_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
                (room_id,),
            ).fetchone()
        return dict(row) if row else None

    # Speakers

    def replace_speakers(self, room_id: int, positions: Sequence[Sequence[float]]):
        """Replace all speaker positions of a room with (x, y, z) triples."""
        rows = [(room_id, float(p[0]), float(p[1]), float(p[2])) for p in positions]
        with self._connect() as conn:
            conn.execute("DELETE FROM speakers WHERE room_id = ?", (room_id,))
            if rows:
                conn.executemany("INSERT INTO speakers (room_id, x, y, z) VALUES (?, ?, ?, ?)", rows)
        logger.debug(f"Stored {len(rows)} speaker(s) for room {room_id}")

    def speakers(self, room_id: int) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM speakers WHERE room_id = ? ORDER BY id", (room_id,)
            ).fetchall()
        return [dict(r) for r in rows]
