#!/usr/bin/env python3
"""
Measurement session management for RoomAcoustic.

Runs duplex captures on a background thread, keeps track of their status,
stores completed recordings and notifies subscribers on every state change.
Only one capture can be active at a time since it needs exclusive use of the
audio hardware.
"""

import uuid
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .duplex import CaptureCancelled, DuplexMeasurer
from .signal_generator import MeasurementConfig
from .storage import MeasurementStore

logger = logging.getLogger(__name__)

SESSION_MAX_AGE = timedelta(minutes=10)
FINISHED_STATES = ("completed", "failed", "cancelled")


class CaptureBusyError(RuntimeError):
    """A capture session is already running."""


class MeasurementManager:
    """Runs measurement sessions and tracks their status."""

    def __init__(self, measurer: DuplexMeasurer, store: MeasurementStore, output_dir: str,
                 session_max_age: timedelta = SESSION_MAX_AGE):
        self.measurer = measurer
        self.store = store
        self.output_dir = output_dir
        self.session_max_age = session_max_age
        self._lock = threading.Lock()
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._active_id: Optional[str] = None
        self._subscribers: List[Callable[[Dict[str, Any]], None]] = []

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]):
        """Register a callback receiving the session status dict on every change."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Dict[str, Any]], None]):
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _update(self, session_id: str, finished: bool = False, **changes):
        with self._lock:
            session = self._sessions[session_id]
            session.update(changes)
            if finished:
                session["_finished_at"] = datetime.now()
                if self._active_id == session_id:
                    self._active_id = None
            snapshot = self._public(session)
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Status subscriber failed for session {session_id}: {e}")

    @staticmethod
    def _public(session: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in session.items() if not k.startswith("_")}

    def start_measurement(self, room_id: int, config: Optional[MeasurementConfig] = None) -> str:
        """
        Start a capture in the background.

        Returns:
            Session id

        Raises:
            CaptureBusyError: If another capture is still running
        """
        self.cleanup_finished_sessions()
        config = config or MeasurementConfig()
        session_id = str(uuid.uuid4())[:8]
        with self._lock:
            if self._active_id is not None:
                raise CaptureBusyError(f"Capture {self._active_id} is still running")
            self._active_id = session_id
            self._sessions[session_id] = {
                "session_id": session_id,
                "room_id": room_id,
                "status": "starting",
                "config": config.to_dict(),
                "start_time": datetime.now().isoformat(),
                "result": None,
                "recording_id": None,
                "error": None,
                "_cancel": threading.Event(),
            }

        thread = threading.Thread(target=self._worker, args=(session_id, room_id, config), daemon=True)
        thread.start()
        logger.info(f"Started measurement {session_id} for room {room_id}")
        return session_id

    def _worker(self, session_id: str, room_id: int, config: MeasurementConfig):
        cancel_event = self._sessions[session_id]["_cancel"]
        try:
            self._update(session_id, status="recording")
            result = self.measurer.run_once(config, self.output_dir, cancel_event=cancel_event)
            recording_id = self.store.save_recording(
                room_id=room_id,
                file_path=result.recorded_path,
                played_path=result.played_path,
                peak_dbfs=result.peak_dbfs,
                rms_dbfs=result.rms_dbfs,
                duration_sec=result.duration_sec,
                config=config,
            )
            self._update(session_id, finished=True, status="completed", result=result.to_dict(),
                         recording_id=recording_id, end_time=datetime.now().isoformat())
            logger.info(f"Measurement {session_id} completed: recording {recording_id}")
        except CaptureCancelled:
            self._update(session_id, finished=True, status="cancelled", end_time=datetime.now().isoformat())
        except Exception as e:
            logger.error(f"Measurement {session_id} failed: {e}")
            self._update(session_id, finished=True, status="failed", error=str(e),
                         error_type=type(e).__name__, end_time=datetime.now().isoformat())
        finally:
            with self._lock:
                if self._active_id == session_id:
                    self._active_id = None

    def cleanup_finished_sessions(self) -> int:
        """Forget finished sessions older than session_max_age. Returns the number removed."""
        cutoff = datetime.now() - self.session_max_age
        with self._lock:
            expired = [sid for sid, s in self._sessions.items()
                       if s["status"] in FINISHED_STATES and s["_finished_at"] <= cutoff]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info(f"Removed {len(expired)} finished measurement sessions")
        return len(expired)

    def get_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            session = self._sessions.get(session_id)
            return self._public(session) if session else None

    def list_sessions(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [self._public(s) for s in self._sessions.values()]

    def is_busy(self) -> bool:
        with self._lock:
            return self._active_id is not None

    def cancel(self, session_id: str) -> bool:
        """Request cancellation of a running session. Returns False if it is not running."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session["status"] not in ("starting", "recording"):
                return False
            session["_cancel"].set()
        logger.info(f"Cancellation requested for measurement {session_id}")
        return True

    def wait(self, session_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the session is no longer active. Returns False on timeout."""
        done = threading.Event()

        def on_update(status):
            if status["session_id"] == session_id and status["status"] in FINISHED_STATES:
                done.set()

        self.subscribe(on_update)
        try:
            current = self.get_status(session_id)
            if current is None:
                return True
            if current["status"] in FINISHED_STATES:
                return True
            return done.wait(timeout)
        finally:
            self.unsubscribe(on_update)
