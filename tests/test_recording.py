import threading
from datetime import timedelta

import pytest

from roomacoustic.duplex import CaptureCancelled, CaptureResult, HardwareAcquisitionError
from roomacoustic.recording import CaptureBusyError, MeasurementManager
from roomacoustic.signal_generator import MeasurementConfig
from roomacoustic.storage import MeasurementStore


class FakeMeasurer:
    """Completes immediately, or blocks until released or cancelled."""

    def __init__(self, block=False, error=None):
        self.block = block
        self.error = error
        self.release = threading.Event()
        self.started = threading.Event()
        self.configs = []

    def permission_check(self):
        return True

    def run_once(self, config, output_dir, cancel_event=None):
        self.configs.append(config)
        self.started.set()
        if self.error is not None:
            raise self.error
        if self.block:
            while not self.release.wait(0.01):
                if cancel_event is not None and cancel_event.is_set():
                    raise CaptureCancelled("cancelled")
        return CaptureResult(
            recorded_path=f"{output_dir}/recorded_1.wav",
            played_path=f"{output_dir}/played_sweep_1.wav",
            peak_dbfs=-6.0,
            rms_dbfs=-20.0,
            duration_sec=7.5,
        )


@pytest.fixture
def store(tmp_path):
    return MeasurementStore(str(tmp_path / "roomacoustic.db"))


def test_completed_measurement_is_stored(store, tmp_path):
    manager = MeasurementManager(FakeMeasurer(), store, str(tmp_path))
    config = MeasurementConfig(sample_rate=44100)

    session_id = manager.start_measurement(5, config)
    assert manager.wait(session_id, timeout=5)

    status = manager.get_status(session_id)
    assert status["status"] == "completed"
    assert status["result"]["peak_dbfs"] == -6.0
    assert "_cancel" not in status

    record = store.get_recording(status["recording_id"])
    assert record["room_id"] == 5
    assert MeasurementStore.recording_config(record) == config
    assert not manager.is_busy()


def test_busy_while_capturing(store, tmp_path):
    measurer = FakeMeasurer(block=True)
    manager = MeasurementManager(measurer, store, str(tmp_path))

    session_id = manager.start_measurement(1)
    assert measurer.started.wait(5)
    assert manager.is_busy()
    with pytest.raises(CaptureBusyError):
        manager.start_measurement(1)

    measurer.release.set()
    assert manager.wait(session_id, timeout=5)
    assert manager.get_status(session_id)["status"] == "completed"
    assert not manager.is_busy()


def test_cancel(store, tmp_path):
    measurer = FakeMeasurer(block=True)
    manager = MeasurementManager(measurer, store, str(tmp_path))

    session_id = manager.start_measurement(1)
    assert measurer.started.wait(5)
    assert manager.cancel(session_id)
    assert manager.wait(session_id, timeout=5)

    assert manager.get_status(session_id)["status"] == "cancelled"
    assert store.list_recordings(1) == []
    assert not manager.cancel(session_id)
    assert not manager.cancel("missing")


def test_failure_is_reported(store, tmp_path):
    manager = MeasurementManager(FakeMeasurer(error=HardwareAcquisitionError("no input")), store, str(tmp_path))

    session_id = manager.start_measurement(1)
    assert manager.wait(session_id, timeout=5)

    status = manager.get_status(session_id)
    assert status["status"] == "failed"
    assert status["error_type"] == "HardwareAcquisitionError"
    assert status["error"] == "no input"
    assert not manager.is_busy()


def test_subscribers_see_every_state(store, tmp_path):
    manager = MeasurementManager(FakeMeasurer(), store, str(tmp_path))
    seen = []
    done = threading.Event()

    def on_update(status):
        seen.append(status["status"])
        if status["status"] == "completed":
            done.set()

    manager.subscribe(on_update)
    session_id = manager.start_measurement(1)
    assert done.wait(5)

    assert seen == ["recording", "completed"]
    assert [s["session_id"] for s in manager.list_sessions()] == [session_id]


def test_failing_subscriber_does_not_break_session(store, tmp_path):
    manager = MeasurementManager(FakeMeasurer(), store, str(tmp_path))

    def broken(status):
        raise RuntimeError("boom")

    manager.subscribe(broken)
    session_id = manager.start_measurement(1)
    assert manager.wait(session_id, timeout=5)
    assert manager.get_status(session_id)["status"] == "completed"


def test_finished_sessions_expire(store, tmp_path):
    manager = MeasurementManager(FakeMeasurer(), store, str(tmp_path), session_max_age=timedelta(0))

    first = manager.start_measurement(1)
    assert manager.wait(first, timeout=5)
    assert manager.get_status(first)["status"] == "completed"

    # Starting a new session prunes the expired one
    second = manager.start_measurement(1)
    assert manager.get_status(first) is None
    assert manager.wait(second, timeout=5)
    assert manager.cleanup_finished_sessions() == 1
    assert manager.list_sessions() == []


def test_recent_and_running_sessions_are_kept(store, tmp_path):
    measurer = FakeMeasurer(block=True)
    manager = MeasurementManager(measurer, store, str(tmp_path), session_max_age=timedelta(0))

    session_id = manager.start_measurement(1)
    assert measurer.started.wait(5)
    assert manager.cleanup_finished_sessions() == 0
    assert manager.get_status(session_id)["status"] == "recording"

    measurer.release.set()
    assert manager.wait(session_id, timeout=5)

    manager.session_max_age = timedelta(minutes=10)
    assert manager.cleanup_finished_sessions() == 0
    assert manager.get_status(session_id)["status"] == "completed"
