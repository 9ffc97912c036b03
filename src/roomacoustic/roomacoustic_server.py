#!/usr/bin/env python3
"""
HTTP API for RoomAcoustic.

Exposes sweep measurements, recording analysis, room dimensions, speaker
positions and layout evaluation as JSON endpoints. The app is built by
create_app() from an explicit store, measurement manager and settings.
"""

import os
import sys
import logging
import argparse
from typing import Optional

from flask import Flask, jsonify, request, abort
from flask_cors import CORS

from . import __version__
from .analysis import analyze_wav_file
from .config import Settings
from .duplex import AlsaAudioBackend, DuplexMeasurer, HardwareAcquisitionError, PermissionDenied
from .layout import (
    RoomSize, Vec2, Vec3,
    evaluate_layout_2ch, evaluate_listening_setup, infer_room_size_from_labels, suggest_positions,
)
from .recording import CaptureBusyError, MeasurementManager
from .signal_generator import MeasurementConfig
from .storage import MeasurementStore
from .wavfile import WavFormatError

logger = logging.getLogger(__name__)


def validate_float_param(param_name: str, value: str, min_val: float = None, max_val: float = None) -> float:
    """Validate and convert a string parameter to float with optional bounds checking."""
    try:
        val = float(value)
    except (TypeError, ValueError):
        abort(400, f"Invalid {param_name}: must be a number")
    if min_val is not None and val < min_val:
        abort(400, f"{param_name} must be >= {min_val}")
    if max_val is not None and val > max_val:
        abort(400, f"{param_name} must be <= {max_val}")
    return val


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, "Request body must be a JSON object")
    return data


def _number(data: dict, key: str, min_val: float = None) -> float:
    if key not in data:
        abort(400, f"Missing '{key}'")
    return validate_float_param(key, data[key], min_val=min_val)


def _parse_room(data) -> RoomSize:
    if not isinstance(data, dict):
        abort(400, "'room' must be an object with width, depth and height")
    return RoomSize(_number(data, "width", 0.0), _number(data, "depth", 0.0), _number(data, "height", 0.0))


def _parse_speakers(data) -> list:
    if not isinstance(data, list):
        abort(400, "'speakers' must be a list of {x, y, z} objects")
    speakers = []
    for item in data:
        if not isinstance(item, dict):
            abort(400, "'speakers' must be a list of {x, y, z} objects")
        speakers.append(Vec3(_number(item, "x"), validate_float_param("y", item.get("y", 0.0)), _number(item, "z")))
    return speakers


def _parse_listener(data) -> Vec2:
    if not isinstance(data, dict):
        abort(400, "'listener' must be an object with x and z")
    return Vec2(_number(data, "x"), _number(data, "z"))


def _config_from_args(args) -> MeasurementConfig:
    defaults = MeasurementConfig()
    try:
        return MeasurementConfig(
            sample_rate=int(validate_float_param("sample_rate", args.get("sample_rate", defaults.sample_rate),
                                                 8000, 192000)),
            sweep_duration=validate_float_param("duration", args.get("duration", defaults.sweep_duration),
                                                0.5, 60.0),
            start_freq=validate_float_param("start_freq", args.get("start_freq", defaults.start_freq), 1.0),
            end_freq=validate_float_param("end_freq", args.get("end_freq", defaults.end_freq), 1.0),
            head_silence=validate_float_param("head_silence", args.get("head_silence", defaults.head_silence),
                                              0.0, 10.0),
            tail_silence=validate_float_param("tail_silence", args.get("tail_silence", defaults.tail_silence),
                                              0.0, 10.0),
            amplitude=validate_float_param("amplitude", args.get("amplitude", defaults.amplitude), 0.0, 1.0),
        )
    except ValueError as e:
        abort(400, str(e))


def create_app(store: MeasurementStore, manager: MeasurementManager,
               settings: Optional[Settings] = None) -> Flask:
    """
    Build the Flask application.

    Args:
        store: Storage for recordings, dimensions and speakers
        manager: Background measurement runner
        settings: Runtime settings, only reported by /version

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    CORS(app)

    @app.after_request
    def after_request(response):
        response.headers["server"] = f"roomacoustic-api/{__version__}"
        return response

    @app.before_request
    def log_request_info():
        logger.info(f"Request: {request.method} {request.url}")
        if request.args:
            logger.debug(f"Query parameters: {dict(request.args)}")

    def error_response(status: int, error: str, message: str):
        return jsonify({
            "error": error,
            "message": message,
            "url": request.url,
            "method": request.method,
        }), status

    @app.errorhandler(400)
    def bad_request_error(error):
        logger.warning(f"400 Bad Request: {request.method} {request.url} - {error.description}")
        return error_response(400, "Bad Request", error.description or "Invalid request")

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning(f"404 Not Found: {request.method} {request.url} - {error.description}")
        return error_response(404, "Not Found", error.description or "The requested resource was not found")

    @app.errorhandler(409)
    def conflict_error(error):
        return error_response(409, "Conflict", error.description or "Conflicting request")

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"500 Internal Server Error: {request.method} {request.url} - {error}")
        return error_response(500, "Internal Server Error", "An unexpected error occurred")

    @app.errorhandler(PermissionDenied)
    def permission_denied(error):
        logger.warning(f"Microphone permission denied: {error}")
        return error_response(403, "Forbidden", str(error))

    @app.errorhandler(HardwareAcquisitionError)
    def hardware_unavailable(error):
        logger.warning(f"Audio hardware unavailable: {error}")
        return error_response(503, "Service Unavailable", str(error))

    @app.errorhandler(CaptureBusyError)
    def capture_busy(error):
        return error_response(409, "Conflict", str(error))

    @app.errorhandler(WavFormatError)
    def wav_format_error(error):
        logger.warning(f"Unsupported recording format: {error}")
        return error_response(422, "Unprocessable Entity", str(error))

    @app.route("/version", methods=["GET"])
    def get_version():
        """Get API version information."""
        info = {
            "version": __version__,
            "api_name": "RoomAcoustic Measurement API",
            "features": [
                "Exponential sine sweep measurement with simultaneous recording",
                "Impulse response estimation by inverse-sweep deconvolution",
                "RT60 (T30/T20), C50 and C80 analysis",
                "Speaker/listener layout evaluation",
            ],
            "server_info": {
                "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
                "threading": "Multi-threaded request handling",
                "audio_backend": "ALSA",
            },
        }
        if settings is not None:
            info["server_info"]["port"] = settings.port
        return jsonify(info)

    # Measurements

    @app.route("/rooms/<int:room_id>/measure", methods=["POST"])
    def start_measurement(room_id: int):
        """Start a sweep measurement; ?wait=<seconds> blocks until it finishes."""
        config = _config_from_args(request.args)
        wait = request.args.get("wait")
        timeout = validate_float_param("wait", wait, 0.0, 120.0) if wait is not None else None

        if not manager.measurer.permission_check():
            raise PermissionDenied("Microphone access not granted")

        session_id = manager.start_measurement(room_id, config)
        if timeout is None:
            return jsonify({"status": "started", "session_id": session_id, "config": config.to_dict()}), 202

        manager.wait(session_id, timeout)
        status = manager.get_status(session_id)
        if status["status"] == "failed":
            if status.get("error_type") == "HardwareAcquisitionError":
                raise HardwareAcquisitionError(status["error"])
            if status.get("error_type") == "PermissionDenied":
                raise PermissionDenied(status["error"])
        return jsonify(status)

    @app.route("/measure/status/<session_id>", methods=["GET"])
    def measurement_status(session_id: str):
        status = manager.get_status(session_id)
        if status is None:
            abort(404, f"Measurement {session_id} not found")
        return jsonify(status)

    @app.route("/measure/cancel/<session_id>", methods=["POST"])
    def cancel_measurement(session_id: str):
        if manager.get_status(session_id) is None:
            abort(404, f"Measurement {session_id} not found")
        if not manager.cancel(session_id):
            abort(409, f"Measurement {session_id} is not running")
        return jsonify({"status": "cancelling", "session_id": session_id})

    # Recordings

    @app.route("/rooms/<int:room_id>/recordings", methods=["GET"])
    def list_recordings(room_id: int):
        recordings = store.list_recordings(room_id)
        return jsonify({"room_id": room_id, "count": len(recordings), "recordings": recordings})

    @app.route("/rooms/<int:room_id>/recordings/latest", methods=["GET"])
    def latest_recording(room_id: int):
        record = store.latest_recording(room_id)
        if record is None:
            abort(404, f"No recordings for room {room_id}")
        return jsonify(record)

    @app.route("/recordings/<int:recording_id>/analyze", methods=["POST"])
    def analyze_recording(recording_id: int):
        """Compute RT60, C50 and C80 for a stored recording."""
        record = store.get_recording(recording_id)
        if record is None:
            abort(404, f"Recording {recording_id} not found")
        if not os.path.exists(record["file_path"]):
            abort(404, f"Recording file {os.path.basename(record['file_path'])} is missing")

        config = store.recording_config(record)
        if config is None:
            logger.warning(f"Recording {recording_id} has no stored configuration, assuming defaults")
        metrics = analyze_wav_file(record["file_path"], config)
        return jsonify({"recording_id": recording_id, "metrics": metrics.to_dict()})

    # Rooms

    @app.route("/rooms/<int:room_id>/dimensions", methods=["POST"])
    def save_dimensions(room_id: int):
        """Store room dimensions, given directly or as labelled measurements."""
        data = _json_body()
        if "labels" in data:
            labeled = data["labels"]
            if not isinstance(labeled, list) or not all(isinstance(p, (list, tuple)) and len(p) == 2
                                                        for p in labeled):
                abort(400, "'labels' must be a list of [label, metres] pairs")
            room = infer_room_size_from_labels(
                (str(label), validate_float_param(str(label), value, 0.0)) for label, value in labeled)
            if room is None:
                abort(400, "Could not identify width, depth and height from the labels")
        else:
            room = _parse_room(data)
        measure_id = store.save_measure(room_id, room.width, room.depth, room.height)
        return jsonify({"id": measure_id, "room_id": room_id,
                        "width": room.width, "depth": room.depth, "height": room.height}), 201

    @app.route("/rooms/<int:room_id>/dimensions", methods=["GET"])
    def get_dimensions(room_id: int):
        measure = store.latest_measure(room_id)
        if measure is None:
            abort(404, f"No dimensions stored for room {room_id}")
        return jsonify(measure)

    @app.route("/rooms/<int:room_id>/speakers", methods=["PUT"])
    def put_speakers(room_id: int):
        speakers = _parse_speakers(_json_body().get("speakers"))
        store.replace_speakers(room_id, [(s.x, s.y, s.z) for s in speakers])
        return jsonify({"room_id": room_id, "speakers": store.speakers(room_id)})

    @app.route("/rooms/<int:room_id>/speakers", methods=["GET"])
    def get_speakers(room_id: int):
        return jsonify({"room_id": room_id, "speakers": store.speakers(room_id)})

    # Layout

    @app.route("/layout/evaluate", methods=["POST"])
    def evaluate_layout():
        """Evaluate a speaker/listener layout given room, speakers and listener."""
        data = _json_body()
        room = _parse_room(data.get("room"))
        speakers = _parse_speakers(data.get("speakers", []))
        listener = _parse_listener(data.get("listener"))

        suggestion = suggest_positions(listener, speakers, room)
        return jsonify({
            "layout": evaluate_layout_2ch(room, speakers, listener).to_dict(),
            "listening": evaluate_listening_setup(room, speakers, listener).to_dict(),
            "suggested_positions": {
                "positions": [{"x": p.x, "y": p.y, "z": p.z} for p in suggestion.positions],
                "summary": suggestion.summary(),
            },
        })

    return app


def main():
    """Main entry point for the roomacoustic-server console script."""
    parser = argparse.ArgumentParser(description='RoomAcoustic measurement API server')
    parser.add_argument('--host', default=None, help='Listen address')
    parser.add_argument('--port', type=int, default=None, help='Listen port')
    parser.add_argument('--data-dir', default=None, help='Directory for recordings and the database')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    try:
        settings = Settings.from_env().with_overrides(host=args.host, port=args.port, data_dir=args.data_dir)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    os.makedirs(settings.recordings_dir, exist_ok=True)
    store = MeasurementStore(settings.db_path)
    backend = AlsaAudioBackend(playback_device=settings.playback_device, capture_card=settings.capture_card)
    manager = MeasurementManager(DuplexMeasurer(backend=backend), store, settings.recordings_dir)

    app = create_app(store, manager, settings)
    logger.info(f"RoomAcoustic API v{__version__} listening on {settings.host}:{settings.port}")
    app.run(
        host=settings.host,
        port=settings.port,
        debug=False,
        threaded=True
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
