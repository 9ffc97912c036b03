import math

import pytest

from roomacoustic.layout import (
    RoomSize, Vec2, Vec3,
    evaluate_layout_2ch, evaluate_listening_setup, infer_room_size_from_labels,
    smooth_ratio_to_one, smooth_to_band, smooth_to_target, suggest_positions,
)

ROOM = RoomSize(4.0, 5.0, 2.5)
PAIR = [Vec3(1.0, 1.0, 1.0), Vec3(3.0, 1.0, 1.0)]
APEX_Z = 1.0 + math.sqrt(3.0)


def test_equilateral_layout():
    result = evaluate_layout_2ch(ROOM, PAIR, Vec2(2.0, APEX_Z))

    assert result.sweet_spot_score == 100.0
    assert result.l_dist == pytest.approx(2.0)
    assert result.r_dist == pytest.approx(2.0)
    assert result.distance_delta == pytest.approx(0.0)
    assert result.toe_in_deg == pytest.approx(30.0)
    # 30 deg is above the recommended toe-in
    assert len(result.notes) == 1


def test_listener_near_wall_and_off_axis():
    result = evaluate_layout_2ch(ROOM, PAIR, Vec2(0.1, APEX_Z))
    assert result.sweet_spot_score == 50.0
    assert "20 cm" in result.notes[0]


def test_distance_delta_penalty():
    result = evaluate_layout_2ch(ROOM, PAIR, Vec2(2.6, APEX_Z))
    assert result.distance_delta > 0.40
    assert result.sweet_spot_score == 75.0


def test_single_speaker():
    result = evaluate_layout_2ch(ROOM, PAIR[:1], Vec2(2.0, APEX_Z))
    assert result.r_dist is None
    assert result.distance_delta is None
    assert result.sweet_spot_score == 100.0
    assert len(result.notes) == 1


def test_no_speakers():
    result = evaluate_layout_2ch(ROOM, [], Vec2(2.0, 2.0))
    assert result.sweet_spot_score == 0.0
    assert result.avg_dist is None
    assert result.notes


def test_smoothing_helpers():
    assert smooth_to_target(0.5, 0.0, soft=1.0, hard=2.0) == 100
    assert smooth_to_target(1.5, 0.0, soft=1.0, hard=2.0) == 80
    assert smooth_to_target(3.0, 0.0, soft=1.0, hard=2.0) == 40
    assert smooth_to_target(3.0, 0.0, soft=1.0, hard=2.0, floor=50) == 50
    assert smooth_to_band(3.5, 3.0, 4.0, taper=2.0) == 100
    assert smooth_to_band(5.0, 3.0, 4.0, taper=2.0) == 80
    assert smooth_to_band(2.0, 3.0, 4.0, taper=2.0) == 80
    assert smooth_to_band(0.0, 3.0, 4.0, taper=2.0) == 40
    assert smooth_ratio_to_one(1.02, tol=0.05, max_tol=0.25) == 100
    assert smooth_ratio_to_one(1.15, tol=0.05, max_tol=0.25) == 80
    assert smooth_ratio_to_one(0.5, tol=0.05, max_tol=0.25) == 40


LISTENING_ROOM = RoomSize(4.0, 6.0, 2.5)
SPEAKER_Z = 2.6 + math.sqrt(3.0)


def test_ideal_listening_setup():
    speakers = [Vec3(1.0, 1.2, SPEAKER_Z), Vec3(3.0, 1.2, SPEAKER_Z)]
    result = evaluate_listening_setup(LISTENING_ROOM, speakers, Vec2(2.0, 2.6))

    assert result.total == 100
    assert [m.weight for m in result.metrics] == [3, 2, 2, 3]
    assert result.notes == []
    assert result.move_suggestions == []
    assert result.suggested_listener == Vec2(2.0, 2.6)


def test_off_centre_pair_is_moved():
    speakers = [Vec3(2.5, 1.2, SPEAKER_Z), Vec3(0.5, 1.2, SPEAKER_Z)]
    result = evaluate_listening_setup(LISTENING_ROOM, speakers, Vec2(1.5, 2.6))

    centring = result.metrics[1]
    assert centring.score == 40
    assert result.total == 88
    assert [m.label for m in result.move_suggestions] == ["L", "R"]

    left, right = result.move_suggestions
    assert left.index == 1
    assert left.source.x == 0.5
    assert left.target.x == pytest.approx(1.0)
    assert right.target.x == pytest.approx(3.0)
    assert len(result.notes) == len(set(result.notes))


def test_front_back_alignment():
    speakers = [Vec3(1.0, 1.2, SPEAKER_Z), Vec3(3.0, 1.2, SPEAKER_Z - 0.4)]
    result = evaluate_listening_setup(LISTENING_ROOM, speakers, Vec2(2.0, 2.6))

    alignment = result.metrics[2]
    assert alignment.score == 77
    targets = {m.label: m.target for m in result.move_suggestions}
    assert targets["L"].z == pytest.approx(targets["R"].z)
    assert 6.0 - 2.2 <= targets["L"].z <= 6.0 - 1.0


def test_listening_depth_only_without_speakers():
    result = evaluate_listening_setup(LISTENING_ROOM, [], Vec2(2.0, 0.5))
    assert len(result.metrics) == 1
    assert result.total == 40
    assert result.suggested_listener == Vec2(2.0, pytest.approx(2.25))


def test_single_speaker_listening_setup():
    result = evaluate_listening_setup(LISTENING_ROOM, [Vec3(2.0, 1.2, SPEAKER_Z)], Vec2(2.0, 2.6))
    assert any("Not a stereo pair" in note for note in result.notes)


def test_listening_eval_serialises():
    speakers = [Vec3(2.5, 1.2, SPEAKER_Z), Vec3(0.5, 1.2, SPEAKER_Z)]
    data = evaluate_listening_setup(LISTENING_ROOM, speakers, Vec2(1.5, 2.6)).to_dict()
    assert data["move_suggestions"][0]["target"]["x"] == pytest.approx(1.0)
    assert data["metrics"][0]["name"].startswith("Listening depth")


def test_suggest_stereo_positions():
    listener = Vec2(2.0, 2.6)
    suggestion = suggest_positions(listener, [Vec3(1.5, 1.1, 4.0), Vec3(2.5, 1.1, 4.0)], LISTENING_ROOM)

    left, right = suggestion.positions
    assert left.x < right.x
    assert left.x + right.x == pytest.approx(4.0)
    assert left.z == pytest.approx(4.0)
    assert right.z == pytest.approx(4.0)
    assert left.y == 1.1
    assert len(suggestion.notes) == 2


def test_suggest_positions_stay_inside_room():
    speakers = [Vec3(0.1, 1.0, 5.9), Vec3(3.9, 1.0, 5.9), Vec3(2.0, 1.0, 0.1)]
    suggestion = suggest_positions(Vec2(2.0, 3.0), speakers, LISTENING_ROOM)

    assert len(suggestion.positions) == 3
    for p in suggestion.positions:
        assert 0.3 <= p.x <= 3.7
        assert 0.3 <= p.z <= 5.7


def test_suggest_positions_without_speakers():
    suggestion = suggest_positions(Vec2(2.0, 3.0), [], LISTENING_ROOM)
    assert suggestion.positions == []
    assert suggestion.summary() == "No speakers."


def test_infer_room_size_from_labels():
    labeled = [("Width (m)", 4.2), ("Depth", 5.0), ("Ceiling 높이", 2.4)]
    assert infer_room_size_from_labels(labeled) == RoomSize(4.2, 5.0, 2.4)


def test_infer_room_size_korean_and_short_labels():
    assert infer_room_size_from_labels([("가로", 3.5), ("세로", 4.5), ("높이", 2.3)]) == RoomSize(3.5, 4.5, 2.3)
    assert infer_room_size_from_labels([("h", 2.5), ("d", 4.0), ("w", 3.0)]) == RoomSize(3.0, 4.0, 2.5)


def test_infer_room_size_incomplete():
    assert infer_room_size_from_labels([]) is None
    assert infer_room_size_from_labels([("width", 4.0), ("depth", 5.0)]) is None
