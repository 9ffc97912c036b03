"""
Speaker / listener layout evaluation for RoomAcoustic.

Scores a top-down stereo layout against common placement heuristics:
equilateral listening triangle, symmetric distances, listening depth and
wall clearances. All coordinates are in metres; x runs across the room
(0..width), z runs front to back (0..depth) and speaker heights (y) are
ignored.
"""

import math
import logging
from dataclasses import dataclass, field, asdict, replace
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

LISTENER_WALL_MARGIN = 0.20
SIDE_WALL_MIN = 0.50
BACK_WALL_MIN = 1.00
BACK_WALL_MAX = 2.20
FRONT_MIN = 0.20
SUGGEST_WALL_MIN = 0.30


@dataclass(frozen=True)
class RoomSize:
    width: float
    depth: float
    height: float


@dataclass(frozen=True)
class Vec2:
    x: float
    z: float


@dataclass(frozen=True)
class Vec3:
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class LayoutEval:
    avg_dist: Optional[float]
    l_dist: Optional[float]
    r_dist: Optional[float]
    distance_delta: Optional[float]
    toe_in_deg: Optional[float]
    sweet_spot_score: float
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EvalMetric:
    name: str
    score: int
    weight: int
    detail: str


@dataclass(frozen=True)
class MoveSuggestion:
    index: int
    label: str
    source: Vec3
    target: Vec3


@dataclass(frozen=True)
class ListeningEval:
    total: int
    metrics: List[EvalMetric]
    notes: List[str]
    suggested_listener: Optional[Vec2]
    move_suggestions: List[MoveSuggestion]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SpeakerSuggestion:
    positions: List[Vec3]
    notes: List[str]

    def summary(self) -> str:
        return " · ".join(self.notes)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value, low, high):
    return max(low, min(high, value))


def _fmt(value: float) -> str:
    return f"{value:.2f}"


def _interpolate_score(t: float, floor: int) -> int:
    score = 100.0 * (1.0 - t) + 60.0 * t
    return _clamp(_round_half_up(score), floor, 100)


def smooth_to_target(value: float, target: float, soft: float, hard: float, floor: int = 40) -> int:
    """100 within soft of target, linear down to 60 at hard, floor beyond."""
    d = abs(value - target)
    if d <= soft:
        return 100
    if d >= hard:
        return floor
    return _interpolate_score((d - soft) / (hard - soft), floor)


def smooth_to_band(value: float, band_min: float, band_max: float, taper: float, floor: int = 40) -> int:
    """100 inside [band_min, band_max], linear down to 60 at taper outside, floor beyond."""
    if band_min <= value <= band_max:
        return 100
    dist = band_min - value if value < band_min else value - band_max
    if dist >= taper:
        return floor
    return _interpolate_score(dist / taper, floor)


def smooth_ratio_to_one(r: float, tol: float, max_tol: float, floor: int = 40) -> int:
    """100 when |r - 1| <= tol, linear down to 60 at max_tol, floor beyond."""
    d = abs(r - 1.0)
    if d <= tol:
        return 100
    if d >= max_tol:
        return floor
    return _interpolate_score((d - tol) / (max_tol - tol), floor)


def _dist_xz(speaker: Vec3, x: float, z: float) -> float:
    return math.hypot(speaker.x - x, speaker.z - z)


def _toe_in_deg(speaker: Vec3, listener: Vec2) -> float:
    # Angle between the front-to-back axis and the line to the listener
    return math.degrees(math.atan2(abs(listener.x - speaker.x), abs(listener.z - speaker.z)))


def evaluate_layout_2ch(room: RoomSize, speakers: Sequence[Vec3], listener: Vec2) -> LayoutEval:
    """
    Quick stereo layout check: distances, symmetry and toe-in.

    The first speaker is treated as left, the second as right.
    """
    if not speakers:
        return LayoutEval(None, None, None, None, None, 0.0,
                          ["No speakers placed. Add at least one speaker."])

    left = speakers[0]
    right = speakers[1] if len(speakers) > 1 else None

    l_dist = _dist_xz(left, listener.x, listener.z)
    r_dist = _dist_xz(right, listener.x, listener.z) if right is not None else None
    dists = [d for d in (l_dist, r_dist) if d is not None]
    avg_dist = sum(dists) / len(dists)
    distance_delta = abs(l_dist - r_dist) if r_dist is not None else None

    notes = []
    score = 100.0

    margin_ok = (listener.x >= LISTENER_WALL_MARGIN and listener.z >= LISTENER_WALL_MARGIN
                 and room.width - listener.x >= LISTENER_WALL_MARGIN
                 and room.depth - listener.z >= LISTENER_WALL_MARGIN)
    if not margin_ok:
        notes.append("Keep the listening position at least 20 cm from the walls to reduce reflections.")
        score -= 10

    if right is None:
        if not notes:
            notes.append("Left/right symmetry checks are skipped unless there are two speakers.")
        return LayoutEval(avg_dist, l_dist, None, None, None, _clamp(score, 0.0, 100.0), notes)

    speaker_gap = max(abs(left.x - right.x), 0.001)
    ratio = avg_dist / speaker_gap
    if ratio < 0.8:
        notes.append("The listener is too close to the speakers. Try moving back a little.")
        score -= 15
    elif ratio > 1.3:
        notes.append("The listener is too far behind. Try moving forward a little.")
        score -= 15

    if distance_delta > 0.40:
        notes.append("Left/right distance difference is large (>40 cm). Move towards the centre line.")
        score -= 25
    elif distance_delta > 0.20:
        notes.append("Left/right distance difference is noticeable (>20 cm). Move slightly towards the centre.")
        score -= 10

    toe_in = (_toe_in_deg(left, listener) + _toe_in_deg(right, listener)) / 2.0
    if toe_in < 3.0:
        notes.append("Toe the speakers in slightly towards the listener (5-15°).")
    elif toe_in > 25.0:
        notes.append("A large toe-in angle can narrow the stage. 5-15° is recommended.")

    return LayoutEval(avg_dist, l_dist, r_dist, distance_delta, toe_in, _clamp(score, 0.0, 100.0), notes)


def _merge_moves(moves: List[MoveSuggestion]) -> List[MoveSuggestion]:
    """Collapse several suggestions for the same speaker into one (first source, last target)."""
    by_index = {}
    for move in moves:
        if move.index in by_index:
            first = by_index[move.index]
            by_index[move.index] = replace(first, target=move.target)
        else:
            by_index[move.index] = move
    return sorted(by_index.values(), key=lambda m: m.label)


def _pack(metrics: List[EvalMetric], notes: List[str], suggested: Optional[Vec2],
          moves: List[MoveSuggestion]) -> ListeningEval:
    total_weight = max(sum(m.weight for m in metrics), 1)
    weighted = sum(m.score * m.weight for m in metrics)
    total = _clamp(_round_half_up(weighted / total_weight), 0, 100)
    return ListeningEval(
        total=total,
        metrics=metrics,
        notes=list(dict.fromkeys(notes)),
        suggested_listener=suggested,
        move_suggestions=_merge_moves(moves),
    )


def _wall_hints(p: Vec3, room: RoomSize) -> List[str]:
    hints = []
    back = room.depth - p.z
    if min(p.x, room.width - p.x) < SIDE_WALL_MIN:
        hints.append(f"Keep >= {_fmt(SIDE_WALL_MIN)} m from the side walls.")
    if back < BACK_WALL_MIN:
        hints.append(f"Keep >= {_fmt(BACK_WALL_MIN)} m from the back wall.")
    if back > BACK_WALL_MAX:
        hints.append(f"Keep <= {_fmt(BACK_WALL_MAX)} m from the back wall.")
    if p.z < FRONT_MIN:
        hints.append(f"Too little room on the listener side (>= {_fmt(FRONT_MIN)} m recommended).")
    return hints


def evaluate_listening_setup(room: RoomSize, speakers: Sequence[Vec3], listener: Vec2) -> ListeningEval:
    """
    Weighted listening-setup score with suggestions.

    Sub-scores: listening depth (30-45 % of room depth), left/right centring
    on the room centre line, front/back alignment of the speakers and
    triangle balance. Speakers are sorted by x; the outermost two are L/R.
    """
    notes = []
    metrics = []
    moves = []
    suggested = None

    band_min = room.depth * 0.30
    band_max = room.depth * 0.45
    depth_score = smooth_to_band(listener.z, band_min, band_max, taper=room.depth * 0.15, floor=40)
    if depth_score < 100:
        notes.append(f"Listening depth of 30-45 % of the room depth is recommended "
                     f"(≈ {_fmt(band_min)}-{_fmt(band_max)} m).")
        suggested = Vec2(listener.x, (band_min + band_max) * 0.5)
    metrics.append(EvalMetric(
        name="Listening depth (30-45%)",
        score=depth_score,
        weight=3,
        detail=f"current {_fmt(listener.z)} m / recommended {_fmt(band_min)}-{_fmt(band_max)} m",
    ))

    if not speakers:
        return _pack(metrics, notes, suggested, moves)

    if len(speakers) >= 2:
        indexed = sorted(enumerate(speakers), key=lambda item: item[1].x)
        l_idx, left = indexed[0]
        r_idx, right = indexed[-1]

        mid_x = (left.x + right.x) * 0.5
        center_x = room.width * 0.5
        suggested = Vec2(mid_x, (suggested or listener).z)

        delta_center = abs(mid_x - center_x)
        center_score = smooth_to_target(delta_center, 0.0, soft=room.width * 0.02,
                                        hard=room.width * 0.10, floor=40)
        if center_score < 100:
            notes.append("Centre the speaker pair on the room's centre line (W/2).")
            shift = center_x - mid_x
            moves.append(MoveSuggestion(l_idx, "L", left, replace(
                left, x=_clamp(left.x + shift, SIDE_WALL_MIN, room.width - SIDE_WALL_MIN))))
            moves.append(MoveSuggestion(r_idx, "R", right, replace(
                right, x=_clamp(right.x + shift, SIDE_WALL_MIN, room.width - SIDE_WALL_MIN))))
        metrics.append(EvalMetric(
            name="Left/right centring",
            score=center_score,
            weight=2,
            detail=f"midX={_fmt(mid_x)} m, center={_fmt(center_x)} m, Δ={_fmt(delta_center)} m",
        ))

        dz = abs(left.z - right.z)
        align_score = smooth_to_target(dz, 0.0, soft=room.depth * 0.02, hard=room.depth * 0.10, floor=50)
        if align_score < 100:
            notes.append("Align both speakers front-to-back (z) for better stereo imaging.")
            # Keep the common z within the recommended back-wall distance
            avg_z = _clamp((left.z + right.z) * 0.5, max(room.depth - BACK_WALL_MAX, FRONT_MIN),
                           room.depth - BACK_WALL_MIN)
            l_base = next((m.target for m in moves if m.index == l_idx), left)
            r_base = next((m.target for m in moves if m.index == r_idx), right)
            moves.append(MoveSuggestion(l_idx, "L", l_base, replace(l_base, z=avg_z)))
            moves.append(MoveSuggestion(r_idx, "R", r_base, replace(r_base, z=avg_z)))
        metrics.append(EvalMetric(
            name="Front/back alignment",
            score=align_score,
            weight=2,
            detail=f"|zL - zR| = {_fmt(dz)} m",
        ))

        d_l = math.hypot(listener.x - left.x, listener.z - left.z)
        d_r = math.hypot(listener.x - right.x, listener.z - right.z)
        d_lr = math.hypot(right.x - left.x, right.z - left.z)
        avg_lr = max((d_l + d_r) * 0.5, 1e-4)

        iso_score = smooth_to_target(abs(d_l - d_r) / avg_lr, 0.0, soft=0.05, hard=0.25, floor=40)
        eq_score = smooth_ratio_to_one(d_lr / avg_lr, tol=0.05, max_tol=0.25, floor=40)
        triangle_score = _clamp(_round_half_up((iso_score + eq_score) / 2.0), 0, 100)
        if iso_score < 100:
            notes.append("Reduce the difference between the left and right listening distances.")
        if eq_score < 100:
            notes.append("Balance the speaker spacing against the listening distance.")
        metrics.append(EvalMetric(
            name="Triangle balance",
            score=triangle_score,
            weight=3,
            detail=f"dL={_fmt(d_l)} m, dR={_fmt(d_r)} m, LR={_fmt(d_lr)} m",
        ))

        # Hints apply to where the speakers would end up
        merged = {m.index: m.target for m in moves}
        for label, idx, speaker in (("Left", l_idx, left), ("Right", r_idx, right)):
            hints = _wall_hints(merged.get(idx, speaker), room)
            if hints:
                notes.append(f"{label}: " + " ".join(hints))
    else:
        notes.append(f"Not a stereo pair ({len(speakers)} speaker(s)); only some rules were applied.")
        for i, s in enumerate(speakers):
            back = room.depth - s.z
            if not BACK_WALL_MIN <= back <= BACK_WALL_MAX:
                notes.append(f"S{i + 1}: keep the back-wall distance within "
                             f"{_fmt(BACK_WALL_MIN)}-{_fmt(BACK_WALL_MAX)} m.")

    return _pack(metrics, notes, suggested, moves)


def suggest_positions(listener: Vec2, speakers: Sequence[Vec3], room: RoomSize) -> SpeakerSuggestion:
    """
    Suggest speaker positions around the listener keeping the mean distance.

    Two speakers are placed symmetrically about the listener's x at the
    speakers' mean z; other counts keep each speaker's bearing and move it
    onto the mean-radius circle. Results are clamped to a 0.30 m wall margin.
    """
    if not speakers:
        return SpeakerSuggestion([], ["No speakers."])

    notes = []
    dists = [math.hypot(s.x - listener.x, s.z - listener.z) for s in speakers]
    radius = _clamp(sum(dists) / len(dists), 0.40, max(room.width, room.depth))

    def clamp_xz(x: float, z: float):
        return (_clamp(x, SUGGEST_WALL_MIN, room.width - SUGGEST_WALL_MIN),
                _clamp(z, SUGGEST_WALL_MIN, room.depth - SUGGEST_WALL_MIN))

    if len(speakers) == 2:
        mean_z = (speakers[0].z + speakers[1].z) / 2.0
        front_z = _clamp(mean_z, 0.30, room.depth - 0.80)
        dx = radius * 0.85
        left = clamp_xz(listener.x - dx, front_z)
        right = clamp_xz(listener.x + dx, front_z)
        if left[0] > right[0]:
            left, right = right, left
        xz = [left, right]
        notes.append(f"Stereo: symmetric left/right, mean radius r={_fmt(radius)} m")
        notes.append(f"Front bias z≈{_fmt(front_z)} m, wall margin {SUGGEST_WALL_MIN} m")
    else:
        xz = []
        for s in speakers:
            angle = math.atan2(s.z - listener.z, s.x - listener.x)
            xz.append(clamp_xz(listener.x + radius * math.cos(angle),
                               listener.z + radius * math.sin(angle)))
        notes.append(f"N={len(speakers)}: mean radius r={_fmt(radius)} m around the listener")
        notes.append(f"Room bounds with minimum wall margin {SUGGEST_WALL_MIN} m")

    positions = [Vec3(x, speakers[i].y if i < len(speakers) else 1.2, z) for i, (x, z) in enumerate(xz)]
    return SpeakerSuggestion(positions, notes)


_WIDTH_KEYS = ("w", "width", "가로", "폭", "넓이")
_DEPTH_KEYS = ("d", "depth", "세로", "길이", "방길이", "방깊이", "전장", "장변")
_HEIGHT_KEYS = ("h", "height", "높이", "천장", "층고")
_LABEL_STRIP = str.maketrans("", "", "()[]{}:：=~_-")


def _normalize_label(label: str) -> str:
    return "".join(label.lower().split()).translate(_LABEL_STRIP)


def infer_room_size_from_labels(labeled) -> Optional[RoomSize]:
    """
    Infer room dimensions from labelled measurements.

    Args:
        labeled: Iterable of (label, metres) pairs, e.g. [("Width", 4.2), ...]

    Returns:
        RoomSize if width, depth and height could all be identified, else None
    """
    labeled = list(labeled)
    if not labeled:
        return None

    def pick(keys) -> Optional[float]:
        # Exact match wins over a partial one; single letters only match exactly
        partial = None
        for label, meters in labeled:
            norm = _normalize_label(label)
            if not norm:
                continue
            if norm in keys:
                return float(meters)
            if partial is None and any(len(k) > 1 and (k in norm or (len(norm) > 1 and norm in k))
                                       for k in keys):
                partial = float(meters)
        return partial

    w, d, h = pick(_WIDTH_KEYS), pick(_DEPTH_KEYS), pick(_HEIGHT_KEYS)
    if w is None or d is None or h is None:
        logger.debug(f"Could not infer room size from labels {[l for l, _ in labeled]}")
        return None
    return RoomSize(w, d, h)
