from __future__ import annotations
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

from fitassess.common.errors import InvalidConfigError


@dataclass(frozen=True)
class CounterConfig:
    # Torso angle from vertical (deg): small = sitting up, large = lying back
    up_threshold_deg: float = 35.0     # at or below -> UP
    down_threshold_deg: float = 70.0   # at or above -> DOWN
    min_delta_to_move_deg: float = 5.0  # per-tick change that counts as motion
    # Liveness / attention
    max_no_move_ms: float = 5000.0
    max_no_face_ms: float = 3000.0
    face_window_ms: Optional[float] = None  # None disables the visibility-rate check
    face_min_visible_rate: float = 0.3
    face_score_threshold: float = 0.4
    min_pose_score: float = 0.1  # below this a pose frame is too noisy to move the phase
    # Intensity variant
    movement_threshold: float = 0.3
    intensity_window: int = 3
    min_rep_interval_ms: float = 2500.0  # shortest gap between two intensity reps

    def __post_init__(self):
        if not (0.0 <= self.up_threshold_deg <= 90.0 and 0.0 <= self.down_threshold_deg <= 90.0):
            raise InvalidConfigError("thresholds must lie within [0, 90] degrees")
        if self.up_threshold_deg >= self.down_threshold_deg:
            raise InvalidConfigError(
                f"up_threshold_deg ({self.up_threshold_deg}) must be below "
                f"down_threshold_deg ({self.down_threshold_deg})"
            )
        if self.min_delta_to_move_deg < 0:
            raise InvalidConfigError("min_delta_to_move_deg must be >= 0")
        if self.max_no_move_ms < 0 or self.max_no_face_ms < 0 or self.min_rep_interval_ms < 0:
            raise InvalidConfigError("timeouts must be >= 0")
        if self.face_window_ms is not None and self.face_window_ms <= 0:
            raise InvalidConfigError("face_window_ms must be > 0 when set")
        for name in ("face_min_visible_rate", "face_score_threshold", "min_pose_score", "movement_threshold"):
            v = getattr(self, name)
            if not 0.0 <= v <= 1.0:
                raise InvalidConfigError(f"{name} must lie within [0, 1]")
        if self.intensity_window < 1:
            raise InvalidConfigError("intensity_window must be >= 1")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CounterConfig":
        if not data:
            return cls()
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise InvalidConfigError(f"unknown config fields: {', '.join(sorted(unknown))}")
        return cls(**data)

    def with_overrides(self, **overrides) -> "CounterConfig":
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


PRESETS: Dict[str, CounterConfig] = {
    "sit_up": CounterConfig(),
    # faster-counting profile tuned for the lite pose model
    "pose_fast": CounterConfig(
        up_threshold_deg=45.0,
        down_threshold_deg=65.0,
        min_delta_to_move_deg=4.0,
        face_window_ms=2000.0,
    ),
}


def get_preset(name: str) -> CounterConfig:
    try:
        return PRESETS[name]
    except KeyError:
        raise InvalidConfigError(
            f"Unknown preset '{name}'. Available options: {', '.join(PRESETS)}"
        ) from None
