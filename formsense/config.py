"""Tunable parameters for detection, scoring and stability tracking."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional


class DetectionPass(NamedTuple):
    name: str
    delay_ms: int
    confidence_threshold: float


DEFAULT_PASSES = (
    DetectionPass("immediate", 0, 0.8),
    DetectionPass("fast", 500, 0.7),
    DetectionPass("medium", 1500, 0.6),
    DetectionPass("thorough", 3000, 0.5),
    DetectionPass("final", 5000, 0.4),
)


@dataclass(slots=True)
class ScoringWeights:
    """Magnitudes used by the scoring rules.

    A candidate meets a pass when its score is at least
    ``confidence_threshold * full_confidence_score``.
    """

    full_confidence_score: float = 60.0

    per_field: float = 8.0
    field_cap: float = 40.0
    per_field_type: float = 5.0
    field_type_cap: float = 20.0

    form_tag: float = 40.0
    fieldset_tag: float = 25.0
    form_role: float = 35.0
    group_role: float = 15.0
    form_vocabulary: float = 20.0
    form_data_attribute: float = 15.0
    submit_control: float = 15.0
    legend: float = 10.0
    layout_vocabulary_penalty: float = -20.0

    per_interactive: float = 5.0
    behavioral_cap: float = 30.0
    behavioral_min_interactive: int = 2

    consistent_spacing: float = 10.0
    left_alignment: float = 10.0
    similar_widths: float = 8.0
    visual_cap: float = 30.0
    spacing_tolerance_px: float = 12.0
    max_row_gap_px: float = 160.0
    alignment_tolerance_px: float = 8.0
    width_ratio_limit: float = 1.25

    depth_penalty_start: int = 15
    depth_penalty_cap: float = 30.0

    vendor_container: float = 100.0


@dataclass(slots=True)
class StabilityConfig:
    quiet_window_ms: float = 1000.0
    poll_interval_ms: float = 100.0
    max_stability_wait_ms: float = 2000.0
    initial_confidence: float = 0.5
    loader_removed_delta: float = 0.2
    loader_added_delta: float = -0.2
    readiness_delta: float = 0.1


@dataclass(slots=True)
class DetectionConfig:
    passes: List[DetectionPass] = field(default_factory=lambda: list(DEFAULT_PASSES))
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    stability: StabilityConfig = field(default_factory=StabilityConfig)
    primary_limit: int = 10
    scan_limit: int = 20
    explicit_min_fields: int = 1
    implicit_min_fields: int = 2
    adopt_margin: float = 10.0
    adopt_growth_ratio: float = 1.5
    schema_mean_score: float = 70.0
    strong_candidate_count: int = 5
    strong_candidate_hits: int = 3
    strong_candidate_score: float = 80.0
    thorough_pass_name: str = "thorough"
    thorough_min_candidates: int = 2
    thorough_mean_score: float = 60.0
    min_multistep_score: float = 40.0
    additional_candidate_limit: int = 8
    additional_min_fields: int = 3
    additional_field_ratio: float = 0.2
    significant_score_floor: float = 50.0
    significant_score_ratio: float = 0.4
    distinct_vertical_px: float = 150.0
    distinct_horizontal_px: float = 200.0
    expansion_max_fields: int = 8
    expansion_field_ratio: float = 1.3
    same_origin_only: bool = True
    max_frame_depth: int = 8
    max_attempts: int = 3
    retry_backoff_ms: float = 1500.0
    mutation_debounce_ms: float = 500.0

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DetectionConfig":
        config = cls()
        for key, value in payload.items():
            if key == "passes":
                config.passes = [_coerce_pass(item) for item in value]
            elif key == "weights":
                _update_dataclass(config.weights, value)
            elif key == "stability":
                _update_dataclass(config.stability, value)
            elif key in _field_names(config):
                setattr(config, key, value)
            else:
                raise ValueError(f"Unknown detection config key: {key}")
        return config

    def min_score(self, detection_pass: DetectionPass) -> float:
        return detection_pass.confidence_threshold * self.weights.full_confidence_score


def load_config(path: Optional[Path]) -> DetectionConfig:
    if path is None:
        return DetectionConfig()
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Detection config must be a JSON object")
    return DetectionConfig.from_dict(payload)


def _coerce_pass(item: Any) -> DetectionPass:
    if isinstance(item, dict):
        return DetectionPass(
            name=str(item["name"]),
            delay_ms=int(item.get("delay_ms", 0)),
            confidence_threshold=float(item["confidence_threshold"]),
        )
    name, delay_ms, threshold = item
    return DetectionPass(str(name), int(delay_ms), float(threshold))


def _field_names(instance: Any) -> set:
    return {item.name for item in fields(instance)}


def _update_dataclass(instance: Any, values: Dict[str, Any]) -> None:
    names = _field_names(instance)
    for key, value in values.items():
        if key not in names:
            raise ValueError(f"Unknown {type(instance).__name__} key: {key}")
        setattr(instance, key, value)


__all__ = [
    "DetectionPass",
    "DEFAULT_PASSES",
    "ScoringWeights",
    "StabilityConfig",
    "DetectionConfig",
    "load_config",
]
