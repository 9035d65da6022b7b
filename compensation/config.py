"""
Configuration for the compensation engine and the validation gate.

Plain data only. Defaults mirror the values the device app ships with;
the empirical scale factors are tunable policy, not physics.
"""

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import AccuracyTier, PrecisionLevel


class CompensationConfig(BaseModel):
    """Configuration for motion compensation."""

    # Stability classification
    motion_threshold: float = Field(default=0.05, gt=0)
    angular_threshold: float = Field(default=0.1, gt=0)
    stability_duration: float = Field(default=1.0, ge=0)  # seconds
    angular_weight: float = Field(default=0.1, ge=0)
    high_motion_multiplier: float = Field(default=2.0, gt=1)

    # Compensation
    compensation_accuracy: float = Field(default=0.001, gt=0)  # 1mm target
    enable_linear_compensation: bool = True
    enable_angular_compensation: bool = True
    enable_predictive_compensation: bool = True
    enable_adaptive_filtering: bool = True
    linear_error_scale: float = Field(default=0.001, ge=0)
    angular_error_scale: float = Field(default=0.01, ge=0)
    predictive_correction_scale: float = Field(default=0.005, ge=0)
    prediction_horizon: float = Field(default=0.1, ge=0)  # seconds
    adaptive_window: float = Field(default=0.1, gt=0)  # seconds either side

    # Prediction
    predictor_window: int = Field(default=10, ge=2)
    predictor_full_confidence_samples: int = Field(default=10, ge=1)
    horizon_decay: float = Field(default=0.999, gt=0, le=1)
    sample_rate: float = Field(default=60.0, gt=0)  # Hz

    # History
    max_history_length: int = Field(default=100, ge=1)
    max_history_seconds: float = Field(default=10.0, gt=0)
    sensor_gap_tolerance: float = Field(default=0.5, gt=0)  # seconds
    fallback_confidence: float = Field(default=0.5, ge=0, le=1)

    # Validation
    validation_frequency: float = Field(default=30.0, gt=0)  # Hz
    required_accuracy: AccuracyTier = AccuracyTier.MILLIMETER
    precision_level: PrecisionLevel = PrecisionLevel.MILLIMETER
    minimum_effectiveness: float = Field(default=0.8, ge=0, le=1)

    # Tracking
    max_camera_speed: float = Field(default=1.0, gt=0)  # m/s between frames

    # Metrics
    metrics_window: int = Field(default=30, ge=1)
    metrics_history_length: int = Field(default=100, ge=1)

    # Calibration
    calibration_interval: float = Field(default=24 * 60 * 60, gt=0)  # seconds
    recalibration_threshold: float = Field(default=0.9, ge=0, le=1)
    calibration_history_length: int = Field(default=10, ge=1)

    @property
    def sample_interval(self) -> float:
        return 1.0 / self.sample_rate

    @property
    def all_stages_disabled(self) -> bool:
        return not (
            self.enable_linear_compensation
            or self.enable_angular_compensation
            or self.enable_predictive_compensation
            or self.enable_adaptive_filtering
        )

    @model_validator(mode="after")
    def check_windows(self):
        if self.predictor_window > self.max_history_length:
            raise ValueError(
                f"predictor_window ({self.predictor_window}) exceeds "
                f"max_history_length ({self.max_history_length})"
            )
        return self


class QualityThresholds(BaseModel):
    """Acceptance thresholds for the multi-validator gate."""

    minimum_precision: float = Field(default=0.9, ge=0, le=1)
    minimum_confidence: float = Field(default=0.95, ge=0, le=1)
    minimum_quality: float = Field(default=0.9, ge=0, le=1)
    relative_tolerance: float = Field(default=0.01, gt=0)  # 1% of value
    angle_tolerance_degrees: float = Field(default=0.5, gt=0)
    consistency_tolerance: float = Field(default=1e-3, gt=0)  # relative
    planarity_tolerance: float = Field(default=0.01, gt=0)  # meters
    outlier_z_score: float = Field(default=3.5, gt=0)
    outlier_min_history: int = Field(default=5, ge=3)
    outlier_history_length: int = Field(default=50, ge=3)
    maximum_range: float = Field(default=100.0, gt=0)  # meters

    @field_validator("angle_tolerance_degrees")
    @classmethod
    def validate_angle_tolerance(cls, v):
        if v >= 180.0:
            raise ValueError("Angle tolerance must be below 180 degrees")
        return v


class EngineConfig(BaseModel):
    """Top-level configuration file layout."""

    compensation: CompensationConfig = Field(default_factory=CompensationConfig)
    quality: QualityThresholds = Field(default_factory=QualityThresholds)


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """
    Load engine configuration from a JSON file.

    Args:
        config_path: Path to a JSON file, or None for defaults

    Returns:
        Parsed EngineConfig
    """
    if config_path is None:
        return EngineConfig()

    with open(config_path, "r") as f:
        data = json.load(f)
    return EngineConfig(**data)
