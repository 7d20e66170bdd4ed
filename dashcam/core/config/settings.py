"""Dashcam configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `DASHCAM_`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dashcam.core.detectors.face_mesh import FaceMeshUseCase
from dashcam.core.detectors.movenet import Device, ModelType, TrackerType


class DashcamSettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `DASHCAM_` env overrides."""

    model_config = SettingsConfigDict(env_prefix="DASHCAM_", validate_assignment=True)

    video_source: str = Field("webcam", description="webcam|file|rtsp")
    video_path: str | None = None
    rtsp_url: str | None = None

    # Stream mode tracks between frames (pose landmarks, object ids, EMA smoothing
    # and repetition counting); single-image mode treats every frame independently.
    stream_mode: bool = True

    enable_pose: bool = True
    pose_model_path: str = "models/pose_landmarker_full.task"
    pose_min_confidence: float = 0.5
    enable_pose_classification: bool = False
    pose_samples_path: str = "models/fitness_pose_samples.csv"
    pose_classes: list[str] = Field(default_factory=lambda: ["pushups_down", "squats_down"])
    show_in_frame_likelihood: bool = False
    visualize_z: bool = True
    rescale_z_for_visualization: bool = True

    enable_objects: bool = True
    object_model_name: str = "yolo11n.pt"
    object_confidence: float = 0.5
    enable_multiple_objects: bool = True
    enable_object_classification: bool = True

    enable_face_mesh: bool = True
    face_mesh_model_path: str = "models/face_landmarker.task"
    face_mesh_use_case: str = Field("face_mesh", description="face_mesh|bounding_box_only")

    enable_movenet: bool = True
    movenet_model_path: str = "models/movenet_multipose_fp16.tflite"
    movenet_device: str = Field("cpu", description="cpu|gpu|nnapi")
    movenet_model_type: str = Field("dynamic", description="dynamic|fixed")
    movenet_tracker: str = Field("bounding_box", description="off|bounding_box|keypoints")

    # Run detectors every N frames (1 = every frame). Skipped frames reuse the last result.
    inference_stride: int = 1
    # Optional cap for processing loop FPS. 0 runs as fast as possible; None picks
    # a default based on the source.
    target_fps: float | None = None
    # Optional: downscale outgoing MJPEG frames before JPEG encoding.
    output_width: int | None = None
    jpeg_quality: int = 70
    enable_backend_overlays: bool = True
    profile_steps: bool = False

    @field_validator("video_source")
    @classmethod
    def _validate_source(cls, v: str) -> str:
        if v not in {"webcam", "file", "rtsp"}:
            raise ValueError("video_source must be webcam|file|rtsp")
        return v

    @field_validator("pose_min_confidence", "object_confidence")
    @classmethod
    def _validate_confidence(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("confidence must be in (0, 1]")
        return v

    @field_validator("face_mesh_use_case")
    @classmethod
    def _validate_face_mesh_use_case(cls, v: str) -> str:
        return _enum_value(FaceMeshUseCase, v, "face_mesh_use_case")

    @field_validator("movenet_device")
    @classmethod
    def _validate_movenet_device(cls, v: str) -> str:
        return _enum_value(Device, v, "movenet_device")

    @field_validator("movenet_model_type")
    @classmethod
    def _validate_movenet_model_type(cls, v: str) -> str:
        return _enum_value(ModelType, v, "movenet_model_type")

    @field_validator("movenet_tracker")
    @classmethod
    def _validate_movenet_tracker(cls, v: str) -> str:
        return _enum_value(TrackerType, v, "movenet_tracker")

    @field_validator("inference_stride")
    @classmethod
    def _validate_inference_stride(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("inference_stride must be >= 1")
        return v

    @field_validator("target_fps")
    @classmethod
    def _validate_target_fps(cls, v: float | None) -> float | None:
        if v is None:
            return v
        if v < 0:
            raise ValueError("target_fps must be >= 0")
        return float(v)

    @field_validator("output_width")
    @classmethod
    def _validate_output_width(cls, v: int | None) -> int | None:
        if v is None:
            return v
        if v <= 0:
            raise ValueError("output_width must be > 0")
        return v

    @field_validator("jpeg_quality")
    @classmethod
    def _validate_jpeg_quality(cls, v: int) -> int:
        if not 10 <= v <= 100:
            raise ValueError("jpeg_quality must be in [10, 100]")
        return v


def _enum_value(enum_cls: Any, value: str, name: str) -> str:
    v = str(value).strip().lower()
    allowed = [e.value for e in enum_cls]
    if v not in allowed:
        raise ValueError(f"{name} must be {'|'.join(allowed)}")
    return v


def settings_to_dict(settings: DashcamSettings) -> dict[str, Any]:
    return settings.model_dump()


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/dashcam.config.yml)."""

    return Path(os.getenv("DASHCAM_CONFIG", "config/dashcam.config.yml"))


def load_settings() -> DashcamSettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = DashcamSettings()
    env_overrides: dict[str, Any] = {
        name: getattr(env_settings, name) for name in env_settings.model_fields_set
    }

    merged = {**data, **env_overrides}
    return DashcamSettings(**merged)
