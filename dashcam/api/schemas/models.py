"""Pydantic models for the HTTP/WS API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class StatsSchema(BaseModel):
    """High-level summary stats payload."""

    pose_detected: bool = False
    num_objects: int = 0
    num_faces: int = 0
    num_persons: int = 0
    classification: list[str] = Field(default_factory=list)
    fps: float = 0.0
    stream_fps: float | None = None
    latency: dict[str, float] | None = None
    error: str | None = None


class ConfigSchema(BaseModel):
    """Runtime configuration payload."""

    video_source: Literal["webcam", "file", "rtsp"]
    video_path: str | None = None
    rtsp_url: str | None = None
    stream_mode: bool = True

    enable_pose: bool = True
    pose_model_path: str = "models/pose_landmarker_full.task"
    pose_min_confidence: float = Field(default=0.5, gt=0.0, le=1.0)
    enable_pose_classification: bool = False
    pose_samples_path: str = "models/fitness_pose_samples.csv"
    pose_classes: list[str] = Field(default_factory=lambda: ["pushups_down", "squats_down"])
    show_in_frame_likelihood: bool = False
    visualize_z: bool = True
    rescale_z_for_visualization: bool = True

    enable_objects: bool = True
    object_model_name: str = "yolo11n.pt"
    object_confidence: float = Field(default=0.5, gt=0.0, le=1.0)
    enable_multiple_objects: bool = True
    enable_object_classification: bool = True

    enable_face_mesh: bool = True
    face_mesh_model_path: str = "models/face_landmarker.task"
    face_mesh_use_case: Literal["face_mesh", "bounding_box_only"] = "face_mesh"

    enable_movenet: bool = True
    movenet_model_path: str = "models/movenet_multipose_fp16.tflite"
    movenet_device: Literal["cpu", "gpu", "nnapi"] = "cpu"
    movenet_model_type: Literal["dynamic", "fixed"] = "dynamic"
    movenet_tracker: Literal["off", "bounding_box", "keypoints"] = "bounding_box"

    inference_stride: int = Field(default=1, ge=1)
    target_fps: float | None = Field(default=None, ge=0)
    output_width: int | None = Field(default=None, gt=0)
    jpeg_quality: int = Field(default=70, ge=10, le=100)
    enable_backend_overlays: bool = True
    profile_steps: bool = False
