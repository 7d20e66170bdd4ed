from __future__ import annotations

from typing import Any

# CPU-oriented presets.
#
# - inference_stride: run detectors every N frames (last result reused in between)
# - output_width + jpeg_quality affect MJPEG encode/transport cost
# - target_fps caps the processing loop; 0 means "run as fast as possible"

PRESETS: dict[str, dict[str, Any]] = {
    # Every pipeline, full mesh, every frame.
    "accurate": {
        "enable_pose": True,
        "enable_objects": True,
        "enable_face_mesh": True,
        "face_mesh_use_case": "face_mesh",
        "enable_movenet": True,
        "movenet_tracker": "keypoints",
        "inference_stride": 1,
        "output_width": None,
        "jpeg_quality": 85,
        "target_fps": 15.0,
    },
    "balanced": {
        "enable_pose": True,
        "enable_objects": True,
        "enable_face_mesh": True,
        "face_mesh_use_case": "bounding_box_only",
        "enable_movenet": True,
        "movenet_tracker": "bounding_box",
        "inference_stride": 2,
        "output_width": 960,
        "jpeg_quality": 70,
        "target_fps": 0.0,
    },
    # Multi-person pose only.
    "fast": {
        "enable_pose": False,
        "enable_objects": False,
        "enable_face_mesh": False,
        "enable_movenet": True,
        "movenet_tracker": "bounding_box",
        "inference_stride": 3,
        "output_width": 640,
        "jpeg_quality": 55,
        "target_fps": 0.0,
    },
}


PRESET_LABELS: dict[str, str] = {
    "accurate": "Accurate",
    "balanced": "Balanced",
    "fast": "Fast",
}


def list_presets() -> list[dict[str, Any]]:
    return [
        {
            "id": preset_id,
            "label": PRESET_LABELS.get(preset_id, preset_id),
            "settings": PRESETS[preset_id],
        }
        for preset_id in PRESETS.keys()
    ]


def preset_patch(preset_id: str) -> dict[str, Any]:
    if preset_id not in PRESETS:
        raise KeyError(preset_id)
    return dict(PRESETS[preset_id])
