"""Stats endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dashcam.api.schemas.models import StatsSchema
from dashcam.api.services.engine import VideoEngine
from dashcam.api.services.state import get_engine

router = APIRouter()


@router.get("/stats", response_model=StatsSchema)
def stats(engine: VideoEngine = Depends(get_engine)) -> StatsSchema:
    """Return high-level detection statistics for the latest frame."""

    summary = engine.latest_summary()
    if summary is None:
        return StatsSchema(stream_fps=engine.stream_fps(), error=engine.last_error)

    detection = summary.detection
    return StatsSchema(
        pose_detected=bool(detection.pose and detection.pose.landmarks),
        num_objects=len(detection.objects or []),
        num_faces=len(detection.face_meshes or []),
        num_persons=len(detection.persons or []),
        classification=list(detection.classification or []),
        fps=summary.fps,
        stream_fps=engine.stream_fps(),
        latency=summary.latency,
        error=engine.last_error,
    )
