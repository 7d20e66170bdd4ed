"""Overlay drawing helpers (OpenCV).

Every pipeline of a `CompoundDetection` gets its own drawing routine; colors are
BGR.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from dashcam.core.detectors import pose as lm
from dashcam.core.types import BodyPart, DetectedObject, FaceMesh, FrameSummary, Person, Pose

WHITE = (255, 255, 255)
LEFT_COLOR = (0, 255, 0)
RIGHT_COLOR = (0, 255, 255)
MOVENET_COLOR = (0, 0, 255)
MOVENET_TEXT_COLOR = (255, 0, 0)
FACE_COLOR = (255, 255, 255)
OBJECT_COLORS = [
    (255, 255, 255),
    (255, 0, 255),
    (0, 0, 0),
    (0, 255, 255),
    (255, 0, 0),
    (0, 0, 255),
    (0, 255, 0),
]

DOT_RADIUS = 4
STROKE_WIDTH = 3
FONT = cv2.FONT_HERSHEY_SIMPLEX

# MoveNet
MIN_CONFIDENCE = 0.2
CIRCLE_RADIUS = 6
LINE_WIDTH = 4
PERSON_ID_MARGIN = 6

MOVENET_BODY_JOINTS = [
    (BodyPart.NOSE, BodyPart.LEFT_EYE),
    (BodyPart.NOSE, BodyPart.RIGHT_EYE),
    (BodyPart.LEFT_EYE, BodyPart.LEFT_EAR),
    (BodyPart.RIGHT_EYE, BodyPart.RIGHT_EAR),
    (BodyPart.NOSE, BodyPart.LEFT_SHOULDER),
    (BodyPart.NOSE, BodyPart.RIGHT_SHOULDER),
    (BodyPart.LEFT_SHOULDER, BodyPart.LEFT_ELBOW),
    (BodyPart.LEFT_ELBOW, BodyPart.LEFT_WRIST),
    (BodyPart.RIGHT_SHOULDER, BodyPart.RIGHT_ELBOW),
    (BodyPart.RIGHT_ELBOW, BodyPart.RIGHT_WRIST),
    (BodyPart.LEFT_SHOULDER, BodyPart.RIGHT_SHOULDER),
    (BodyPart.LEFT_SHOULDER, BodyPart.LEFT_HIP),
    (BodyPart.RIGHT_SHOULDER, BodyPart.RIGHT_HIP),
    (BodyPart.LEFT_HIP, BodyPart.RIGHT_HIP),
    (BodyPart.LEFT_HIP, BodyPart.LEFT_KNEE),
    (BodyPart.LEFT_KNEE, BodyPart.LEFT_ANKLE),
    (BodyPart.RIGHT_HIP, BodyPart.RIGHT_KNEE),
    (BodyPart.RIGHT_KNEE, BodyPart.RIGHT_ANKLE),
]

POSE_CENTER_LINES = [
    (lm.LEFT_SHOULDER, lm.RIGHT_SHOULDER),
    (lm.LEFT_HIP, lm.RIGHT_HIP),
    (lm.NOSE, lm.LEFT_EYE_INNER),
    (lm.LEFT_EYE_INNER, lm.LEFT_EYE),
    (lm.LEFT_EYE, lm.LEFT_EYE_OUTER),
    (lm.LEFT_EYE_OUTER, lm.LEFT_EAR),
    (lm.NOSE, lm.RIGHT_EYE_INNER),
    (lm.RIGHT_EYE_INNER, lm.RIGHT_EYE),
    (lm.RIGHT_EYE, lm.RIGHT_EYE_OUTER),
    (lm.RIGHT_EYE_OUTER, lm.RIGHT_EAR),
    (lm.LEFT_MOUTH, lm.RIGHT_MOUTH),
]
POSE_LEFT_LINES = [
    (lm.LEFT_SHOULDER, lm.LEFT_ELBOW),
    (lm.LEFT_ELBOW, lm.LEFT_WRIST),
    (lm.LEFT_SHOULDER, lm.LEFT_HIP),
    (lm.LEFT_HIP, lm.LEFT_KNEE),
    (lm.LEFT_KNEE, lm.LEFT_ANKLE),
    (lm.LEFT_WRIST, lm.LEFT_THUMB),
    (lm.LEFT_WRIST, lm.LEFT_PINKY),
    (lm.LEFT_WRIST, lm.LEFT_INDEX),
    (lm.LEFT_INDEX, lm.LEFT_PINKY),
    (lm.LEFT_ANKLE, lm.LEFT_HEEL),
    (lm.LEFT_HEEL, lm.LEFT_FOOT_INDEX),
]
POSE_RIGHT_LINES = [
    (lm.RIGHT_SHOULDER, lm.RIGHT_ELBOW),
    (lm.RIGHT_ELBOW, lm.RIGHT_WRIST),
    (lm.RIGHT_SHOULDER, lm.RIGHT_HIP),
    (lm.RIGHT_HIP, lm.RIGHT_KNEE),
    (lm.RIGHT_KNEE, lm.RIGHT_ANKLE),
    (lm.RIGHT_WRIST, lm.RIGHT_THUMB),
    (lm.RIGHT_WRIST, lm.RIGHT_PINKY),
    (lm.RIGHT_WRIST, lm.RIGHT_INDEX),
    (lm.RIGHT_INDEX, lm.RIGHT_PINKY),
    (lm.RIGHT_ANKLE, lm.RIGHT_HEEL),
    (lm.RIGHT_HEEL, lm.RIGHT_FOOT_INDEX),
]


@dataclass
class OverlayOptions:
    show_in_frame_likelihood: bool = False
    visualize_z: bool = True
    rescale_z_for_visualization: bool = True


def _pt(x: float, y: float) -> tuple[int, int]:
    return int(round(x)), int(round(y))


def z_color(
    z: float,
    base: tuple[int, int, int],
    frame_width: int,
    z_range: tuple[float, float] | None,
) -> tuple[int, int, int]:
    """Tint `base` red for points closer than the hips and blue for farther ones.

    With `z_range` the tint is relative to the pose's own min/max z, otherwise
    relative to the frame width.
    """

    if z_range is not None:
        lower, upper = z_range[0] - 0.001, z_range[1] + 0.001
    else:
        lower, upper = -float(frame_width), float(frame_width)

    if z < 0:
        v = int(np.clip(z / lower * 255, 0, 255)) if lower < 0 else 0
        return (255 - v, 255 - v, 255) if v else base
    v = int(np.clip(z / upper * 255, 0, 255)) if upper > 0 else 0
    return (255, 255 - v, 255 - v) if v else base


def draw_pose(img: np.ndarray, pose: Pose, options: OverlayOptions) -> None:
    if not pose.landmarks:
        return

    z_range = None
    if options.visualize_z and options.rescale_z_for_visualization:
        zs = [p.z for p in pose.landmarks]
        z_range = (min(zs), max(zs))

    w = img.shape[1]
    for lines, color in (
        (POSE_CENTER_LINES, WHITE),
        (POSE_LEFT_LINES, LEFT_COLOR),
        (POSE_RIGHT_LINES, RIGHT_COLOR),
    ):
        for a, b in lines:
            start, end = pose.landmark(a), pose.landmark(b)
            if start is None or end is None:
                continue
            line_color = color
            if options.visualize_z:
                line_color = z_color((start.z + end.z) / 2.0, color, w, z_range)
            cv2.line(img, _pt(start.x, start.y), _pt(end.x, end.y), line_color, STROKE_WIDTH, cv2.LINE_AA)

    for p in pose.landmarks:
        dot_color = z_color(p.z, WHITE, w, z_range) if options.visualize_z else WHITE
        cv2.circle(img, _pt(p.x, p.y), DOT_RADIUS, dot_color, -1)
        if options.show_in_frame_likelihood:
            cv2.putText(
                img,
                f"{p.in_frame_likelihood:.2f}",
                _pt(p.x, p.y + 20),
                FONT,
                0.4,
                WHITE,
                1,
                cv2.LINE_AA,
            )


def draw_classification(img: np.ndarray, lines: list[str]) -> None:
    """Draw classification strings stacked above the bottom-left corner."""

    h = img.shape[0]
    line_h = 28
    for i, text in enumerate(lines):
        if not text:
            continue
        y = h - line_h * (len(lines) - i) + 8
        cv2.putText(img, text, (12, y), FONT, 0.8, WHITE, 2, cv2.LINE_AA)


def draw_objects(img: np.ndarray, objects: list[DetectedObject]) -> None:
    for obj in objects:
        color_id = (obj.tracking_id or 0) % len(OBJECT_COLORS)
        color = OBJECT_COLORS[color_id]
        x1, y1, x2, y2 = map(int, obj.bbox)
        cv2.rectangle(img, (x1, y1), (x2, y2), color, 2)

        lines = []
        if obj.tracking_id is not None:
            lines.append(f"Tracking ID: {obj.tracking_id}")
        for label in obj.labels:
            lines.append(f"{label.text} {label.confidence * 100:.2f}% (index: {label.index})")
        for i, text in enumerate(lines):
            y = max(y1 - 8 - 16 * (len(lines) - 1 - i), 12)
            cv2.putText(img, text, (x1, y), FONT, 0.5, color, 1, cv2.LINE_AA)


def draw_face_meshes(img: np.ndarray, meshes: list[FaceMesh]) -> None:
    for mesh in meshes:
        x1, y1, x2, y2 = map(int, mesh.bbox)
        cv2.rectangle(img, (x1, y1), (x2, y2), FACE_COLOR, 1)
        for x, y, _z in mesh.points:
            cv2.circle(img, _pt(x, y), 1, FACE_COLOR, -1)


def draw_movenet(img: np.ndarray, persons: list[Person]) -> None:
    """Draw MoveNet persons scoring above `MIN_CONFIDENCE`."""

    for person in persons:
        if person.score <= MIN_CONFIDENCE:
            continue

        if person.bbox is not None:
            bx1, by1, bx2, by2 = person.bbox
            left, right = min(bx1, bx2), max(bx1, bx2)
            cv2.rectangle(img, _pt(left, by1), _pt(right, by2), MOVENET_COLOR, LINE_WIDTH)
            text_x = max(0.0, left)
            text_y = max(0.0, by1)
            cv2.putText(
                img,
                f"Movenet:{person.id}",
                _pt(text_x, max(text_y - PERSON_ID_MARGIN, 12)),
                FONT,
                0.7,
                MOVENET_TEXT_COLOR,
                2,
                cv2.LINE_AA,
            )

        if len(person.keypoints) > max(BodyPart):
            for a, b in MOVENET_BODY_JOINTS:
                pa = person.keypoints[a].coordinate
                pb = person.keypoints[b].coordinate
                cv2.line(img, _pt(*pa), _pt(*pb), MOVENET_COLOR, LINE_WIDTH, cv2.LINE_AA)

        for kp in person.keypoints:
            cv2.circle(img, _pt(*kp.coordinate), CIRCLE_RADIUS, MOVENET_COLOR, -1)


def draw_overlays(
    frame: np.ndarray,
    summary: FrameSummary,
    options: OverlayOptions | None = None,
) -> np.ndarray:
    """Return a copy of `frame` with every available result drawn.

    Returns `frame` itself when there is nothing to draw.
    """

    det = summary.detection
    has_pose = det.pose is not None and bool(det.pose.landmarks)
    if not (has_pose or det.classification or det.objects or det.face_meshes or det.persons):
        return frame

    options = options or OverlayOptions()
    img = frame.copy()
    if det.objects:
        draw_objects(img, det.objects)
    if det.face_meshes:
        draw_face_meshes(img, det.face_meshes)
    if has_pose and det.pose is not None:
        draw_pose(img, det.pose, options)
    if det.classification:
        draw_classification(img, det.classification)
    if det.persons:
        draw_movenet(img, det.persons)
    return img
