from __future__ import annotations

import argparse
import json
import logging
from concurrent.futures import Future
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path

import cv2
import numpy as np

from dashcam.core.config.settings import load_settings
from dashcam.core.overlay.draw import OverlayOptions, draw_overlays
from dashcam.core.pipeline import DashcamProcessor

logger = logging.getLogger(__name__)


class _EmptyDetector:
    def process(self, frame):  # pragma: no cover - trivial
        fut: Future = Future()
        fut.set_result([])
        return fut

    def close(self):  # pragma: no cover - trivial
        pass


def _to_jsonable(obj):
    if is_dataclass(obj):
        return _to_jsonable(asdict(obj))
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, dict):
        return {str(k): _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(v) for v in obj]
    return obj


def _make_processor(args) -> DashcamProcessor:
    if args.mock:
        return DashcamProcessor(object_detector=_EmptyDetector(), movenet_detector=_EmptyDetector())

    from dashcam.api.services.engine import build_processor

    return build_processor(load_settings())


def run(args):
    cap = cv2.VideoCapture(args.input)
    if not cap.isOpened():
        raise SystemExit(f"Cannot open video {args.input}")

    processor = _make_processor(args)
    writer = None
    outputs = []
    try:
        while True:
            ok, frame = cap.read()
            if not ok:
                break
            if args.profile:
                summary, out_frame, timings = processor.process_with_profile(
                    frame, inference_stride=args.inference_stride
                )
                summary.profile = dict(timings)
            else:
                summary, out_frame = processor.process(frame, inference_stride=args.inference_stride)
            outputs.append(_to_jsonable(summary))

            if args.overlay_output:
                annotated = draw_overlays(out_frame, summary, OverlayOptions())
                if writer is None:
                    h, w = annotated.shape[:2]
                    fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0) or 30.0
                    Path(args.overlay_output).parent.mkdir(parents=True, exist_ok=True)
                    writer = cv2.VideoWriter(
                        args.overlay_output, cv2.VideoWriter_fourcc(*"mp4v"), fps, (w, h)
                    )
                writer.write(annotated)

            if args.max_frames and len(outputs) >= args.max_frames:
                break
    finally:
        cap.release()
        if writer is not None:
            writer.release()
        processor.stop()

    logger.info("Latency: %s", processor.latency_stats())
    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(outputs, f, indent=2)
    print(f"Wrote {len(outputs)} frame summaries to {out_path}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Run the dashcam vision pipelines on a video")
    parser.add_argument("--input", required=True, help="Path to video file")
    parser.add_argument("--output", required=True, help="Where to save JSON output")
    parser.add_argument(
        "--overlay-output", default=None, help="Optional path for an annotated .mp4 copy"
    )
    parser.add_argument(
        "--inference-stride", type=int, default=1, help="Run detectors every N frames"
    )
    parser.add_argument("--max-frames", type=int, default=0, help="Limit frames for quick tests")
    parser.add_argument("--profile", action="store_true", help="Record per-step timings")
    parser.add_argument(
        "--mock", action="store_true", help="Use empty detectors (no model download)"
    )
    run(parser.parse_args())
