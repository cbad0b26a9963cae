from __future__ import annotations

import argparse
import math
import sys
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

import numpy as np

from tile_occupancy.config import load_config, set_cv_threads, settings_from_config, setup_stdio_logging
from tile_occupancy.frames import FrameSource
from tile_occupancy.grid import OccupancyGrid
from tile_occupancy.pipeline import DetectionPipeline
from tile_occupancy.render import DiagnosticRenderer
from tile_occupancy.worker import DetectionWorker, DiagnosticImageQueue

FLOOR_MM = 2600
BODY_MM = 1100


def _make_floor(h: int, w: int, rng: np.random.Generator) -> np.ndarray:
    floor = np.full((h, w), FLOOR_MM, dtype=np.int32)
    floor += rng.integers(-30, 31, size=(h, w), dtype=np.int32)
    return floor


def _render_frame(
    floor: np.ndarray,
    rng: np.random.Generator,
    *,
    cx: float,
    cy: float,
    radius: float,
    dropout: float,
) -> np.ndarray:
    h, w = floor.shape
    depth = floor.copy()
    yy, xx = np.ogrid[:h, :w]
    body = (xx - cx) * (xx - cx) + (yy - cy) * (yy - cy) <= radius * radius
    depth[body] = BODY_MM + rng.integers(-40, 41, size=int(body.sum()), dtype=np.int32)
    if dropout > 0:
        holes = rng.random((h, w)) < float(dropout)
        depth[holes] = 0
    return np.clip(depth, 0, 65535).astype(np.uint16)


def _fmt_grid(grid: OccupancyGrid) -> str:
    rows = []
    for r in grid.logical():
        rows.append("".join("#" if v else "." for v in r))
    return "|".join(rows)


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, default=str(PROJECT_ROOT / "config" / "floor_detect.yaml"))
    ap.add_argument("--set", action="append", default=[], help="Config override dotted.key=value (repeatable).")
    ap.add_argument("--frames", type=int, default=300, help="Number of synthetic frames to feed.")
    ap.add_argument("--fps", type=float, default=30.0, help="Synthetic frame rate.")
    ap.add_argument("--seed", type=int, default=1, help="RNG seed for the synthetic scene.")
    ap.add_argument("--radius", type=float, default=45.0, help="Dancer footprint radius in pixels.")
    ap.add_argument("--dropout", type=float, default=0.01, help="Fraction of zero (no return) samples.")
    ap.add_argument("--show", action="store_true", help="Show the diagnostic image with OpenCV.")
    args = ap.parse_args()

    cfg = load_config(args.config, args.set)
    setup_stdio_logging(dict(cfg.get("log") or {}))
    set_cv_threads(cfg, print_fn=print)

    sensor = dict(cfg.get("sensor") or {})
    W = int(sensor.get("width", 640))
    H = int(sensor.get("height", 480))
    settings = settings_from_config(cfg)
    if not bool(args.show):
        settings = settings.with_changes(diagnostic_mode="none")

    worker_cfg = dict(cfg.get("worker") or {})
    images = DiagnosticImageQueue(
        maxsize=int(worker_cfg.get("image_queue_size", 2)),
        put_timeout_s=float(worker_cfg.get("image_put_timeout_s", 0.05)),
    )
    last_line: list[str] = [""]

    def _on_grid(grid: OccupancyGrid) -> None:
        line = _fmt_grid(grid)
        if line != last_line[0]:
            print(f"[synth] occupied={grid.occupied_cells()} grid={line}", flush=True)
            last_line[0] = line

    renderer = DiagnosticRenderer(
        pixel_format=str((cfg.get("render") or {}).get("pixel_format", "rgba")),
        color_order="rgb",
    )
    source = FrameSource()
    worker = DetectionWorker(
        source=source,
        settings=settings,
        on_occupancy=_on_grid,
        on_image=images if bool(args.show) else None,
        expected_size=(W, H),
        pipeline=DetectionPipeline(renderer=renderer),
    )
    worker.start()

    cv2 = None
    if bool(args.show):
        import cv2  # type: ignore

    rng = np.random.default_rng(int(args.seed))
    floor = _make_floor(H, W, rng)
    geom = settings.geometry()
    span_x = max(1.0, geom.cols * geom.cell_w)
    span_y = max(1.0, geom.rows * geom.cell_h)
    period = 1.0 / max(1e-3, float(args.fps))

    t0 = time.perf_counter()
    for i in range(int(args.frames)):
        theta = 2.0 * math.pi * (float(i) / max(1.0, float(args.frames)))
        # Lissajous walk over the tile field
        cx = geom.origin_x + 0.5 * span_x + 0.45 * span_x * math.sin(theta)
        cy = geom.origin_y + 0.5 * span_y + 0.45 * span_y * math.sin(2.0 * theta)
        depth = _render_frame(floor, rng, cx=cx, cy=cy, radius=float(args.radius), dropout=float(args.dropout))
        source.publish(depth, ts_s=float(i) * period)

        if cv2 is not None:
            img = images.get_latest()
            if img is not None:
                cv2.imshow("floor", img.to_bgr())
            if (cv2.waitKey(1) & 0xFF) in (ord("q"), 27):
                break
        time.sleep(period)

    worker.wait_for_cycle(1, timeout_s=1.0)
    worker.stop(timeout_s=float(worker_cfg.get("stop_timeout_s", 1.0)))
    if cv2 is not None:
        cv2.destroyAllWindows()
    dt = float(time.perf_counter() - t0)
    print(
        f"[synth] done frames={int(args.frames)} cycles={worker.get_cycle_count()} "
        f"rejected={worker.rejected_count()} dropped_images={images.dropped()} wall_s={dt:.2f}",
        flush=True,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
