from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

import cv2
import numpy as np

from tile_occupancy.config import (
    load_config,
    save_settings_yaml,
    set_cv_threads,
    settings_from_config,
    setup_stdio_logging,
)
from tile_occupancy.frames import FrameSource
from tile_occupancy.grid import OccupancyGrid
from tile_occupancy.pipeline import DetectionPipeline
from tile_occupancy.render import DiagnosticRenderer
from tile_occupancy.settings import DEPTH_MAX, next_diagnostic_mode
from tile_occupancy.worker import DetectionWorker, DiagnosticImageQueue

BAND_STEP_MM = 50

HELP = (
    "keys: m=next view  [/]=min depth -/+  {/}=max depth -/+  s=save  q/esc=quit"
)


def _import_realsense() -> object:
    try:
        import pyrealsense2 as rs  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"pyrealsense2 is required: {exc}") from exc
    return rs


def _start_realsense(rs, *, width: int, height: int, fps: int, color: bool, deadline: float | None):
    while True:
        if deadline is not None and time.time() >= float(deadline):
            raise TimeoutError("Auto-exit deadline reached while starting RealSense.")
        pipe = rs.pipeline()
        cfg = rs.config()
        cfg.enable_stream(rs.stream.depth, int(width), int(height), rs.format.z16, int(fps))
        if color:
            cfg.enable_stream(rs.stream.color, int(width), int(height), rs.format.bgr8, int(fps))
        try:
            profile = pipe.start(cfg)
        except RuntimeError as exc:
            print(f"[realsense] start failed: {exc}", flush=True)
            try:
                pipe.stop()
            except Exception:
                pass
            time.sleep(1.0)
            continue
        try:
            dev = profile.get_device()
            serial = dev.get_info(rs.camera_info.serial_number)
            print(f"[realsense] serial={serial}", flush=True)
        except Exception as exc:
            print(f"[realsense] device info unavailable: {exc}", flush=True)
        align = rs.align(rs.stream.depth) if color else None
        return pipe, align


def _nudge_band(settings, *, d_min: int = 0, d_max: int = 0):
    lo = int(max(0, min(DEPTH_MAX, int(settings.min_depth) + int(d_min))))
    hi = int(max(0, min(DEPTH_MAX, int(settings.max_depth) + int(d_max))))
    return settings.with_changes(min_depth=lo, max_depth=hi)


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, default=str(PROJECT_ROOT / "config" / "floor_detect.yaml"))
    ap.add_argument("--set", action="append", default=[], help="Config override dotted.key=value (repeatable).")
    ap.add_argument("--save-to", type=str, default="", help="Where 's' writes settings (default: --config).")
    ap.add_argument("--no-view", action="store_true", help="Headless: print occupancy, no window.")
    ap.add_argument("--auto-exit-s", type=float, default=0.0, help="Auto-exit after N seconds (0 disables)")
    args = ap.parse_args()

    cfg = load_config(args.config, args.set)
    setup_stdio_logging(dict(cfg.get("log") or {}))
    set_cv_threads(cfg, print_fn=print)
    rs = _import_realsense()

    sensor = dict(cfg.get("sensor") or {})
    W = int(sensor.get("width", 640))
    H = int(sensor.get("height", 480))
    fps = int(sensor.get("fps", 30))
    use_color = bool(sensor.get("color", True))
    worker_cfg = dict(cfg.get("worker") or {})
    save_path = str(args.save_to or args.config)

    settings = settings_from_config(cfg)
    if bool(args.no_view):
        settings = settings.with_changes(diagnostic_mode="none")

    images = DiagnosticImageQueue(
        maxsize=int(worker_cfg.get("image_queue_size", 2)),
        put_timeout_s=float(worker_cfg.get("image_put_timeout_s", 0.05)),
    )
    last_occupied: list[list[tuple[int, int]]] = [[]]

    def _on_grid(grid: OccupancyGrid) -> None:
        occ = grid.occupied_cells()
        if occ != last_occupied[0]:
            print(f"[realsense] occupied={occ}", flush=True)
            last_occupied[0] = occ

    renderer = DiagnosticRenderer(
        pixel_format=str((cfg.get("render") or {}).get("pixel_format", "rgba")),
        color_order=str(sensor.get("color_order", "bgr")),
    )
    source = FrameSource()
    worker = DetectionWorker(
        source=source,
        settings=settings,
        on_occupancy=_on_grid,
        on_image=None if bool(args.no_view) else images,
        expected_size=(W, H),
        pipeline=DetectionPipeline(renderer=renderer),
    )

    auto_exit_s = float(args.auto_exit_s)
    deadline = float(time.time() + auto_exit_s) if auto_exit_s > 0 else None
    try:
        pipe, align = _start_realsense(rs, width=W, height=H, fps=fps, color=use_color, deadline=deadline)
    except TimeoutError as exc:
        print(f"[realsense] {exc}", flush=True)
        return 0

    worker.start()
    print(f"[realsense] Running {W}x{H}@{fps} color={int(use_color)}. {HELP}", flush=True)
    try:
        while True:
            if deadline is not None and time.time() >= float(deadline):
                print("[realsense] Auto-exit", flush=True)
                break
            try:
                frames = pipe.wait_for_frames(5000)
            except RuntimeError as exc:
                print(f"[realsense] wait failed: {exc}", flush=True)
                continue
            if align is not None:
                frames = align.process(frames)
            depth_f = frames.get_depth_frame()
            if not depth_f:
                continue
            depth = np.asanyarray(depth_f.get_data())
            color = None
            if use_color:
                color_f = frames.get_color_frame()
                if color_f:
                    color = np.asanyarray(color_f.get_data())
            source.publish(depth, color, ts_s=float(depth_f.get_timestamp()) * 1e-3)

            if bool(args.no_view):
                continue
            img = images.get_latest()
            if img is not None:
                cv2.imshow("floor", img.to_bgr())
            key = cv2.waitKey(1) & 0xFF
            if key in (ord("q"), 27):
                break
            current = worker.detection_settings()
            if key == ord("m"):
                nxt = next_diagnostic_mode(current.diagnostic_mode)
                worker.set_detection_settings(current.with_changes(diagnostic_mode=nxt))
                print(f"[realsense] view -> {nxt.value}", flush=True)
            elif key in (ord("["), ord("]"), ord("{"), ord("}")):
                step = {
                    ord("["): (-BAND_STEP_MM, 0),
                    ord("]"): (BAND_STEP_MM, 0),
                    ord("{"): (0, -BAND_STEP_MM),
                    ord("}"): (0, BAND_STEP_MM),
                }[key]
                new = _nudge_band(current, d_min=step[0], d_max=step[1])
                worker.set_detection_settings(new)
                print(f"[realsense] band {new.min_depth}..{new.max_depth} mm", flush=True)
            elif key == ord("s"):
                save_settings_yaml(save_path, current)
                print(f"[realsense] settings saved -> {save_path}", flush=True)
    except KeyboardInterrupt:
        print("[realsense] Interrupted", flush=True)
    finally:
        worker.stop(timeout_s=float(worker_cfg.get("stop_timeout_s", 1.0)))
        try:
            pipe.stop()
        except Exception as exc:
            print(f"[realsense] stop failed: {exc}", flush=True)
        if not bool(args.no_view):
            cv2.destroyAllWindows()
    print(f"[realsense] cycles={worker.get_cycle_count()} rejected={worker.rejected_count()}", flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
