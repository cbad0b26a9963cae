"""Configuration helpers and defaults (YAML + CLI overrides)."""

from __future__ import annotations

import copy
import os
import sys
from pathlib import Path
from typing import Any, Iterable, Optional

import cv2
import yaml

from .settings import DetectionSettings


def _default_config() -> dict:
    return {
        "opencv": {
            # 0 restores OpenCV's own default; "auto" uses every core.
            "num_threads": 1,
            "use_optimized": True,
            "disable_opencl": True,
        },
        "sensor": {
            "source": "realsense",
            "width": 640,
            "height": 480,
            "fps": 30,
            "color": True,
            "color_order": "bgr",
        },
        "detection": DetectionSettings().to_dict(),
        "render": {
            "pixel_format": "rgba",
        },
        "worker": {
            "image_queue_size": 2,
            "image_put_timeout_s": 0.05,
            "stop_timeout_s": 1.0,
        },
        "log": {
            "enabled": False,
            "path": "",
        },
    }


def _deep_update(dst: dict, src: dict) -> dict:
    for k, v in (src or {}).items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def _load_yaml_config(path: Optional[str]) -> dict:
    if not path:
        return {}
    if not os.path.exists(str(path)):
        return {}
    try:
        with open(str(path), "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"top level must be a mapping, got {type(data).__name__}")
        return dict(data)
    except Exception as exc:
        raise RuntimeError(f"Failed to parse YAML config: {path} ({type(exc).__name__}: {exc})") from exc


def _parse_override(item: str) -> tuple[list[str], Any]:
    if "=" not in str(item):
        raise ValueError(f"Bad override '{item}'. Expected dotted.key=value")
    key, raw = str(item).split("=", 1)
    parts = [p for p in key.strip().split(".") if p]
    if not parts:
        raise ValueError(f"Bad override '{item}'. Empty key")
    try:
        value = yaml.safe_load(raw) if raw.strip() else ""
    except yaml.YAMLError:
        value = raw
    return parts, value


def apply_overrides(cfg: dict, overrides: Optional[Iterable[str]]) -> dict:
    """Apply `a.b.c=value` overrides in place; values are parsed as YAML scalars."""
    for item in overrides or ():
        parts, value = _parse_override(item)
        node = cfg
        for p in parts[:-1]:
            nxt = node.get(p)
            if not isinstance(nxt, dict):
                nxt = {}
                node[p] = nxt
            node = nxt
        node[parts[-1]] = value
    return cfg


def load_config(path: Optional[str] = None, overrides: Optional[Iterable[str]] = None) -> dict:
    cfg = _default_config()
    _deep_update(cfg, _load_yaml_config(path))
    apply_overrides(cfg, overrides)
    return cfg


def settings_from_config(cfg: dict) -> DetectionSettings:
    return DetectionSettings.from_dict(dict((cfg or {}).get("detection") or {}))


def _write_text_atomic(path: Path, text: str, *, encoding: str = "utf-8") -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(str(text), encoding=str(encoding))
    os.replace(str(tmp), str(path))


def save_settings_yaml(path: str, settings: DetectionSettings, *, cfg: Optional[dict] = None) -> None:
    """Write `settings` as the `detection:` section of `path`.

    Other sections are taken from `cfg` when given, otherwise from the file
    already at `path` (if any), so a tuning session only rewrites detection.
    """
    base = copy.deepcopy(cfg) if cfg is not None else _load_yaml_config(path)
    base["detection"] = settings.to_dict()
    text = yaml.safe_dump(base, sort_keys=False, default_flow_style=False)
    _write_text_atomic(Path(path), text, encoding="utf-8")


def load_settings_yaml(path: str) -> DetectionSettings:
    return settings_from_config(_load_yaml_config(path))


def set_cv_threads(cfg: Optional[dict], *, print_fn=None) -> None:
    opencv_cfg = dict((cfg or {}).get("opencv") or {})
    n_threads = opencv_cfg.get("num_threads", 1)
    if isinstance(n_threads, str):
        s = n_threads.strip().lower()
        if s in ("auto", "-1"):
            n_threads = int(os.cpu_count() or 1)
        elif s in ("default", "opencv_default", ""):
            n_threads = 0
        else:
            n_threads = int(float(s))
    n = max(0, int(n_threads))

    cv2.setNumThreads(n)
    cv2.setUseOptimized(bool(opencv_cfg.get("use_optimized", True)))
    if bool(opencv_cfg.get("disable_opencl", True)):
        cv2.ocl.setUseOpenCL(False)

    if print_fn is not None:
        print_fn(
            f"[config] opencv threads_req={n} threads_get={int(cv2.getNumThreads())} "
            f"opt={int(bool(cv2.useOptimized()))} opencl={int(bool(cv2.ocl.useOpenCL()))}",
            flush=True,
        )


class _Tee:
    def __init__(self, *streams) -> None:
        self.streams = streams

    def write(self, data: str) -> int:
        for s in self.streams:
            s.write(data)
        return len(data)

    def flush(self) -> None:
        for s in self.streams:
            s.flush()


def setup_stdio_logging(log_spec: Optional[dict]) -> Optional[str]:
    """Tee stdout/stderr into `log_spec['path']` when `log_spec['enabled']`.

    Returns the log path in use, or None when logging stays on the console.
    """
    opts = dict(log_spec or {})
    if not bool(opts.get("enabled", False)):
        return None
    path = str(opts.get("path", "") or "").strip()
    if not path:
        return None
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    f = open(path, "a", encoding="utf-8", buffering=1)
    sys.stdout = _Tee(sys.__stdout__, f)  # type: ignore[assignment]
    sys.stderr = _Tee(sys.__stderr__, f)  # type: ignore[assignment]
    return path
