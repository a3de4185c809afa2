"""EditorConfig - tunables of the editor core.

Plain dataclass so the core stays Qt-free. The Qt front end loads and
stores it through nodeflow.editor.settings.EditorSettings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional, Tuple

DEFAULT_SERVER_URL = "http://127.0.0.1:8787"

ENV_SERVER_URL = "NODEFLOW_SERVER_URL"
ENV_STORAGE_DIR = "NODEFLOW_STORAGE_DIR"


@dataclass
class EditorConfig:
    min_scale: float = 0.25
    max_scale: float = 3.0
    zoom_step: float = 1.1
    hit_stroke_width: float = 6.0
    handle_radius: float = 6.0
    placement_step: float = 20.0
    placement_origin: Tuple[float, float] = (20.0, 20.0)
    server_url: str = DEFAULT_SERVER_URL
    request_timeout: float = 30.0
    autosave: bool = True
    storage_dir: Optional[str] = None

    def __post_init__(self):
        if self.min_scale <= 0 or self.min_scale > self.max_scale:
            raise ValueError(
                f"min_scale ({self.min_scale}) must be positive and not exceed max_scale ({self.max_scale})"
            )
        if self.zoom_step <= 1.0:
            raise ValueError("zoom_step must be greater than 1")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EditorConfig":
        """Build from a loose mapping (QSettings, JSON). Unknown keys are ignored."""
        kwargs = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            kwargs[f.name] = _coerce(f.name, data[f.name], getattr(cls, f.name, None))
        return cls(**kwargs)

    @classmethod
    def from_env(cls, base: Optional["EditorConfig"] = None) -> "EditorConfig":
        config = base or cls()
        overrides = {}
        if os.environ.get(ENV_SERVER_URL):
            overrides["server_url"] = os.environ[ENV_SERVER_URL]
        if os.environ.get(ENV_STORAGE_DIR):
            overrides["storage_dir"] = os.environ[ENV_STORAGE_DIR]
        return replace(config, **overrides) if overrides else config

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(name: str, value: Any, default: Any) -> Any:
    if name == "placement_origin":
        x, y = value
        return (float(x), float(y))
    if name == "storage_dir":
        return str(value) if value else None
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)
    if isinstance(default, float):
        return float(value)
    return str(value)
