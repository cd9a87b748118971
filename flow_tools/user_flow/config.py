from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_ARTIFACTS_DIR = "~/.cache/user-flow/artifacts"
DEFAULT_REPORT_MAX_CHARS = 20_000


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_int(raw: str | None, fallback: int) -> int:
    if raw is None:
        return fallback
    try:
        return int(raw)
    except Exception:
        return fallback


def load_config_json(path: str) -> dict[str, Any]:
    """Read a flow-level configuration file; the document must be a JSON object."""
    raw = Path(expand_path(path)).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Flow config must be a JSON object: {path}")
    return data


@dataclass
class FlowConfig:
    name: str | None = None
    config: dict[str, Any] | None = None
    artifacts_dir: str = field(default_factory=lambda: expand_path(DEFAULT_ARTIFACTS_DIR))
    report_max_chars: int = DEFAULT_REPORT_MAX_CHARS

    @classmethod
    def from_env(cls) -> FlowConfig:
        name = (os.environ.get("FLOW_NAME") or "").strip() or None
        config_path = (os.environ.get("FLOW_CONFIG_PATH") or "").strip()
        config = load_config_json(config_path) if config_path else None
        artifacts_dir = expand_path(os.environ.get("FLOW_ARTIFACTS_DIR", DEFAULT_ARTIFACTS_DIR))
        max_chars = _env_int(os.environ.get("FLOW_REPORT_MAX_CHARS"), DEFAULT_REPORT_MAX_CHARS)
        return cls(
            name=name,
            config=config,
            artifacts_dir=artifacts_dir,
            report_max_chars=max(0, max_chars),
        )
