from __future__ import annotations

import json
from pathlib import Path

import pytest

from flow_tools.user_flow.config import DEFAULT_REPORT_MAX_CHARS, FlowConfig, load_config_json


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("FLOW_NAME", "FLOW_CONFIG_PATH", "FLOW_ARTIFACTS_DIR", "FLOW_REPORT_MAX_CHARS"):
        monkeypatch.delenv(key, raising=False)


def test_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    cfg = FlowConfig.from_env()

    assert cfg.name is None
    assert cfg.config is None
    assert cfg.report_max_chars == DEFAULT_REPORT_MAX_CHARS
    assert cfg.artifacts_dir == str(Path("~/.cache/user-flow/artifacts").expanduser())


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _clear_env(monkeypatch)
    config_path = tmp_path / "flow-config.json"
    config_path.write_text(json.dumps({"extends": "lighthouse:default", "settings": {"onlyCategories": ["performance"]}}), encoding="utf-8")

    monkeypatch.setenv("FLOW_NAME", "  Checkout  ")
    monkeypatch.setenv("FLOW_CONFIG_PATH", str(config_path))
    monkeypatch.setenv("FLOW_ARTIFACTS_DIR", str(tmp_path / "artifacts"))
    monkeypatch.setenv("FLOW_REPORT_MAX_CHARS", "4096")

    cfg = FlowConfig.from_env()
    assert cfg.name == "Checkout"
    assert cfg.config == {"extends": "lighthouse:default", "settings": {"onlyCategories": ["performance"]}}
    assert cfg.artifacts_dir == str(tmp_path / "artifacts")
    assert cfg.report_max_chars == 4096


@pytest.mark.parametrize(("raw", "expected"), [("lots", DEFAULT_REPORT_MAX_CHARS), ("-5", 0), ("0", 0)])
def test_report_max_chars_parsing(monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("FLOW_REPORT_MAX_CHARS", raw)
    assert FlowConfig.from_env().report_max_chars == expected


def test_config_file_must_be_an_object(tmp_path: Path) -> None:
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError, match="JSON object"):
        load_config_json(str(path))
