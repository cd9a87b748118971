"""Default flow report renderer (context-format Markdown, deterministic and bounded)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import DEFAULT_REPORT_MAX_CHARS
from .types import FlowResult


@dataclass(frozen=True)
class RenderBudget:
    max_chars: int = DEFAULT_REPORT_MAX_CHARS
    max_list_items: int = 8
    max_str_chars: int = 300


_PRIORITY_KEYS: tuple[str, ...] = (
    "finalDisplayedUrl",
    "requestedUrl",
    "gatherMode",
    "score",
    "fetchTime",
    "runtimeError",
)

# Keys rendered as an "id: score" summary.
_SCORED_SECTIONS: tuple[str, ...] = ("categories", "audits")


def render_flow_report(flow_result: FlowResult, *, max_chars: int = DEFAULT_REPORT_MAX_CHARS) -> str:
    """
    Render a flow result as one Markdown document, one section per step in order.

    `max_chars <= 0` disables the length cap.
    """
    budget = RenderBudget(max_chars=max_chars)
    lines: list[str] = [f"# {_format_scalar(flow_result.name, budget=budget)}", f"steps: {len(flow_result.steps)}"]
    for index, step in enumerate(flow_result.steps, start=1):
        lines.append("")
        lines.append(f"## {index}. {_format_scalar(step.name, budget=budget)}")
        _render_lhr(step.lhr, lines, budget=budget)

    content = "\n".join(lines).rstrip()
    out = f"[CONTENT]\n{content}\n"
    if budget.max_chars > 0 and len(out) > budget.max_chars:
        out = out[: budget.max_chars].rstrip() + "\n… <TRUNCATED>\n"
    return out


def _format_scalar(value: Any, *, budget: RenderBudget) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        s = value.replace("\r\n", "\n").replace("\r", "\n")
        if "\n" in s:
            s = s.split("\n", 1)[0] + " …"
        if len(s) > budget.max_str_chars:
            s = s[: budget.max_str_chars].rstrip() + "…"
        return s
    return str(value)


def _sorted_keys(d: dict[Any, Any]) -> list[Any]:
    def key_rank(k: Any) -> tuple[int, str]:
        if isinstance(k, str) and k in _PRIORITY_KEYS:
            return (_PRIORITY_KEYS.index(k), k)
        return (len(_PRIORITY_KEYS), str(k))

    return sorted(d.keys(), key=key_rank)


def _scored_items(section: Any) -> list[tuple[str, Any]]:
    """Normalize `{id: {score}}` and `[{id, score}]` shapes to (id, score) pairs."""
    items: list[tuple[str, Any]] = []
    if isinstance(section, dict):
        for key in sorted(section.keys(), key=str):
            entry = section[key]
            items.append((str(key), entry.get("score") if isinstance(entry, dict) else entry))
    elif isinstance(section, list):
        for entry in section:
            if isinstance(entry, dict) and entry.get("id") is not None:
                items.append((str(entry["id"]), entry.get("score")))
    return items


def _render_lhr(lhr: Any, lines: list[str], *, budget: RenderBudget) -> None:
    if not isinstance(lhr, dict):
        lines.append(f"result: {_format_scalar(lhr, budget=budget)}")
        return

    nested: list[Any] = []
    for key in _sorted_keys(lhr):
        value = lhr[key]
        if isinstance(value, (dict, list)):
            nested.append(key)
            continue
        lines.append(f"{key}: {_format_scalar(value, budget=budget)}")

    for key in nested:
        value = lhr[key]
        if key in _SCORED_SECTIONS:
            items = _scored_items(value)
            lines.append(f"{key}: [len={len(items)}]")
            for item_id, score in items[: budget.max_list_items]:
                lines.append(f"  - {item_id}: {_format_scalar(score, budget=budget)}")
            if len(items) > budget.max_list_items:
                lines.append(f"  … +{len(items) - budget.max_list_items} more")
        elif isinstance(value, list):
            lines.append(f"{key}: [len={len(value)}]")
        else:
            lines.append(f"{key}: {{keys={len(value)}}}")
