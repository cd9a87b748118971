"""On-disk store for flow payloads (gather artifacts, flow results, rendered reports).

Each entry is a content file plus `<id>.meta.json`. Saved flow artifacts can be loaded
back and re-audited with `audit_gather_steps`; their runner options are rebuilt then.
"""

from __future__ import annotations

import itertools
import json
import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .types import FlowArtifacts, FlowResult

logger = logging.getLogger("flow.user_flow.artifacts")

_ID_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]{0,127}$")

KIND_FLOW_ARTIFACTS = "flow_artifacts"
KIND_FLOW_RESULT = "flow_result"
KIND_REPORT = "flow_report"

_counter = itertools.count()


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _make_id(prefix: str) -> str:
    suffix = f"{int(time.time() * 1000)}_{os.getpid()}_{next(_counter)}"
    safe_prefix = re.sub(r"[^a-zA-Z0-9_-]+", "_", (prefix or "artifact")).strip("_") or "artifact"
    return f"{safe_prefix}_{suffix}"[:128]


@dataclass(frozen=True)
class ArtifactRef:
    id: str
    kind: str
    mime_type: str
    bytes: int
    created_at: str
    path: str


class FlowArtifactStore:
    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _validate_id(self, artifact_id: str) -> str:
        if not isinstance(artifact_id, str):
            raise ValueError("artifact id must be a string")
        if not _ID_RE.match(artifact_id):
            raise ValueError("invalid artifact id")
        return artifact_id

    def _meta_path(self, artifact_id: str) -> Path:
        return self.base_dir / f"{artifact_id}.meta.json"

    def _content_path(self, artifact_id: str, ext: str) -> Path:
        ext = ext if ext.startswith(".") else f".{ext}"
        return self.base_dir / f"{artifact_id}{ext}"

    def _put(
        self,
        *,
        kind: str,
        text: str,
        mime_type: str,
        ext: str,
        metadata: dict[str, Any] | None = None,
    ) -> ArtifactRef:
        artifact_id = self._validate_id(_make_id(kind))
        content_path = self._content_path(artifact_id, ext)
        content_path.write_text(text, encoding="utf-8")
        size = content_path.stat().st_size

        meta = {
            "id": artifact_id,
            "kind": kind,
            "mimeType": mime_type,
            "ext": ext,
            "bytes": size,
            "createdAt": _now_iso(),
            **({"meta": metadata} if metadata else {}),
        }
        self._meta_path(artifact_id).write_text(json.dumps(meta, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("artifact_saved id=%s kind=%s bytes=%d", artifact_id, kind, size)

        return ArtifactRef(
            id=artifact_id,
            kind=kind,
            mime_type=mime_type,
            bytes=int(size),
            created_at=str(meta["createdAt"]),
            path=str(content_path),
        )

    def _put_json(self, *, kind: str, obj: Any, metadata: dict[str, Any] | None = None) -> ArtifactRef:
        return self._put(
            kind=kind,
            text=json.dumps(obj, ensure_ascii=False, indent=2),
            mime_type="application/json",
            ext=".json",
            metadata=metadata,
        )

    def _get_json(self, artifact_id: str, *, kind: str) -> Any:
        meta = self.get_meta(artifact_id=artifact_id)
        if meta.get("kind") != kind:
            raise ValueError(f"artifact {artifact_id} is a {meta.get('kind')!r}, expected {kind!r}")
        return json.loads(self.get_text(artifact_id=artifact_id))

    def put_flow_artifacts(self, flow_artifacts: FlowArtifacts) -> ArtifactRef:
        return self._put_json(
            kind=KIND_FLOW_ARTIFACTS,
            obj=flow_artifacts.to_dict(),
            metadata={"steps": len(flow_artifacts.gather_steps), **({"name": flow_artifacts.name} if flow_artifacts.name else {})},
        )

    def get_flow_artifacts(self, artifact_id: str) -> FlowArtifacts:
        return FlowArtifacts.from_dict(self._get_json(artifact_id, kind=KIND_FLOW_ARTIFACTS))

    def put_flow_result(self, flow_result: FlowResult) -> ArtifactRef:
        return self._put_json(
            kind=KIND_FLOW_RESULT,
            obj=flow_result.to_dict(),
            metadata={"steps": len(flow_result.steps), "name": flow_result.name},
        )

    def get_flow_result(self, artifact_id: str) -> FlowResult:
        return FlowResult.from_dict(self._get_json(artifact_id, kind=KIND_FLOW_RESULT))

    def put_report(self, text: str, *, metadata: dict[str, Any] | None = None) -> ArtifactRef:
        return self._put(kind=KIND_REPORT, text=text, mime_type="text/markdown", ext=".md", metadata=metadata)

    def get_meta(self, *, artifact_id: str) -> dict[str, Any]:
        artifact_id = self._validate_id(artifact_id)
        meta_path = self._meta_path(artifact_id)
        if not meta_path.exists():
            raise FileNotFoundError("artifact not found")
        meta = json.loads(meta_path.read_text(encoding="utf-8"))
        if not isinstance(meta, dict):
            raise ValueError("invalid artifact metadata")
        return meta

    def get_text(self, *, artifact_id: str) -> str:
        meta = self.get_meta(artifact_id=artifact_id)
        content_path = self._content_path(str(meta["id"]), str(meta.get("ext") or ".txt"))
        if not content_path.exists():
            raise FileNotFoundError("artifact content not found")
        return content_path.read_text(encoding="utf-8")

    def list(self, *, limit: int = 20, kind: str | None = None) -> list[dict[str, Any]]:
        limit = max(0, min(int(limit), 200))
        out: list[tuple[float, str, dict[str, Any]]] = []

        for meta_path in sorted(self.base_dir.glob("*.meta.json")):
            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                continue
            if not isinstance(meta, dict):
                continue
            if kind and str(meta.get("kind") or "") != str(kind):
                continue

            out.append(
                (
                    meta_path.stat().st_mtime,
                    str(meta.get("id") or ""),
                    {
                        "id": meta.get("id"),
                        "kind": meta.get("kind"),
                        "mimeType": meta.get("mimeType"),
                        "bytes": meta.get("bytes"),
                        "createdAt": meta.get("createdAt"),
                        **({"meta": meta.get("meta")} if "meta" in meta else {}),
                    },
                )
            )

        out.sort(key=lambda t: (t[0], t[1]), reverse=True)
        return [item for _mtime, _id, item in out[:limit]]

    def delete(self, *, artifact_id: str) -> bool:
        meta = self.get_meta(artifact_id=artifact_id)
        content_path = self._content_path(str(meta["id"]), str(meta.get("ext") or ".txt"))
        meta_path = self._meta_path(str(meta["id"]))

        ok = True
        for path in (content_path, meta_path):
            try:
                path.unlink(missing_ok=True)
            except OSError:
                ok = False
        return ok
