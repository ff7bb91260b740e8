from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

from ..provider_ir import AgentEvent, Turn


logger = logging.getLogger(__name__)

SECRET_KEYS = {"api_key", "apikey", "credential", "authorization", "x-api-key", "x-goog-api-key", "token", "password"}
REDACTED = "***REDACTED***"


class RunLogger:
    """Per-run structured transcript: directory creation, redaction, retention.

    Usage:
      rl = RunLogger(settings)
      run_dir = rl.start_run(chat_id)
      rl.write_meta({ ... })
      rl.log_turn(turn)
      rl.log_event(event)
    """

    def __init__(self, config: Dict[str, Any] | None = None) -> None:
        self.config = config or {}
        log_cfg = (self.config.get("logging") or {})
        self.enabled = bool(log_cfg.get("enabled", True))
        self.root_dir = Path((log_cfg.get("root_dir") or "logging")).resolve()
        self.redact_enabled = bool(log_cfg.get("redact", True))
        self.retention_max_runs = int((log_cfg.get("retention") or {}).get("max_runs", 0) or 0)
        self.run_dir: Optional[Path] = None

    def _now_ts(self) -> str:
        return _dt.datetime.now(_dt.timezone.utc).strftime("%Y%m%d-%H%M%S-%f")

    def _redact(self, data: Any) -> Any:
        if not self.redact_enabled:
            return data

        def _rec(obj):
            if isinstance(obj, dict):
                out = {}
                for k, v in obj.items():
                    if str(k).lower() in SECRET_KEYS:
                        out[k] = REDACTED
                    else:
                        out[k] = _rec(v)
                return out
            if isinstance(obj, list):
                return [_rec(x) for x in obj]
            return obj

        return _rec(data)

    def start_run(self, session_id: str) -> str:
        if not self.enabled:
            self.run_dir = None
            return ""
        ts = self._now_ts()
        # Normalize session id to avoid path separators
        sid_raw = str(session_id or "session")
        sid_clean = sid_raw.replace(os.sep, "_").replace("/", "_").replace("\\", "_").strip("._")
        sid = (sid_clean or "session")[:32]
        run_dir = self.root_dir / f"{ts}_{sid}"
        run_dir.mkdir(parents=True, exist_ok=True)
        self.run_dir = run_dir
        self.write_json("meta.json", {
            "run_dir": str(run_dir),
            "created_utc": ts,
            "session_id": session_id,
        })
        self._prune()
        return str(run_dir)

    def _prune(self) -> None:
        if self.retention_max_runs <= 0 or not self.root_dir.exists():
            return
        subdirs = [p for p in self.root_dir.iterdir() if p.is_dir() and p != self.run_dir]
        subdirs.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        for old in subdirs[max(self.retention_max_runs - 1, 0):]:
            shutil.rmtree(old, ignore_errors=True)

    def _path(self, rel_path: str) -> Optional[Path]:
        if not self.run_dir:
            return None
        path = self.run_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def write_json(self, rel_path: str, data: Any) -> str:
        path = self._path(rel_path)
        if path is None:
            return ""
        try:
            path.write_text(json.dumps(self._redact(data), indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Run log write failed for %s: %s", path, exc)
            return ""
        return str(path)

    def append_jsonl(self, rel_path: str, record: Dict[str, Any]) -> str:
        path = self._path(rel_path)
        if path is None:
            return ""
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(self._redact(record)) + "\n")
        except OSError as exc:
            logger.warning("Run log append failed for %s: %s", path, exc)
            return ""
        return str(path)

    def write_meta(self, meta: Dict[str, Any]) -> str:
        current: Dict[str, Any] = {}
        if self.run_dir and (self.run_dir / "meta.json").exists():
            try:
                current = json.loads((self.run_dir / "meta.json").read_text(encoding="utf-8"))
            except (OSError, ValueError):
                current = {}
        current.update(meta)
        return self.write_json("meta.json", current)

    def log_event(self, event: AgentEvent) -> str:
        return self.append_jsonl("events.jsonl", event.to_dict())

    def log_turn(self, turn: Turn) -> str:
        return self.append_jsonl("turns.jsonl", turn.to_dict())
