"""
Settings: built-in defaults, deep-merged with an optional YAML file and
AGENT_STUDIO_* environment overrides.
"""
from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml


DEFAULTS: Dict[str, Any] = {
    "storage": {"root": "data"},
    "agent": {
        "max_iterations": 10,
        "max_tokens": 4096,
        "temperature": 0.7,
    },
    "tools": {
        "shell_timeout_ms": 30000,
        "install_timeout_ms": 120000,
        "deploy_build_timeout_ms": 300000,
        "max_output_bytes": 10 * 1024 * 1024,
        "max_background_processes": 16,
        "list_limit": 1000,
        "web_search_timeout_s": 15.0,
    },
    "providers": {
        "openai": {"base_url": None},
        "anthropic": {"base_url": None},
        "google": {"base_url": None},
    },
    "logging": {
        "enabled": False,
        "root_dir": "logging",
        "redact": True,
        "retention": {"max_runs": 0},
    },
    "channel": {"serialize_per_project": True},
}

# env var -> (dotted path, type)
ENV_OVERRIDES = {
    "AGENT_STUDIO_STORAGE_ROOT": ("storage.root", str),
    "AGENT_STUDIO_MAX_ITERATIONS": ("agent.max_iterations", int),
    "AGENT_STUDIO_MAX_TOKENS": ("agent.max_tokens", int),
    "AGENT_STUDIO_TEMPERATURE": ("agent.temperature", float),
    "AGENT_STUDIO_SHELL_TIMEOUT_MS": ("tools.shell_timeout_ms", int),
    "AGENT_STUDIO_MAX_BACKGROUND": ("tools.max_background_processes", int),
    "AGENT_STUDIO_LOG_DIR": ("logging.root_dir", str),
}


def _load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file must contain a mapping: {path}")
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two dicts recursively. Lists/tuples are replaced, not merged.
    Scalars replace.
    """
    out: Dict[str, Any] = dict(base)
    for k, v in (override or {}).items():
        if k not in out:
            out[k] = v
            continue
        if isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _set_dotted(doc: Dict[str, Any], dotted: str, value: Any) -> None:
    node = doc
    parts = dotted.split(".")
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def get_setting(doc: Mapping[str, Any], dotted: str, default: Any = None) -> Any:
    node: Any = doc
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def load_settings(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Defaults <- YAML file <- explicit overrides <- environment."""
    merged = copy.deepcopy(DEFAULTS)
    if path:
        merged = _deep_merge(merged, _load_yaml(path))
    if overrides:
        merged = _deep_merge(merged, overrides)
    env = os.environ if environ is None else environ
    for name, (dotted, cast) in ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw in (None, ""):
            continue
        try:
            _set_dotted(merged, dotted, cast(raw))
        except ValueError as exc:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from exc
    return merged


@dataclass
class ToolSettings:
    shell_timeout_ms: int = 30000
    install_timeout_ms: int = 120000
    deploy_build_timeout_ms: int = 300000
    max_output_bytes: int = 10 * 1024 * 1024
    max_background_processes: int = 16
    list_limit: int = 1000
    web_search_timeout_s: float = 15.0

    @classmethod
    def from_settings(cls, doc: Optional[Mapping[str, Any]]) -> "ToolSettings":
        tools = dict(get_setting(doc or {}, "tools", {}) or {})
        known = {k: tools[k] for k in cls.__dataclass_fields__ if k in tools}
        return cls(**known)
