"""
Project environment variables: session overlay plus a persisted `.env` file.
"""
from __future__ import annotations

import logging
import os
import re
from typing import Dict, Optional

from dotenv import dotenv_values, set_key

from ..error_handling.errors import InvalidArgumentsError


logger = logging.getLogger(__name__)

ENV_FILENAME = ".env"
_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_key(key: str) -> str:
    key = (key or "").strip()
    if not _KEY_RE.match(key):
        raise InvalidArgumentsError(f"Invalid environment variable name: {key!r}")
    return key


class ProjectEnvFile:
    """Upserts `KEY=value` lines into `<project>/.env`"""

    def __init__(self, project_dir: str, filename: str = ENV_FILENAME):
        self.path = os.path.join(project_dir, filename)

    def read(self) -> Dict[str, Optional[str]]:
        if not os.path.exists(self.path):
            return {}
        return dict(dotenv_values(self.path))

    def upsert(self, key: str, value: str) -> None:
        key = validate_key(key)
        if not os.path.exists(self.path):
            open(self.path, "a", encoding="utf-8").close()
        # replaces the existing line for `key` or appends one
        set_key(self.path, key, value, quote_mode="never")
        logger.info("Persisted %s to %s", key, self.path)


def set_env_variable(
    overlay: Dict[str, str],
    env_file: ProjectEnvFile,
    key: str,
    value: str,
    persist: bool = True,
) -> str:
    key = validate_key(key)
    overlay[key] = str(value)
    if persist:
        env_file.upsert(key, str(value))
        return f"Set {key} and saved to .env"
    return f"Set {key} (session only)"
