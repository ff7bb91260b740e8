"""
System prompt construction for project-scoped agent sessions
"""
from __future__ import annotations

import os
from typing import List, Optional

from ..provider_ir import ToolDefinition


CAPABILITIES = [
    "Read, write, create, delete, and move files",
    "Execute shell commands (npm, pip, git, docker, etc.)",
    "Search the web for documentation and solutions",
    "Install packages with common package managers",
    "Deploy applications (docker, systemd, pm2, nginx, or a custom command)",
    "Manage environment variables and background processes",
    "Inspect the system (disk space, memory, installed runtimes)",
]

GUIDELINES = [
    "When asked to build something, do it completely. Execute rather than only explain.",
    "Use get_system_info to learn what is available before relying on a runtime.",
    "If something fails, read the error and try an alternative approach.",
    "After making changes, verify them by reading files or running tests.",
    "Briefly describe what you are doing as you work.",
    "Create parent directories before writing nested files, and check files exist before reading them.",
]


def build_system_prompt(
    project_name: str,
    project_dir: str,
    tools: Optional[List[ToolDefinition]] = None,
) -> str:
    """Render the permanent first turn of every session for one project."""
    root = os.path.abspath(project_dir)
    lines: List[str] = [
        "You are an expert AI coding assistant with access to one project's file system and shell.",
        "",
        "## Current Project",
        f"- **Project Name**: {project_name}",
        f"- **Working Directory**: {root}",
        "",
        f"All relative paths resolve under {root}. Paths that leave this directory are rejected, "
        "and every shell command runs with this directory as its working directory.",
        "",
        "## Capabilities",
    ]
    lines.extend(f"- {item}" for item in CAPABILITIES)
    if tools:
        lines.append("")
        lines.append("## Tools")
        lines.extend(f"- `{tool.name}`: {tool.description}" for tool in tools)
    lines.append("")
    lines.append("## Guidelines")
    lines.extend(f"{idx}. {item}" for idx, item in enumerate(GUIDELINES, start=1))
    return "\n".join(lines)
