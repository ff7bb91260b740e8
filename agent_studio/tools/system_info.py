"""
Best-effort host summary for get_system_info.
"""
from __future__ import annotations

import os
import platform
import shutil
import socket
from typing import List, Optional, Tuple

from .shell import ShellRunner


RUNTIME_PROBES: List[Tuple[str, str]] = [
    ("Node.js", "node --version"),
    ("npm", "npm --version"),
    ("Python", "python3 --version || python --version"),
    ("pip", "pip3 --version || pip --version"),
    ("Go", "go version"),
    ("Rust/Cargo", "cargo --version"),
    ("Docker", "docker --version"),
    ("Git", "git --version"),
]
PROBE_TIMEOUT_MS = 5000

_GB = 1024 ** 3


def _memory() -> Optional[Tuple[float, float]]:
    try:
        page = os.sysconf("SC_PAGE_SIZE")
        total = os.sysconf("SC_PHYS_PAGES") * page
        free = os.sysconf("SC_AVPHYS_PAGES") * page
    except (ValueError, OSError, AttributeError):
        return None
    return (total - free) / _GB, total / _GB


def _cpu_model() -> str:
    try:
        with open("/proc/cpuinfo", "r", encoding="utf-8") as f:
            for line in f:
                if line.lower().startswith("model name"):
                    return line.split(":", 1)[1].strip()
    except OSError:
        pass
    return platform.processor() or "Unknown"


def probe_runtime(runner: ShellRunner, command: str) -> Optional[str]:
    result = runner.run(command, PROBE_TIMEOUT_MS)
    if result.timed_out or result.exit_code != 0:
        return None
    first = result.combined_output().strip().splitlines()
    return first[0] if first else None


def collect_system_info(runner: ShellRunner, project_dir: str) -> str:
    info: List[str] = [
        f"OS: {platform.system()} {platform.release()} ({platform.machine()})",
        f"Hostname: {socket.gethostname()}",
        f"Platform: {platform.platform()}",
    ]

    memory = _memory()
    if memory is not None:
        info.append(f"Memory: {memory[0]:.1f}GB / {memory[1]:.1f}GB")

    try:
        usage = shutil.disk_usage(project_dir)
        pct = (usage.used / usage.total * 100) if usage.total else 0.0
        info.append(f"Disk: {usage.used / _GB:.1f}GB used / {usage.total / _GB:.1f}GB total ({pct:.0f}% used)")
    except OSError:
        info.append("Disk: Unable to determine")

    info.append(f"CPUs: {os.cpu_count() or 0} x {_cpu_model()}")

    info.append("\nInstalled Runtimes:")
    for name, command in RUNTIME_PROBES:
        version = probe_runtime(runner, command)
        if version:
            info.append(f"  {name}: {version}")

    info.append(f"\nProject Directory: {project_dir}")
    return "\n".join(info)
