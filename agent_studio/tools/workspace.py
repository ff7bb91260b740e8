"""
Project workspace: directory confinement and filesystem tools.

Every public method resolves its path arguments through `resolve` (or
`resolve_entry` when the tool acts on a link itself), so the confinement
check runs per call and per argument.
"""
from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Iterator, List, Optional

from ..error_handling.errors import PathTraversalError, ToolError


logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 1000


@dataclass
class DirectoryEntry:
    rel_path: str
    is_dir: bool
    size: int = 0
    link_target: Optional[str] = None


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


class ProjectWorkspace:
    """Filesystem operations confined to one project root"""

    def __init__(self, root: str, *, list_limit: int = DEFAULT_LIST_LIMIT):
        os.makedirs(root, exist_ok=True)
        self.root = os.path.realpath(root)
        self.list_limit = list_limit

    def is_within(self, full_path: str) -> bool:
        return full_path == self.root or full_path.startswith(self.root + os.sep)

    def resolve(self, rel: Optional[str]) -> str:
        """Resolve `rel` against the root, following symlinks, or raise PathTraversalError."""
        rel = rel if rel not in (None, "") else "."
        # os.path.join discards the root for absolute paths; realpath then decides.
        full = os.path.realpath(os.path.join(self.root, str(rel)))
        if not self.is_within(full):
            logger.warning("Rejected path outside %s: %s", self.root, rel)
            raise PathTraversalError(f"Path traversal not allowed: {rel}")
        return full

    def resolve_entry(self, rel: Optional[str]) -> str:
        """Like `resolve`, but the last component is not followed when it is a symlink."""
        head, tail = os.path.split(str(rel or "").rstrip("/"))
        if tail in ("", ".", ".."):
            return self.resolve(rel)
        return os.path.join(self.resolve(head or "."), tail)

    def _require_exists(self, full: str, rel: str) -> None:
        if not os.path.lexists(full):
            raise ToolError(f"No such file or directory: {rel}", "not_found")

    # --- file tools -----------------------------------------------------------
    def read_file(self, path: str) -> str:
        full = self.resolve(path)
        self._require_exists(full, path)
        if os.path.isdir(full):
            raise ToolError(f"Is a directory: {path}", "is_directory")
        try:
            with open(full, "r", encoding="utf-8") as f:
                return f.read()
        except UnicodeDecodeError as exc:
            raise ToolError(f"File is not valid UTF-8 text: {path}", "not_utf8") from exc

    def write_file(self, path: str, content: str) -> str:
        full = self.resolve(path)
        if os.path.isdir(full):
            raise ToolError(f"Is a directory: {path}", "is_directory")
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)
        return f"Successfully wrote {len(content)} characters to {path}"

    def create_directory(self, path: str) -> str:
        full = self.resolve(path)
        if os.path.isfile(full):
            raise ToolError(f"A file already exists at: {path}", "already_exists")
        os.makedirs(full, exist_ok=True)
        return f"Created directory: {path}"

    def delete(self, path: str, recursive: bool = False) -> str:
        full = self.resolve_entry(path)
        if full == self.root:
            raise ToolError("Refusing to delete the project root", "forbidden")
        self._require_exists(full, path)
        if os.path.islink(full):
            os.unlink(full)
            return f"Deleted link: {path}"
        if os.path.isdir(full):
            if not recursive and os.listdir(full):
                raise ToolError(
                    f"Directory is not empty: {path} (pass recursive=true to delete it)",
                    "not_empty",
                )
            if recursive:
                shutil.rmtree(full)
            else:
                os.rmdir(full)
            return f"Deleted directory: {path}"
        os.unlink(full)
        return f"Deleted file: {path}"

    def move(self, source: str, destination: str) -> str:
        src = self.resolve_entry(source)
        dst = self.resolve(destination)
        if src == self.root:
            raise ToolError("Refusing to move the project root", "forbidden")
        self._require_exists(src, source)
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        shutil.move(src, dst)
        return f"Moved {source} to {destination}"

    # --- listing --------------------------------------------------------------
    def iter_entries(self, path: str = ".", recursive: bool = False) -> Iterator[DirectoryEntry]:
        """Walk a directory with an explicit worklist; symlinked directories are not descended."""
        base = self.resolve(path)
        self._require_exists(base, path)
        if not os.path.isdir(base):
            raise ToolError(f"Not a directory: {path}", "not_a_directory")

        worklist: List[str] = [""]
        while worklist:
            prefix = worklist.pop()
            current = os.path.join(base, prefix) if prefix else base
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
            subdirs: List[str] = []
            for entry in entries:
                rel = os.path.join(prefix, entry.name) if prefix else entry.name
                if entry.is_symlink():
                    yield DirectoryEntry(rel_path=rel, is_dir=False, link_target=os.readlink(entry.path))
                elif entry.is_dir(follow_symlinks=False):
                    yield DirectoryEntry(rel_path=rel, is_dir=True)
                    if recursive:
                        subdirs.append(rel)
                else:
                    try:
                        size = entry.stat(follow_symlinks=False).st_size
                    except OSError:
                        size = 0
                    yield DirectoryEntry(rel_path=rel, is_dir=False, size=size)
            # reversed so the stack pops subdirectories in name order
            worklist.extend(reversed(subdirs))

    def list_directory(self, path: str = ".", recursive: bool = False) -> str:
        lines: List[str] = []
        truncated = False
        for entry in self.iter_entries(path, recursive):
            if len(lines) >= self.list_limit:
                truncated = True
                break
            if entry.link_target is not None:
                lines.append(f"🔗 {entry.rel_path} -> {entry.link_target}")
            elif entry.is_dir:
                lines.append(f"📁 {entry.rel_path}/")
            else:
                lines.append(f"📄 {entry.rel_path} ({format_size(entry.size)})")
        if not lines:
            return "Directory is empty"
        if truncated:
            lines.append(f"... (listing truncated after {self.list_limit} entries)")
        return "\n".join(lines)
