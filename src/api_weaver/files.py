"""
File access scoped to the project root.

FileStore is the only component that touches the filesystem on behalf of
clients. Every operation validates its path with the security module and
resolves it inside the project root before any I/O happens. Methods are
synchronous; async callers offload them to the worker thread pool.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import NotFoundError, SecurityViolationError, ValidationError
from .security import (
    ACCESS_DENIED_MESSAGE,
    log_security_violation,
    resolve_within_root,
    validate_file_path,
)

logger = logging.getLogger(__name__)

DEFAULT_TREE_DEPTH = 3
IGNORED_NAMES = ("node_modules",)


def _iso_mtime(stat_result: os.stat_result) -> str:
    return (
        datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def _is_listed(name: str) -> bool:
    return not name.startswith(".") and name not in IGNORED_NAMES


@dataclass
class FileEntry:
    """A file or directory as reported to clients."""

    path: str
    is_directory: bool
    modified_at: str
    size: Optional[int] = None
    content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"path": self.path}
        if self.content is not None:
            data["content"] = self.content
        if self.size is not None:
            data["size"] = self.size
        data["isDirectory"] = self.is_directory
        data["modifiedAt"] = self.modified_at
        return data


@dataclass
class ProjectNode:
    """One node of the project structure tree."""

    name: str
    path: str
    type: str
    size: Optional[int] = None
    children: Optional[List["ProjectNode"]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "path": self.path, "type": self.type}
        if self.size is not None:
            data["size"] = self.size
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        return data


class FileStore:
    """Read, write, delete, list and map files under a single project root."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _resolve(self, path: str, operation: str) -> tuple[str, str]:
        """Validate ``path`` and return (sanitized, absolute)."""
        result = validate_file_path(path, self.root)
        if not result.valid:
            if result.error == "Path outside project directory":
                log_security_violation(
                    violation_type="path_traversal",
                    operation=operation,
                    attempted_path=str(path),
                    root_directory=self.root,
                    error=result.error,
                )
                raise SecurityViolationError(ACCESS_DENIED_MESSAGE)
            raise ValidationError(result.error)

        full_path = resolve_within_root(result.sanitized, self.root, operation)
        return result.sanitized, full_path

    def read(self, path: str) -> FileEntry:
        """Read a file; directories are reported without content."""
        sanitized, full_path = self._resolve(path, "read_file")

        try:
            stat_result = os.stat(full_path)
            if os.path.isdir(full_path):
                return FileEntry(
                    path=sanitized,
                    is_directory=True,
                    modified_at=_iso_mtime(stat_result),
                )
            with open(full_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except FileNotFoundError:
            raise NotFoundError("File not found")

        return FileEntry(
            path=sanitized,
            content=content,
            size=stat_result.st_size,
            is_directory=False,
            modified_at=_iso_mtime(stat_result),
        )

    def write(self, path: str, content: str) -> FileEntry:
        """Write a text file, creating parent directories as needed."""
        sanitized, full_path = self._resolve(path, "write_file")

        if os.path.isdir(full_path):
            raise ValidationError(f"Path is a directory: {sanitized}")

        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "w", encoding="utf-8") as f:
            f.write(content)

        stat_result = os.stat(full_path)
        logger.info(f"Wrote {stat_result.st_size} bytes to {sanitized}")
        return FileEntry(
            path=sanitized,
            size=stat_result.st_size,
            is_directory=False,
            modified_at=_iso_mtime(stat_result),
        )

    def delete(self, path: str) -> None:
        """Delete a file, or a directory recursively."""
        sanitized, full_path = self._resolve(path, "delete_file")

        if full_path == self.root:
            raise ValidationError("Refusing to delete the project root")

        try:
            if os.path.isdir(full_path) and not os.path.islink(full_path):
                shutil.rmtree(full_path)
            else:
                os.unlink(full_path)
        except FileNotFoundError:
            raise NotFoundError("File not found")

        logger.info(f"Deleted {sanitized}")

    def make_directory(self, path: str) -> str:
        """Create a directory and any missing parents."""
        sanitized, full_path = self._resolve(path, "create_directory")

        if os.path.exists(full_path) and not os.path.isdir(full_path):
            raise ValidationError(f"Path exists and is not a directory: {sanitized}")

        os.makedirs(full_path, exist_ok=True)
        return sanitized

    def list(self, directory: str = ".") -> List[FileEntry]:
        """List a directory, skipping dotfiles and node_modules."""
        sanitized, full_path = self._resolve(directory, "list_files")

        try:
            names = sorted(os.listdir(full_path))
        except FileNotFoundError:
            raise NotFoundError("Directory not found")
        except NotADirectoryError:
            raise ValidationError(f"Not a directory: {sanitized}")

        entries = []
        for name in names:
            if not _is_listed(name):
                continue
            try:
                stat_result = os.stat(os.path.join(full_path, name))
            except OSError as e:
                logger.debug(f"Skipping unreadable entry {name}: {e}")
                continue

            is_dir = os.path.isdir(os.path.join(full_path, name))
            entries.append(
                FileEntry(
                    path=name if sanitized == "." else f"{sanitized}/{name}",
                    is_directory=is_dir,
                    size=None if is_dir else stat_result.st_size,
                    modified_at=_iso_mtime(stat_result),
                )
            )

        return entries

    def tree(self, directory: str = ".", max_depth: int = DEFAULT_TREE_DEPTH) -> ProjectNode:
        """Build the project structure below ``directory``, ``max_depth`` levels deep."""
        _, full_path = self._resolve(directory, "get_project_structure")

        if not os.path.exists(full_path):
            raise NotFoundError("Directory not found")

        return self._build_node(full_path, 0, max_depth)

    def _build_node(self, full_path: str, current_depth: int, max_depth: int) -> ProjectNode:
        rel_path = os.path.relpath(full_path, self.root)
        name = os.path.basename(full_path) or "."

        if not os.path.isdir(full_path):
            return ProjectNode(
                name=name,
                path=rel_path,
                type="file",
                size=os.stat(full_path).st_size,
            )

        node = ProjectNode(name=name, path=rel_path, type="directory")
        if current_depth >= max_depth:
            return node
        node.children = []

        try:
            names = os.listdir(full_path)
        except OSError as e:
            logger.debug(f"Cannot list {rel_path}: {e}")
            return node

        for child_name in names:
            if not _is_listed(child_name):
                continue
            try:
                node.children.append(
                    self._build_node(
                        os.path.join(full_path, child_name), current_depth + 1, max_depth
                    )
                )
            except OSError as e:
                logger.debug(f"Skipping unreadable entry {child_name}: {e}")

        node.children.sort(key=lambda child: (child.type != "directory", child.name))
        return node
