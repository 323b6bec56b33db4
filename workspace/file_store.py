"""In-memory ordered set of workspace files with a single active pointer."""

import logging
import os
from uuid import uuid4

from .models import WorkspaceFile

logger = logging.getLogger(__name__)

# Comment marker used for the header line of a newly added file.
_COMMENT_MARKERS = {
    ".py": "#",
    ".rb": "#",
    ".sh": "#",
    ".html": "<!--",
    ".css": "/*",
    ".sql": "--",
}
_COMMENT_SUFFIXES = {"<!--": " -->", "/*": " */"}

_LANGUAGES = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".html": "html",
    ".css": "css",
    ".json": "json",
    ".java": "java",
    ".cpp": "cpp",
    ".go": "go",
    ".sql": "sql",
}


class DuplicateFilenameError(ValueError):
    """A file with the requested name already exists in the set."""


class LastFileError(ValueError):
    """Removing the file would leave the workspace empty."""


def language_for(filename: str) -> str:
    return _LANGUAGES.get(os.path.splitext(filename)[1].lower(), "javascript")


def template_for(filename: str) -> str:
    marker = _COMMENT_MARKERS.get(os.path.splitext(filename)[1].lower(), "//")
    return f"{marker} {filename}{_COMMENT_SUFFIXES.get(marker, '')}\n"


class FileSetStore:
    """Ordered workspace files; at most one is active and it is always a member."""

    def __init__(self):
        self._files: list[WorkspaceFile] = []
        self._active_id: str | None = None

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self):
        return iter(list(self._files))

    @property
    def files(self) -> list[WorkspaceFile]:
        return list(self._files)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active(self) -> WorkspaceFile | None:
        return self.get(self._active_id) if self._active_id is not None else None

    def get(self, file_id: str) -> WorkspaceFile | None:
        for f in self._files:
            if f.id == file_id:
                return f
        return None

    def find_by_filename(self, filename: str) -> WorkspaceFile | None:
        for f in self._files:
            if f.filename == filename:
                return f
        return None

    def load(self, files: list[WorkspaceFile], active_id: str | None = None) -> None:
        """Replace the whole set, e.g. after the initial fetch."""
        self._files = [f.model_copy() for f in files]
        if active_id is not None and self.get(active_id) is not None:
            self._active_id = active_id
        else:
            self._active_id = self._files[0].id if self._files else None

    def update_active_content(self, content: str) -> None:
        active = self.active
        if active is None:
            return
        active.content = content

    def add(self, filename: str, content: str | None = None) -> WorkspaceFile:
        name = (filename or "").strip()
        if not name:
            raise ValueError("File name must not be empty.")
        if self.find_by_filename(name) is not None:
            raise DuplicateFilenameError(f"A file named {name!r} already exists.")
        new_file = WorkspaceFile(
            id=str(uuid4()),
            filename=name,
            content=template_for(name) if content is None else content,
        )
        self._files.append(new_file)
        self._active_id = new_file.id
        return new_file

    def remove(self, file_id: str) -> bool:
        """Remove a file. Returns True when the active file changed as a result."""
        if len(self._files) <= 1:
            raise LastFileError("You must have at least one file.")
        target = self.get(file_id)
        if target is None:
            raise KeyError(file_id)
        self._files.remove(target)
        if self._active_id == file_id:
            self._active_id = self._files[0].id
            return True
        return False

    def set_active(self, file_id: str) -> bool:
        if self.get(file_id) is None:
            return False
        self._active_id = file_id
        return True

    def apply_remote(self, files: list[dict], active_filename: str | None) -> bool:
        """Copy broadcast contents onto local files that share a filename.

        Files are matched by name only; nothing is added or removed. Returns
        True when anything changed.
        """
        changed = False
        for incoming in files:
            if not isinstance(incoming, dict):
                continue
            # Broadcasts from the monitor side use either key for the name.
            name = incoming.get("filename") or incoming.get("name")
            local = self.find_by_filename(name) if name else None
            content = incoming.get("content")
            if local is not None and isinstance(content, str) and local.content != content:
                local.content = content
                changed = True
        if active_filename:
            target = self.find_by_filename(active_filename)
            if target is not None and target.id != self._active_id:
                self._active_id = target.id
                changed = True
        if changed:
            logger.debug("Applied remote workspace update (active=%s)", active_filename)
        return changed

    def to_broadcast(self) -> dict:
        """Serialize all files plus the active filename for the live channel."""
        active = self.active
        return {
            "files": [
                {"name": f.filename, "language": language_for(f.filename), "content": f.content}
                for f in self._files
            ],
            "activeFileName": active.filename if active else "",
        }
