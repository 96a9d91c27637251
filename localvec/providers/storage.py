"""
Storage backends: the local filesystem and an in-memory store.

Both implement the Storage protocol from base.py.
"""

import logging
import os
import shutil
from pathlib import Path

from .base import FileDetails, ListFilter, Storage

logger = logging.getLogger(__name__)


def _to_bytes(content: bytes | str) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


def get_file_type(path: str) -> str | None:
    """File extension without the dot, lowercased; None when there is none."""
    suffix = Path(path).suffix
    return suffix[1:].lower() if suffix else None


class LocalFileStorage:
    """Storage on the local filesystem, optionally rooted at a base folder."""

    def __init__(self, root_folder: str | None = None):
        self._root = root_folder

    def _resolve(self, path: str) -> Path:
        return Path(self._root, path) if self._root else Path(path)

    def create_file(self, path: str, content: bytes | str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        # "xb" fails if the file already exists
        with open(target, "xb") as f:
            f.write(_to_bytes(content))

    def create_folder(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    def delete_file(self, path: str) -> None:
        self._resolve(path).unlink(missing_ok=True)

    def delete_folder(self, path: str) -> None:
        target = self._resolve(path)
        if target.exists():
            shutil.rmtree(target)

    def get_details(self, path: str) -> FileDetails:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"Path not found: {path}")
        is_folder = target.is_dir()
        return FileDetails(
            name=target.name,
            path=path,
            is_folder=is_folder,
            file_type=None if is_folder else get_file_type(path),
        )

    def list_files(self, folder_path: str, filter: ListFilter = "all") -> list[FileDetails]:
        folder = self._resolve(folder_path)
        details = []
        for entry in sorted(folder.iterdir()):
            is_folder = entry.is_dir()
            if filter == "files" and is_folder:
                continue
            if filter == "folders" and not is_folder:
                continue
            details.append(FileDetails(
                name=entry.name,
                path=os.path.join(folder_path, entry.name),
                is_folder=is_folder,
                file_type=None if is_folder else get_file_type(entry.name),
            ))
        return details

    def path_exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def read_file(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def upsert_file(self, path: str, content: bytes | str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(_to_bytes(content))


class VirtualFileStorage:
    """
    In-memory storage, for tests and ephemeral indexes.

    Folders are tracked explicitly; creating a file creates its parents.
    """

    def __init__(self):
        self._files: dict[str, bytes] = {}
        self._folders: set[str] = set()

    @staticmethod
    def _normalize(path: str) -> str:
        return os.path.normpath(path)

    def _add_parents(self, path: str) -> None:
        parent = os.path.dirname(path)
        while parent and parent not in self._folders and parent != os.path.dirname(parent):
            self._folders.add(parent)
            parent = os.path.dirname(parent)

    def create_file(self, path: str, content: bytes | str) -> None:
        key = self._normalize(path)
        if key in self._files or key in self._folders:
            raise FileExistsError(f"File already exists: {path}")
        self._add_parents(key)
        self._files[key] = _to_bytes(content)

    def create_folder(self, path: str) -> None:
        key = self._normalize(path)
        if key in self._files:
            raise FileExistsError(f"A file exists at: {path}")
        self._add_parents(key)
        self._folders.add(key)

    def delete_file(self, path: str) -> None:
        self._files.pop(self._normalize(path), None)

    def delete_folder(self, path: str) -> None:
        key = self._normalize(path)
        prefix = key + os.sep
        self._files = {k: v for k, v in self._files.items() if not k.startswith(prefix)}
        self._folders = {f for f in self._folders if f != key and not f.startswith(prefix)}

    def get_details(self, path: str) -> FileDetails:
        key = self._normalize(path)
        if key in self._files:
            return FileDetails(os.path.basename(key), path, False, get_file_type(key))
        if key in self._folders:
            return FileDetails(os.path.basename(key), path, True)
        raise FileNotFoundError(f"Path not found: {path}")

    def list_files(self, folder_path: str, filter: ListFilter = "all") -> list[FileDetails]:
        key = self._normalize(folder_path)
        if key not in self._folders:
            raise FileNotFoundError(f"Folder not found: {folder_path}")
        details = []
        if filter in ("all", "folders"):
            details.extend(
                FileDetails(os.path.basename(f), f, True)
                for f in sorted(self._folders) if os.path.dirname(f) == key
            )
        if filter in ("all", "files"):
            details.extend(
                FileDetails(os.path.basename(f), f, False, get_file_type(f))
                for f in sorted(self._files) if os.path.dirname(f) == key
            )
        return details

    def path_exists(self, path: str) -> bool:
        key = self._normalize(path)
        return key in self._files or key in self._folders

    def read_file(self, path: str) -> bytes:
        key = self._normalize(path)
        if key not in self._files:
            raise FileNotFoundError(f"File not found: {path}")
        return self._files[key]

    def upsert_file(self, path: str, content: bytes | str) -> None:
        key = self._normalize(path)
        if key in self._folders:
            raise IsADirectoryError(f"A folder exists at: {path}")
        self._add_parents(key)
        self._files[key] = _to_bytes(content)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def ensure_folder_exists(storage: Storage, folder_path: str) -> None:
    """Create a folder unless it already exists."""
    if not storage.path_exists(folder_path):
        storage.create_folder(folder_path)


def try_delete_file(storage: Storage, path: str) -> bool:
    """Delete a file, logging instead of raising on failure.

    Returns True if the file is gone afterwards.
    """
    try:
        storage.delete_file(path)
        return True
    except OSError as e:
        logger.warning("Failed to delete %s: %s", path, e)
        return False
