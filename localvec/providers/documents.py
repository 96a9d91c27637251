"""
Reads local files into documents for indexing.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)


@dataclass
class Document:
    """
    A fetched document ready for indexing.

    Attributes:
        uri: URI the document is catalogued under
        content: Text content of the document
        doc_type: Chunking document type (file extension), if any
        content_type: MIME type if known
    """
    uri: str
    content: str
    doc_type: str | None = None
    content_type: str | None = None


class FileDocumentProvider:
    """
    Fetches text documents from the local filesystem.

    Accepts file:// URIs and plain paths. Directories are walked
    recursively, skipping hidden entries and symlinks.
    """

    # Default max file size: 100MB
    MAX_FILE_SIZE = 100_000_000

    EXTENSION_TYPES = {
        ".md": "text/markdown",
        ".markdown": "text/markdown",
        ".txt": "text/plain",
        ".py": "text/x-python",
        ".js": "text/javascript",
        ".ts": "text/typescript",
        ".json": "application/json",
        ".yaml": "text/yaml",
        ".yml": "text/yaml",
        ".html": "text/html",
        ".htm": "text/html",
        ".css": "text/css",
        ".xml": "application/xml",
        ".rst": "text/x-rst",
    }

    def __init__(self, max_size: int | None = None):
        self.max_size = max_size or self.MAX_FILE_SIZE

    def supports(self, uri: str) -> bool:
        """Check if this is a file:// URI or something without a scheme."""
        return uri.startswith("file://") or "://" not in uri

    @staticmethod
    def to_path(uri: str) -> Path:
        if uri.startswith("file://"):
            return Path(unquote(urlparse(uri).path))
        return Path(uri).expanduser()

    def list_files(self, uri: str) -> list[Path]:
        """Regular files under a path, sorted; a file path lists itself."""
        path = self.to_path(uri)
        if path.is_file():
            return [path]
        if not path.is_dir():
            raise IOError(f"File not found: {path}")

        files = []
        for entry in sorted(path.iterdir()):
            if entry.name.startswith(".") or entry.is_symlink():
                continue
            if entry.is_dir():
                files.extend(self.list_files(str(entry)))
            else:
                files.append(entry)
        return files

    def fetch(self, uri: str) -> Document:
        """Read a file's text content.

        Raises:
            IOError: If the file is missing, too large, or not UTF-8 text
        """
        path = self.to_path(uri).resolve()

        if not path.exists():
            raise IOError(f"File not found: {path}")
        if not path.is_file():
            raise IOError(f"Not a file: {path}")

        file_size = path.stat().st_size
        if file_size > self.max_size:
            raise IOError(
                f"File too large: {file_size:,} bytes "
                f"(limit: {self.max_size:,} bytes)."
            )

        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise IOError(f"Not a UTF-8 text file: {path}") from e

        suffix = path.suffix.lower()
        logger.debug("Read %s (%d chars)", path, len(content))
        return Document(
            uri=uri,
            content=content,
            doc_type=suffix[1:] if suffix else None,
            content_type=self.EXTENSION_TYPES.get(suffix, "text/plain"),
        )
