"""
Base provider protocols.

These define the interfaces the index and catalog consume: file storage,
tokenization, and embeddings. Using Protocol for structural subtyping - no
explicit inheritance required.
"""

from dataclasses import dataclass
from typing import Literal, Optional, Protocol, runtime_checkable

from ..types import EmbeddingsResponse


# -----------------------------------------------------------------------------
# Storage
# -----------------------------------------------------------------------------

ListFilter = Literal["files", "folders", "all"]


@dataclass
class FileDetails:
    """Details about a file or folder in a storage backend."""
    name: str
    path: str
    is_folder: bool
    file_type: Optional[str] = None


@runtime_checkable
class Storage(Protocol):
    """
    A narrow file storage interface.

    Paths are plain strings joined with "/" (or the OS separator for local
    storage). Every method may raise OSError.

    Example implementation:
        class DictStorage:
            def __init__(self):
                self.files = {}

            def read_file(self, path: str) -> bytes:
                return self.files[path]
            ...
    """

    def create_file(self, path: str, content: bytes | str) -> None:
        """Create a new file. Fails with FileExistsError if it exists."""
        ...

    def create_folder(self, path: str) -> None:
        """Create a folder and any missing parents."""
        ...

    def delete_file(self, path: str) -> None:
        """Delete a file. Missing files are ignored."""
        ...

    def delete_folder(self, path: str) -> None:
        """Delete a folder and everything under it."""
        ...

    def get_details(self, path: str) -> FileDetails:
        """Return details for a path. Fails with FileNotFoundError if absent."""
        ...

    def list_files(self, folder_path: str, filter: ListFilter = "all") -> list[FileDetails]:
        """List the direct children of a folder."""
        ...

    def path_exists(self, path: str) -> bool:
        """Check whether a file or folder exists."""
        ...

    def read_file(self, path: str) -> bytes:
        """Read a file's content."""
        ...

    def upsert_file(self, path: str, content: bytes | str) -> None:
        """Create or replace a file, creating parent folders as needed."""
        ...


# -----------------------------------------------------------------------------
# Tokenization
# -----------------------------------------------------------------------------

@runtime_checkable
class Tokenizer(Protocol):
    """
    Encodes text to token ids and back.

    Round-trip fidelity is required: decode(encode(text)) == text.
    """

    def encode(self, text: str) -> list[int]:
        ...

    def decode(self, tokens: list[int]) -> str:
        ...


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingsModel(Protocol):
    """
    Generates vector embeddings from text.

    The same model must be used for both indexing and querying to ensure
    consistent vectors. ``max_tokens`` bounds the total tokens the document
    index sends in one call.

    Implementations report failures through the response status rather than
    raising; "rate_limited" means the model's own retries were exhausted.
    """

    max_tokens: int

    def create_embeddings(self, inputs: str | list[str]) -> EmbeddingsResponse:
        """
        Generate embeddings for one or more texts.

        Args:
            inputs: A text or a list of texts

        Returns:
            EmbeddingsResponse with one vector per input on success
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from configuration.
    This allows the index configuration (TOML) to specify providers by name
    rather than requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_embeddings("openai", OpenAIEmbeddings)

        # Later, from config:
        provider = registry.create_embeddings("openai", {"model": "text-embedding-3-small"})
    """

    def __init__(self):
        self._embeddings_providers: dict[str, type] = {}
        self._tokenizer_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load all provider modules."""
        if self._lazy_loaded:
            return

        self._lazy_loaded = True

        # Import provider modules to trigger registration
        from . import embeddings, tokenizers  # noqa: F401

    # Registration methods

    def register_embeddings(self, name: str, provider_class: type) -> None:
        """Register an embeddings provider class."""
        self._embeddings_providers[name] = provider_class

    def register_tokenizer(self, name: str, provider_class: type) -> None:
        """Register a tokenizer provider class."""
        self._tokenizer_providers[name] = provider_class

    # Factory methods

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return providers[name](**(params or {}))
        except Exception as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}"
            ) from e

    def create_embeddings(self, name: str, params: dict | None = None) -> EmbeddingsModel:
        """Create an embeddings provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("embeddings", name, self._embeddings_providers, params)

    def create_tokenizer(self, name: str, params: dict | None = None) -> Tokenizer:
        """Create a tokenizer provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("tokenizer", name, self._tokenizer_providers, params)

    # Introspection

    def list_embeddings_providers(self) -> list[str]:
        """List registered embeddings provider names."""
        self._ensure_providers_loaded()
        return list(self._embeddings_providers.keys())

    def list_tokenizer_providers(self) -> list[str]:
        """List registered tokenizer provider names."""
        self._ensure_providers_loaded()
        return list(self._tokenizer_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
