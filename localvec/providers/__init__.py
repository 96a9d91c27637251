"""
Collaborators the index depends on.

Each provider type defines a protocol that concrete implementations must follow:
- Storage (where index files live)
- Tokenizer (token counting for chunking and rendering)
- Embeddings (text to vectors)

Concrete providers are auto-registered when this module is imported.
"""

from .base import (
    EmbeddingsModel,
    FileDetails,
    ProviderRegistry,
    Storage,
    Tokenizer,
    get_registry,
)
from .storage import LocalFileStorage, VirtualFileStorage

# Import concrete providers to trigger registration
from . import embeddings
from . import tokenizers

__all__ = [
    # Protocols
    "EmbeddingsModel",
    "Storage",
    "Tokenizer",
    # Data types
    "FileDetails",
    # Storage backends
    "LocalFileStorage",
    "VirtualFileStorage",
    # Registry
    "ProviderRegistry",
    "get_registry",
]
