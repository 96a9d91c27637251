"""
Configuration management for index folders.

The configuration is stored as an optional TOML file in the index folder.
It names the embeddings and tokenizer providers and their parameters, the
chunking settings for documents, and the metadata fields kept in the
snapshot for filtering.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "localvec.toml"
CONFIG_VERSION = 1


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChunkingConfig:
    """How documents are split before embedding."""
    chunk_size: int = 512
    chunk_overlap: int = 0
    keep_separators: bool = True
    separators: Optional[list[str]] = None


@dataclass
class StoreConfig:
    """Complete index folder configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Provider configurations
    embedding: Optional[ProviderConfig] = None
    tokenizer: ProviderConfig = field(default_factory=lambda: ProviderConfig("tiktoken"))

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    indexed: list[str] = field(default_factory=list)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def detect_default_providers() -> dict[str, Optional[ProviderConfig]]:
    """
    Detect default providers for the current environment.

    Embeddings use OpenAI when an API key is available (LOCALVEC_OPENAI_API_KEY
    or OPENAI_API_KEY); otherwise none is configured and document upserts and
    queries fail until one is. Tokenization always uses tiktoken.
    """
    has_openai_key = bool(
        os.environ.get("LOCALVEC_OPENAI_API_KEY") or
        os.environ.get("OPENAI_API_KEY")
    )
    return {
        "embedding": ProviderConfig("openai") if has_openai_key else None,
        "tokenizer": ProviderConfig("tiktoken"),
    }


def create_default_config(path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    providers = detect_default_providers()
    return StoreConfig(
        path=path,
        embedding=providers["embedding"],
        tokenizer=providers["tokenizer"],
    )


def _parse_provider(section: dict) -> ProviderConfig:
    return ProviderConfig(
        name=section.get("name", ""),
        params={k: v for k, v in section.items() if k != "name"},
    )


def _provider_to_dict(p: ProviderConfig) -> dict:
    d = {"name": p.name}
    d.update(p.params)
    return d


def load_config(path: Path) -> StoreConfig:
    """
    Load configuration from an index folder.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = Path(path) / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    chunking = data.get("chunking", {})
    embedding = data.get("embedding")
    return StoreConfig(
        path=Path(path),
        version=version,
        created=data.get("store", {}).get("created", ""),
        embedding=_parse_provider(embedding) if embedding else None,
        tokenizer=_parse_provider(data.get("tokenizer", {"name": "tiktoken"})),
        chunking=ChunkingConfig(
            chunk_size=chunking.get("chunk_size", 512),
            chunk_overlap=chunking.get("chunk_overlap", 0),
            keep_separators=chunking.get("keep_separators", True),
            separators=chunking.get("separators"),
        ),
        indexed=list(data.get("index", {}).get("indexed", [])),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the index folder.

    Creates the folder if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    chunking: dict[str, Any] = {
        "chunk_size": config.chunking.chunk_size,
        "chunk_overlap": config.chunking.chunk_overlap,
        "keep_separators": config.chunking.keep_separators,
    }
    if config.chunking.separators:
        chunking["separators"] = list(config.chunking.separators)

    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "tokenizer": _provider_to_dict(config.tokenizer),
        "chunking": chunking,
        "index": {"indexed": list(config.indexed)},
    }
    if config.embedding is not None:
        data["embedding"] = _provider_to_dict(config.embedding)

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    if (Path(path) / CONFIG_FILENAME).exists():
        return load_config(Path(path))
    config = create_default_config(Path(path))
    save_config(config)
    return config


def load_provider_file(path: Path) -> ProviderConfig:
    """
    Load an embeddings provider definition from a standalone TOML file.

    The file holds a ``name`` key plus the provider's parameters, e.g.:

        name = "openai"
        api_key = "sk-..."
        model = "text-embedding-3-small"

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is invalid or has no provider name
    """
    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid provider file {path}: {e}") from e
    if not data.get("name"):
        raise ValueError(f"Provider file {path} has no 'name'")
    return _parse_provider(data)
