"""
CLI interface for localvec indexes.

Usage:
    localvec create ./my-index
    localvec add ./my-index --uri ./docs --keys openai.toml
    localvec query ./my-index "search text" --keys openai.toml
    localvec remove ./my-index --uri ./docs/old.md
    localvec stats ./my-index
    localvec delete ./my-index
    localvec providers
"""

import dataclasses
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import (
    StoreConfig,
    create_default_config,
    load_or_create_config,
    load_provider_file,
    save_config,
)
from .document_index import LocalDocumentIndex
from .errors import LocalVecError
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode, remove_ops_log
from .providers.base import get_registry
from .providers.documents import FileDocumentProvider
from .types import END_POS_KEY, START_POS_KEY


# Configure quiet mode by default
# Set LOCALVEC_VERBOSE=1 to enable debug mode via environment
if os.environ.get("LOCALVEC_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


app = typer.Typer(
    name="localvec",
    help="File-backed vector index with document search.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
):
    """File-backed vector index with document search."""


# -----------------------------------------------------------------------------
# Common options and helpers
# -----------------------------------------------------------------------------

IndexArgument = Annotated[Path, typer.Argument(help="Index folder")]

KeysOption = Annotated[Optional[Path], typer.Option(
    "--keys", "-k",
    help="TOML file naming the embeddings provider and its settings",
)]

UriOption = Annotated[Optional[list[str]], typer.Option(
    "--uri", "-u",
    help="File or folder path (repeatable)",
)]

ListOption = Annotated[Optional[Path], typer.Option(
    "--list", "-l",
    help="File with one path per line",
)]


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _load_store_config(path: Path) -> StoreConfig:
    # an existing folder keeps its config, or gets a default one written
    if path.is_dir():
        return load_or_create_config(path)
    return create_default_config(path)


_ops_log_handler = None


def _attach_ops_log(path: Path) -> None:
    """Send operation logs to the index folder, replacing any earlier folder."""
    global _ops_log_handler
    if _ops_log_handler is not None:
        remove_ops_log(_ops_log_handler)
    _ops_log_handler = configure_ops_log(path)


def _get_index(
    path: Path,
    keys: Optional[Path] = None,
    chunk_size: Optional[int] = None,
) -> LocalDocumentIndex:
    """Open an index folder, building providers from its config and --keys."""
    config = _load_store_config(path)
    registry = get_registry()

    embedding = load_provider_file(keys) if keys else config.embedding
    embeddings = registry.create_embeddings(embedding.name, embedding.params) if embedding else None
    tokenizer = registry.create_tokenizer(config.tokenizer.name, config.tokenizer.params)

    chunking = config.chunking
    if chunk_size:
        chunking = dataclasses.replace(chunking, chunk_size=chunk_size)

    if path.is_dir():
        _attach_ops_log(path)
    return LocalDocumentIndex(path, embeddings=embeddings, tokenizer=tokenizer, chunking_config=chunking)


def _collect_uris(uris: Optional[list[str]], list_file: Optional[Path]) -> list[str]:
    collected = list(uris or [])
    if list_file:
        try:
            lines = list_file.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            _fail(f"Can't read {list_file}: {e}")
        collected.extend(line.strip() for line in lines if line.strip())
    if not collected:
        _fail("Specify --uri or --list")
    return collected


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def create(
    index: IndexArgument,
    keys: KeysOption = None,
    indexed: Annotated[Optional[list[str]], typer.Option(
        "--indexed", "-i",
        help="Metadata field to keep in the index for filtering (repeatable)",
    )] = None,
    chunk_size: Annotated[int, typer.Option(help="Tokens per chunk")] = 512,
    overwrite: Annotated[bool, typer.Option(help="Replace an existing index")] = False,
):
    """Create an empty index and its config file."""
    config = _load_store_config(index)
    if keys:
        try:
            config.embedding = load_provider_file(keys)
        except (OSError, ValueError) as e:
            _fail(str(e))
    config.chunking = dataclasses.replace(config.chunking, chunk_size=chunk_size)
    config.indexed = list(indexed or [])

    idx = LocalDocumentIndex(index, chunking_config=config.chunking)
    try:
        idx.create_index(delete_if_exists=overwrite, metadata_config={"indexed": config.indexed})
    except LocalVecError as e:
        _fail(str(e))
    save_config(config)
    typer.echo(f"Created index {index}")


@app.command()
def delete(index: IndexArgument):
    """Delete an index folder and everything in it."""
    idx = LocalDocumentIndex(index)
    if not idx.is_index_created():
        _fail(f"No index at {index}")
    try:
        idx.delete_index()
    except LocalVecError as e:
        _fail(str(e))
    typer.echo(f"Deleted index {index}")


@app.command()
def add(
    index: IndexArgument,
    uri: UriOption = None,
    list_file: ListOption = None,
    keys: KeysOption = None,
    chunk_size: Annotated[Optional[int], typer.Option(help="Tokens per chunk")] = None,
):
    """
    Add or replace documents from local files or folders.

    \b
    Examples:
        localvec add ./idx -u notes.md -k openai.toml
        localvec add ./idx -u ./docs            # every file under docs/
        localvec add ./idx -l files.txt
    """
    uris = _collect_uris(uri, list_file)
    idx = _get_index(index, keys, chunk_size)
    provider = FileDocumentProvider()

    for source in uris:
        if not provider.supports(source):
            _fail(f"Only local files are supported: {source}")
        try:
            files = provider.list_files(source)
        except OSError as e:
            _fail(str(e))
        # a single file keeps the URI it was given; folder contents use their paths
        single_file = provider.to_path(source).is_file()
        for path in files:
            doc_uri = source if single_file else str(path)
            try:
                doc = provider.fetch(str(path))
                idx.upsert_document(doc_uri, doc.content, doc_type=doc.doc_type)
            except (OSError, LocalVecError) as e:
                _fail(f"{doc_uri}: {e}")
            typer.echo(f"added {doc_uri}")


@app.command()
def remove(
    index: IndexArgument,
    uri: UriOption = None,
    list_file: ListOption = None,
):
    """Remove documents by URI."""
    uris = _collect_uris(uri, list_file)
    idx = _get_index(index)
    for doc_uri in uris:
        try:
            if idx.get_document_id(doc_uri) is None:
                typer.echo(f"not found {doc_uri}")
                continue
            idx.delete_document(doc_uri)
        except LocalVecError as e:
            _fail(str(e))
        typer.echo(f"removed {doc_uri}")


@app.command()
def stats(index: IndexArgument):
    """Show document and chunk counts."""
    idx = _get_index(index)
    try:
        catalog_stats = idx.get_catalog_stats()
    except LocalVecError as e:
        _fail(str(e))
    typer.echo(f"version: {catalog_stats.version}")
    typer.echo(f"documents: {catalog_stats.documents}")
    typer.echo(f"chunks: {catalog_stats.chunks}")
    indexed = catalog_stats.metadata_config.indexed
    typer.echo(f"indexed: {', '.join(indexed) if indexed else '(all metadata)'}")


@app.command()
def providers():
    """List the provider names usable in localvec.toml and --keys files."""
    registry = get_registry()
    typer.echo(f"embeddings: {', '.join(registry.list_embeddings_providers())}")
    typer.echo(f"tokenizers: {', '.join(registry.list_tokenizer_providers())}")


@app.command()
def query(
    index: IndexArgument,
    text: Annotated[str, typer.Argument(help="Query text")],
    keys: KeysOption = None,
    document_count: Annotated[int, typer.Option(
        "--document-count", help="Maximum documents to return",
    )] = 10,
    chunk_count: Annotated[int, typer.Option(
        "--chunk-count", help="Maximum chunks to retrieve",
    )] = 50,
    section_count: Annotated[int, typer.Option(
        "--section-count", help="Maximum sections per document",
    )] = 1,
    tokens: Annotated[int, typer.Option(
        "--tokens", "-t", help="Token budget per section",
    )] = 2000,
    format: Annotated[str, typer.Option(
        "--format", "-f", help="Output format: sections, stats or chunks",
    )] = "sections",
    overlap: Annotated[bool, typer.Option(
        help="Add surrounding text to sections",
    )] = True,
    bm25: Annotated[bool, typer.Option(
        "--bm25", help="Add keyword matches to semantic ones",
    )] = False,
):
    """
    Search documents and print the best matching sections.

    \b
    Examples:
        localvec query ./idx "token budget" -k openai.toml
        localvec query ./idx "token budget" --format stats
        localvec query ./idx "token budget" --bm25 --section-count 3
    """
    if format not in ("sections", "stats", "chunks"):
        _fail(f"Unknown format: {format}")

    idx = _get_index(index, keys)
    try:
        results = idx.query_documents(
            text, max_documents=document_count, max_chunks=chunk_count, is_bm25=bm25,
        )
        for result in results:
            typer.echo(f"{result.uri} (score {result.score:.4f})")
            if format == "stats":
                typer.echo(f"  chunks: {len(result.chunks)}")
            elif format == "chunks":
                doc_text = result.load_text()
                for chunk in result.chunks:
                    metadata = chunk.item.metadata
                    span = doc_text[metadata[START_POS_KEY]:metadata[END_POS_KEY] + 1]
                    typer.echo(f"  [{chunk.score:.4f}] {span}")
            else:
                for section in result.render_sections(tokens, section_count, overlap=overlap):
                    label = "bm25" if section.is_bm25 else "semantic"
                    typer.echo(f"--- {label} score {section.score:.4f}, {section.token_count} tokens")
                    typer.echo(section.text)
            typer.echo("")
    except LocalVecError as e:
        _fail(str(e))
    if not results:
        typer.echo("No results.")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="localvec CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
