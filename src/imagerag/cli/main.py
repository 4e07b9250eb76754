import os
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console

from imagerag.cli.config_manager import DEFAULT_CONFIG, get_config_manager
from imagerag.core.config import ImageRagConfig, get_config
from imagerag.core.embed import OllamaEmbedder
from imagerag.core.exceptions import ImageRagError
from imagerag.core.ingest import (
    ImagePipeline,
    detect_document_type,
    document_info_for_file,
)
from imagerag.core.logging_config import configure_logging
from imagerag.core.models import DocumentType, IngestionReport
from imagerag.core.retrieve import (
    ImageRetriever,
    append_image_references,
    build_image_context,
)
from imagerag.core.store import ImageVectorStore

app = typer.Typer(help="imagerag: image extraction and retrieval for RAG answers")
console = Console()

get_config_manager().apply_to_environment()

# Initialize structured logging
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true"
)


def _components() -> Tuple[ImageRagConfig, ImageVectorStore, OllamaEmbedder]:
    config = get_config()
    store = ImageVectorStore(config.vector_store_path, lock_timeout=config.store_lock_timeout)
    embedder = OllamaEmbedder.from_config(config)
    return config, store, embedder


@contextmanager
def _cancel_on_signal(cancel_event: threading.Event):
    """Turn SIGINT/SIGTERM into a cancellation request while the block runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handle(signum, frame):
        cancel_event.set()

    previous = {sig: signal.signal(sig, handle) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)


def _print_report(report: IngestionReport):
    title = report.document_title or report.file_path
    if report.cancelled:
        console.print(f"[yellow]⏹ {title}: cancelled, nothing stored[/]")
    elif report.ok:
        console.print(f"[green]✅ {title}:[/] {len(report.indexed)}/{report.extracted} images indexed")
    else:
        console.print(f"[yellow]⚠ {title}:[/] {len(report.indexed)}/{report.extracted} images indexed")
    if report.removed:
        console.print(f"   [dim]Replaced {len(report.removed)} previously indexed images[/]")
    for issue in report.issues:
        target = f" ({issue.image_path})" if issue.image_path else ""
        console.print(f"   [red]{issue.kind.value}[/]{target}: {issue.message}")


@app.command()
def ingest(
    path: str,
    doc_type: Optional[DocumentType] = typer.Option(
        None, "--type", help="Document type; inferred from the file suffix when omitted"
    ),
    title: Optional[str] = typer.Option(None, help="Document title (single file only)"),
    doc_id: Optional[str] = typer.Option(None, "--id", help="Document id (single file only)"),
    description: Optional[str] = typer.Option(None, help="Document description"),
    author: Optional[str] = typer.Option(None, help="Document author"),
    ocr_lang: Optional[List[str]] = typer.Option(None, "--ocr-lang", help="Tesseract language code"),
):
    """Extract, OCR, embed and index the images of a document or directory."""
    input_path = Path(path)
    if not input_path.exists():
        console.print(f"[red]Error:[/] Path {path} does not exist")
        raise typer.Exit(1)

    config, store, embedder = _components()
    pipeline = ImagePipeline(store, embedder, config)
    cancel_event = threading.Event()

    try:
        with _cancel_on_signal(cancel_event), console.status("[bold green]Processing document images..."):
            if input_path.is_dir():
                files = sorted(p for p in input_path.iterdir() if p.is_file())
                reports = pipeline.ingest_files(files, ocr_languages=ocr_lang, cancel_event=cancel_event)
            else:
                resolved_type = doc_type or detect_document_type(input_path)
                if resolved_type is None:
                    console.print(f"[red]Error:[/] Unsupported file type: {input_path.suffix}")
                    raise typer.Exit(1)
                document = document_info_for_file(
                    input_path, title=title, doc_id=doc_id,
                    description=description, author=author,
                )
                reports = [pipeline.process_document(
                    resolved_type, input_path, document,
                    ocr_languages=ocr_lang, cancel_event=cancel_event,
                )]
    finally:
        embedder.close()

    if not reports:
        console.print("[yellow]No supported documents found.[/]")
        raise typer.Exit(1 if cancel_event.is_set() else 0)

    for report in reports:
        _print_report(report)

    total_images = sum(len(report.indexed) for report in reports)
    console.print(f"[bold]Documents processed:[/] {len(reports)}")
    console.print(f"[bold]Images indexed:[/] {total_images}")
    console.print(f"[bold]Images stored in:[/] {config.extraction_dir}")

    if cancel_event.is_set():
        console.print("[yellow]Ingestion interrupted[/]")
        raise typer.Exit(1)


@app.command()
def search(
    query: str,
    top_k: Optional[int] = typer.Option(None, "--top-k", help="Maximum number of images"),
    context: bool = typer.Option(False, "--context", help="Print the prompt context block"),
):
    """Find the stored images most relevant to a query."""
    config, store, embedder = _components()
    retriever = ImageRetriever(store, embedder)

    try:
        with console.status("[bold green]Searching..."):
            results = retriever.retrieve(query, top_k=config.top_k if top_k is None else top_k)
    except ImageRagError as e:
        console.print(f"[red]Error during search:[/] {e}")
        raise typer.Exit(1)
    finally:
        embedder.close()

    if not results:
        console.print("[yellow]No images found.[/]")
        return

    console.print(f"[green]Found {len(results)} images:[/]")
    console.print()
    for image in results:
        page = f" (Page {image.page})" if image.page is not None else ""
        console.print(f"[bold]{image.label}: {image.image_path}{page}[/]")
        console.print(f"   [blue]Score:[/] {image.score:.3f}")
        if image.source_doc:
            console.print(f"   [blue]Source:[/] {image.source_doc}")
        if image.metadata.ocrText:
            console.print(f"   [green]OCR:[/] {image.metadata.ocrText[:80]}")
        console.print()

    if context:
        console.rule("Prompt context")
        console.print(build_image_context(results), markup=False)
        console.rule("Citation footer")
        console.print(append_image_references("", results).strip(), markup=False)


@app.command()
def remove(location: str):
    """Remove every indexed image (and its file) for a source document."""
    config, store, embedder = _components()
    embedder.close()
    pipeline = ImagePipeline(store, embedder, config)

    removed = pipeline.cleanup_existing_artifacts(location)
    if not removed:
        console.print(f"[yellow]No images indexed for {location}[/]")
        return
    console.print(f"[green]✅ Removed {len(removed)} images for {location}[/]")


@app.command()
def status():
    """Show vector store and embedding service status."""
    config, store, embedder = _components()
    try:
        entries = store.read()
        alive = embedder.is_alive()
    finally:
        embedder.close()

    documents = {entry.source_doc for entry in entries if entry.source_doc}

    console.print("[bold]🚀 imagerag Status[/]")
    console.print()
    console.print("[bold]📊 Vector Store:[/]")
    console.print(f"  Store file: {store.path}")
    console.print(f"  Indexed images: {len(entries)}")
    console.print(f"  Source documents: {len(documents)}")
    console.print()
    console.print(f"[bold]📁 Extraction dir:[/] {config.extraction_dir}")
    state = "[green]reachable[/]" if alive else "[red]unreachable[/]"
    console.print(f"[bold]🤖 Embedding service:[/] {config.embed_base_path} ({config.embed_model}) {state}")


@app.command()
def config(
    action: str = typer.Argument(..., help="Action: show, set, reset, validate"),
    key: Optional[str] = typer.Argument(None, help="Configuration key"),
    value: Optional[str] = typer.Argument(None, help="Configuration value")
):
    """Manage imagerag configuration settings."""
    manager = get_config_manager()

    if action == "show":
        console.print("\n[bold]Current Configuration:[/]")
        for name, current in manager.get_all().items():
            console.print(f"  [blue]{name}:[/] {current}")
        console.print(f"  [blue]ollama_auth_token:[/] {'***' if os.getenv('OLLAMA_AUTH_TOKEN') else 'Not set'}")
    elif action == "set":
        if not key or value is None:
            console.print("[red]Error:[/] Both key and value required for 'set' action")
            raise typer.Exit(1)
        try:
            manager.set(key, value)
        except (KeyError, ValueError) as e:
            console.print(f"[red]Error:[/] {e}")
            raise typer.Exit(1)
        console.print(f"[green]✅ Set {key} = {value}[/]")
    elif action == "reset":
        if not key or key not in DEFAULT_CONFIG:
            console.print("[red]Error:[/] A known key is required for 'reset' action")
            raise typer.Exit(1)
        manager.reset(key)
        console.print(f"[green]✅ Reset {key} to default[/]")
    elif action == "validate":
        validation = manager.validate()
        for warning in validation["warnings"]:
            console.print(f"[yellow]•[/] {warning}")
        if not validation["valid"]:
            console.print("\n[red]❌ Configuration issues found:[/]")
            for issue in validation["issues"]:
                console.print(f"  • {issue}")
            raise typer.Exit(1)
        console.print("\n[green]✅ Configuration validation passed![/]")
    else:
        console.print(f"[red]Error:[/] Unknown action: {action}")
        console.print("Available actions: show, set, reset, validate")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
