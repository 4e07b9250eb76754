"""Image ingest pipeline: cleanup -> extract -> OCR -> embed (Ollama) -> persist (JSON store)."""

import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .config import ImageRagConfig, get_config
from .embed import OllamaEmbedder
from .exceptions import OperationCancelled, VectorStoreError
from .extract import get_extractor
from .logging_config import get_audit_logger, log_ingestion_event
from .models import (
    DocumentInfo,
    DocumentType,
    ExtractedImage,
    ImageMetadata,
    IngestionErrorKind,
    IngestionIssue,
    IngestionReport,
    VectorEntry,
)
from .ocr import OCRLoader, OCRStatus, new_ocr
from .store import ImageVectorStore, resolve_image_path

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {
    ".pdf": DocumentType.PDF,
    ".docx": DocumentType.DOCX,
    ".png": DocumentType.IMAGE,
    ".jpg": DocumentType.IMAGE,
    ".jpeg": DocumentType.IMAGE,
    ".gif": DocumentType.IMAGE,
    ".bmp": DocumentType.IMAGE,
    ".tif": DocumentType.IMAGE,
    ".tiff": DocumentType.IMAGE,
    ".webp": DocumentType.IMAGE,
}

_ImageOutcome = Tuple[Optional[VectorEntry], List[IngestionIssue]]


def detect_document_type(file_path: Union[str, Path]) -> Optional[DocumentType]:
    """Map a file suffix to a document type, or None if unsupported."""
    return SUPPORTED_SUFFIXES.get(Path(file_path).suffix.lower())


def calculate_sha256(file_path: Path) -> str:
    """Calculate SHA256 hash of a file."""
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


def document_info_for_file(
    file_path: Path,
    title: Optional[str] = None,
    doc_id: Optional[str] = None,
    description: Optional[str] = None,
    author: Optional[str] = None
) -> DocumentInfo:
    """Describe a local file as a source document."""
    return DocumentInfo(
        id=doc_id or calculate_sha256(file_path)[:16],
        title=title or file_path.stem,
        description=description,
        docAuthor=author,
        chunkSource=f"localfile://{file_path.resolve().as_posix()}",
        location=file_path.resolve().as_posix(),
    )


def build_embedding_text(
    document: DocumentInfo,
    image_path: str,
    page: Optional[int],
    ocr_text: str
) -> str:
    """Synthesize the text embedded in place of the image pixels."""
    parts = [
        f"Image path: {image_path}",
        f"Document title: {document.title}" if document.title else None,
        f"Document description: {document.description}" if document.description else None,
        f"Document author: {document.docAuthor}" if document.docAuthor else None,
        f"Document source: {document.chunkSource}" if document.chunkSource else None,
        f"Stored location: {document.location}" if document.location else None,
        f"Page: {page}" if page is not None else None,
        f"OCR Text: {ocr_text}" if ocr_text else "OCR Text: none detected",
    ]
    return "\n".join(part for part in parts if part)


class ImagePipeline:
    """Index the images of one document at a time into the vector store."""

    def __init__(
        self,
        store: ImageVectorStore,
        embedder: OllamaEmbedder,
        config: Optional[ImageRagConfig] = None,
        ocr_factory: Callable[[Optional[List[str]]], OCRLoader] = new_ocr
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or get_config()
        self.ocr_factory = ocr_factory
        self.audit_logger = get_audit_logger("image_pipeline")

    def cleanup_existing_artifacts(self, source_doc: str) -> List[str]:
        """
        Remove stored entries and image files left by a previous ingestion.

        Returns:
            Image paths of the removed entries
        """
        if not source_doc:
            return []

        removed = [entry.image_path for entry in self.store.delete_by_source(source_doc)]
        self._remove_image_files(removed)
        return removed

    def _remove_image_files(self, image_paths: Iterable[str]) -> None:
        for image_path in image_paths:
            try:
                absolute = resolve_image_path(image_path, self.config.root_dir)
                if absolute.is_file():
                    absolute.unlink()
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to remove cached image {image_path}: {e}")

    def _discard_unindexed(self, written: List[str], indexed: List[str]) -> None:
        """Delete extracted files that never reached the store."""
        kept = set(indexed)
        orphans = [path for path in written if path not in kept]
        if orphans:
            logger.info(f"Removing {len(orphans)} extracted images that were not indexed")
            self._remove_image_files(orphans)

    def _index_image(
        self,
        image: ExtractedImage,
        document: DocumentInfo,
        ocr_loader: OCRLoader,
        cancel_event: Optional[threading.Event]
    ) -> _ImageOutcome:
        issues = []
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Image ingestion cancelled")

        ocr_text = image.ocrText
        if not ocr_text:
            absolute = resolve_image_path(image.image_path, self.config.root_dir)
            result = ocr_loader.ocr_image(absolute)
            ocr_text = result.text
            if result.status == OCRStatus.FAILED:
                issues.append(IngestionIssue(
                    kind=IngestionErrorKind.OCR,
                    message=result.error or "OCR could not run",
                    image_path=image.image_path,
                ))

        embedding_text = build_embedding_text(document, image.image_path, image.page, ocr_text)
        try:
            vector = self.embedder.embed_text(embedding_text, cancel_event=cancel_event)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.error(f"Failed to embed image metadata for {image.image_path}: {e}")
            issues.append(IngestionIssue(
                kind=IngestionErrorKind.EMBEDDING,
                message=str(e),
                image_path=image.image_path,
            ))
            return None, issues

        entry = VectorEntry(
            vector=vector,
            image_path=image.image_path,
            source_doc=document.source_doc,
            page=image.page,
            metadata=ImageMetadata(
                title=document.title,
                description=document.description,
                docAuthor=document.docAuthor,
                chunkSource=document.chunkSource,
                ocrText=ocr_text,
                embeddingText=embedding_text,
            ),
        )
        return entry, issues

    def _index_images(
        self,
        extracted: List[ExtractedImage],
        document: DocumentInfo,
        ocr_loader: OCRLoader,
        cancel_event: Optional[threading.Event]
    ) -> List[_ImageOutcome]:
        def index(image: ExtractedImage) -> _ImageOutcome:
            return self._index_image(image, document, ocr_loader, cancel_event)

        if self.config.max_workers > 1 and len(extracted) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                return list(pool.map(index, extracted))
        return [index(image) for image in extracted]

    def process_document(
        self,
        doc_type: Union[DocumentType, str],
        file_path: Union[str, Path],
        document: Optional[DocumentInfo],
        ocr_languages: Optional[List[str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> IngestionReport:
        """
        Extract, describe, embed and store every image of one document.

        Failures never propagate; they are collected on the returned report.

        Args:
            doc_type: Document type tag selecting the extraction strategy
            file_path: Path to the document file
            document: Parent document descriptor
            ocr_languages: Tesseract language codes (defaults to configuration)
            cancel_event: Optional signal; when set nothing more is persisted

        Returns:
            IngestionReport for the document
        """
        start_time = time.time()
        extractor = None
        doc_type_value = doc_type.value if isinstance(doc_type, DocumentType) else str(doc_type)
        report = IngestionReport(
            file_path=str(file_path),
            document_type=doc_type_value,
            source_doc=document.source_doc if document else "",
            document_title=document.title if document else None,
        )

        try:
            if not file_path or not Path(file_path).is_file():
                report.add_issue(IngestionErrorKind.DOCUMENT, f"File not found: {file_path}")
                return report
            if document is None:
                report.add_issue(IngestionErrorKind.DOCUMENT, "No document descriptor supplied")
                return report

            self.config.extraction_dir.mkdir(parents=True, exist_ok=True)
            report.removed = self.cleanup_existing_artifacts(document.source_doc)

            extractor = get_extractor(doc_type, self.config)
            extracted = extractor.extract(file_path, document, cancel_event=cancel_event)
            for message in extractor.errors:
                report.add_issue(IngestionErrorKind.EXTRACTION, message)
            report.extracted = len(extracted)

            if not extracted:
                logger.info(f"No images discovered for {document.title or file_path}.")
                return report

            ocr_loader = self.ocr_factory(ocr_languages or self.config.ocr_languages)
            outcomes = self._index_images(extracted, document, ocr_loader, cancel_event)

            entries = []
            for entry, issues in outcomes:
                report.issues.extend(issues)
                if entry is not None:
                    entries.append(entry)

            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled("Image ingestion cancelled before persisting")

            try:
                self.store.upsert_many(entries)
                report.indexed = [entry.image_path for entry in entries]
            except (VectorStoreError, OSError) as e:
                logger.error(f"Failed to persist image vectors for {report.source_doc}: {e}")
                report.add_issue(IngestionErrorKind.STORE, str(e))

        except OperationCancelled as e:
            logger.warning(f"Image processing cancelled for {file_path}: {e}")
            report.cancelled = True
            report.add_issue(IngestionErrorKind.CANCELLED, str(e))
        except Exception as e:
            logger.error(f"Image processing failed for {file_path}: {e}")
            report.add_issue(IngestionErrorKind.DOCUMENT, str(e))
        finally:
            if extractor is not None:
                self._discard_unindexed(extractor.written, report.indexed)
            log_ingestion_event(
                self.audit_logger,
                file_path=report.file_path,
                source_doc=report.source_doc,
                document_type=report.document_type,
                images_extracted=report.extracted,
                images_indexed=len(report.indexed),
                issues=[issue.kind.value for issue in report.issues],
                processing_time_ms=(time.time() - start_time) * 1000,
                cancelled=report.cancelled,
            )

        return report

    def ingest_files(
        self,
        files: Iterable[Path],
        ocr_languages: Optional[List[str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[IngestionReport]:
        """
        Ingest supported files one document at a time.

        Returns:
            One report per supported file, in input order
        """
        reports = []
        for file_path in files:
            if cancel_event is not None and cancel_event.is_set():
                break
            doc_type = detect_document_type(file_path)
            if doc_type is None:
                logger.info(f"Skipping unsupported file {file_path}")
                continue
            document = document_info_for_file(file_path)
            reports.append(self.process_document(
                doc_type, file_path, document,
                ocr_languages=ocr_languages,
                cancel_event=cancel_event,
            ))

        indexed = sum(len(report.indexed) for report in reports)
        logger.info(f"Completed image ingestion: {indexed} images from {len(reports)} documents")
        return reports
