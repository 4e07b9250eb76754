"""Records shared by the extraction, storage and retrieval stages."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class DocumentType(str, Enum):
    """Document formats images can be extracted from."""
    PDF = "pdf"
    DOCX = "docx"
    IMAGE = "image"


class DocumentInfo(BaseModel):
    """Parent document of the extracted images."""
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    docAuthor: Optional[str] = None
    chunkSource: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def source_doc(self) -> str:
        """Join key used to clean up entries on re-ingestion."""
        return self.location or self.url or ""


class ExtractedImage(BaseModel):
    """An image written to the extraction directory."""
    image_path: str
    page: Optional[int] = None
    ocrText: str = ""


class ImageMetadata(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    docAuthor: Optional[str] = None
    chunkSource: Optional[str] = None
    ocrText: str = ""
    embeddingText: str = ""


class VectorEntry(BaseModel):
    """Persisted embedding for one extracted image, keyed by image_path."""
    vector: List[float]
    image_path: str
    source_doc: str = ""
    page: Optional[int] = None
    metadata: ImageMetadata = Field(default_factory=ImageMetadata)


class RetrievedImage(BaseModel):
    """A scored retrieval result. Raw vectors are never included."""
    image_path: str
    source_doc: str = ""
    page: Optional[int] = None
    metadata: ImageMetadata = Field(default_factory=ImageMetadata)
    score: float = 0.0
    label: str


class IngestionErrorKind(str, Enum):
    EXTRACTION = "extraction"
    OCR = "ocr"
    EMBEDDING = "embedding"
    STORE = "store"
    DOCUMENT = "document"
    CANCELLED = "cancelled"


class IngestionIssue(BaseModel):
    """A recoverable failure observed while ingesting one document."""
    kind: IngestionErrorKind
    message: str
    image_path: Optional[str] = None


class IngestionReport(BaseModel):
    """Outcome of ingesting one document's images."""
    file_path: str
    document_type: str
    source_doc: str = ""
    document_title: Optional[str] = None
    extracted: int = 0
    indexed: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    issues: List[IngestionIssue] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.issues and not self.cancelled

    def add_issue(
        self,
        kind: IngestionErrorKind,
        message: str,
        image_path: Optional[str] = None
    ) -> None:
        self.issues.append(
            IngestionIssue(kind=kind, message=message, image_path=image_path)
        )
