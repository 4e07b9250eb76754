"""
Shared test fixtures for the imagerag test suite.
"""

import io
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
from PIL import Image

from imagerag.core.config import ImageRagConfig
from imagerag.core.exceptions import EmbeddingError, OperationCancelled
from imagerag.core.ocr import OCRResult, OCRStatus
from imagerag.core.store import ImageVectorStore


class FakeEmbedder:
    """Stands in for OllamaEmbedder; vectors chosen by substring match."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None,
                 default: Optional[List[float]] = None,
                 fail_on: Optional[str] = None):
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0, 0.0]
        self.fail_on = fail_on
        self.calls: List[str] = []

    def embed_text(self, text: str = "", cancel_event=None) -> List[float]:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("cancelled")
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise EmbeddingError("Embedding response missing embedding vector")
        for needle, vector in self.vectors.items():
            if needle in text:
                return list(vector)
        return list(self.default)

    def embed_batch(self, texts, cancel_event=None):
        return [self.embed_text(text, cancel_event) for text in texts]

    def is_alive(self) -> bool:
        return True

    def close(self) -> None:
        pass


class FakeOCR:
    """OCR adapter returning canned results keyed by file name substring."""

    def __init__(self, texts: Optional[Dict[str, str]] = None, fail: bool = False):
        self.texts = texts or {}
        self.fail = fail
        self.seen: List[str] = []

    def ocr_image(self, image_path) -> OCRResult:
        self.seen.append(str(image_path))
        if self.fail:
            return OCRResult(text="", status=OCRStatus.FAILED, error="tesseract is not installed")
        for needle, text in self.texts.items():
            if needle in str(image_path):
                return OCRResult(text=text, status=OCRStatus.TEXT)
        return OCRResult(text="", status=OCRStatus.EMPTY)

    def ocr(self, image_path) -> str:
        return self.ocr_image(image_path).text


def make_png(color=(255, 0, 0), size=(10, 8), mode="RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_factory() -> Callable[..., bytes]:
    return make_png


@pytest.fixture
def config(tmp_path: Path) -> ImageRagConfig:
    """Configuration rooted in a temporary directory."""
    cfg = ImageRagConfig(root_dir=tmp_path, embed_base_path="http://embed.test")
    cfg.extraction_dir.mkdir(parents=True, exist_ok=True)
    return cfg


@pytest.fixture
def store(config: ImageRagConfig) -> ImageVectorStore:
    return ImageVectorStore(config.vector_store_path, lock_timeout=5)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def embedder_factory() -> Callable[..., FakeEmbedder]:
    return FakeEmbedder


@pytest.fixture
def fake_ocr() -> FakeOCR:
    return FakeOCR(texts={"chart": "Quarterly revenue chart"})


@pytest.fixture
def ocr_factory() -> Callable[..., FakeOCR]:
    return FakeOCR


@pytest.fixture
def docx_factory(tmp_path: Path) -> Callable[..., Path]:
    """Build a minimal DOCX package with the given media entries."""

    def build(name: str, media: Dict[str, bytes]) -> Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("[Content_Types].xml", "<Types/>")
            archive.writestr("word/document.xml", "<w:document/>")
            for entry_name, data in media.items():
                archive.writestr(f"word/media/{entry_name}", data)
        return path

    return build


@pytest.fixture
def pdf_factory(tmp_path: Path) -> Callable[..., Path]:
    """Build a PDF whose pages each paint the given PNG images."""
    import fitz

    def build(name: str, pages: List[List[bytes]]) -> Path:
        path = tmp_path / name
        doc = fitz.open()
        for images in pages:
            page = doc.new_page(width=300, height=300)
            for index, data in enumerate(images):
                top = 10 + index * 90
                page.insert_image(fitz.Rect(10, top, 90, top + 80), stream=data)
        doc.save(str(path))
        doc.close()
        return path

    return build
