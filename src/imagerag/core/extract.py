"""Image extraction strategies: PDF (PyMuPDF) -> PNG, DOCX media, standalone images."""

import io
import logging
import math
import re
import shutil
import threading
import unicodedata
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple, Type, Union

import fitz  # PyMuPDF
from PIL import Image

from .config import ImageRagConfig
from .exceptions import OperationCancelled
from .models import DocumentInfo, DocumentType, ExtractedImage
from .store import relative_image_path

logger = logging.getLogger(__name__)

BASE_DPI = 72
DEFAULT_TARGET_DPI = 140
DOCX_MEDIA_PREFIX = "word/media/"

_CHANNEL_MODES = {1: "L", 2: "LA", 3: "RGB", 4: "RGBA"}


def slugify(value: str) -> str:
    """Lower-case ASCII slug; runs of other characters collapse to '-'."""
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def decode_image(data: bytes) -> Tuple[bytes, int, int]:
    """Decode an encoded image stream into (raw pixels, width, height)."""
    with Image.open(io.BytesIO(data)) as image:
        if image.mode not in _CHANNEL_MODES.values():
            image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
        return image.tobytes(), image.width, image.height


def render_png(raw: bytes, width: int, height: int, target_dpi: int = DEFAULT_TARGET_DPI) -> bytes:
    """
    Resample a raw pixel buffer to target_dpi and encode it as PNG.

    The channel count is inferred from the buffer length; the source is
    assumed to be at 72 dpi.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image dimensions {width}x{height}")

    channels, remainder = divmod(len(raw), width * height)
    mode = _CHANNEL_MODES.get(channels)
    if remainder or mode is None:
        raise ValueError(
            f"Cannot infer channels from {len(raw)} bytes for {width}x{height} image"
        )

    image = Image.frombytes(mode, (width, height), raw)
    scale = target_dpi / BASE_DPI
    size = (max(1, math.floor(width * scale)), max(1, math.floor(height * scale)))
    image = image.resize(size)

    buffer = io.BytesIO()
    image.save(buffer, format="PNG", dpi=(target_dpi, target_dpi))
    return buffer.getvalue()


class ImageExtractor(ABC):
    """Turn one document file into image files inside the extraction directory."""

    document_type: DocumentType

    def __init__(self, extraction_dir: Union[str, Path], root_dir: Union[str, Path]):
        self.extraction_dir = Path(extraction_dir)
        self.root_dir = Path(root_dir)
        self.errors: List[str] = []
        # Relative paths of files this extractor created
        self.written: List[str] = []

    @abstractmethod
    def extract(
        self,
        file_path: Union[str, Path],
        document: DocumentInfo,
        cancel_event: Optional[threading.Event] = None
    ) -> List[ExtractedImage]:
        """Extract images; a single bad image is logged and skipped."""

    def safe_title(self, file_path: Union[str, Path], document: DocumentInfo) -> str:
        title = document.title or Path(file_path).name
        return slugify(f"{title}-{document.id or self.document_type.value}")

    def _write(self, file_name: str, data: bytes) -> ExtractedImage:
        output_path = self.extraction_dir / file_name
        output_path.write_bytes(data)
        return self._describe(output_path)

    def _describe(
        self,
        output_path: Path,
        page: Optional[int] = None,
        owned: bool = True
    ) -> ExtractedImage:
        image_path = relative_image_path(output_path, self.root_dir)
        if owned:
            self.written.append(image_path)
        return ExtractedImage(image_path=image_path, page=page, ocrText="")

    def _record_error(self, message: str) -> None:
        logger.warning(message)
        self.errors.append(message)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Image extraction cancelled")


class PdfImageExtractor(ImageExtractor):
    """Re-render every image painted on each PDF page as a PNG."""

    document_type = DocumentType.PDF

    def __init__(
        self,
        extraction_dir: Union[str, Path],
        root_dir: Union[str, Path],
        target_dpi: int = DEFAULT_TARGET_DPI
    ):
        super().__init__(extraction_dir, root_dir)
        self.target_dpi = target_dpi

    def extract(self, file_path, document, cancel_event=None):
        results = []
        safe_title = self.safe_title(file_path, document)

        doc = fitz.open(str(file_path))
        try:
            for page_index in range(doc.page_count):
                self._check_cancelled(cancel_event)
                page_number = page_index + 1
                try:
                    # Image blocks cover XObject, JPEG and inline images in paint order
                    blocks = doc[page_index].get_text(
                        "dict", flags=fitz.TEXT_PRESERVE_IMAGES
                    )["blocks"]
                except Exception as e:
                    self._record_error(f"Failed to read PDF page {page_number}: {e}")
                    continue

                page_image_index = 0
                for block in blocks:
                    if block.get("type") != 1:
                        continue
                    data = block.get("image")
                    if not data:
                        continue
                    try:
                        raw, width, height = decode_image(data)
                        png = render_png(raw, width, height, self.target_dpi)
                        file_name = f"{safe_title}-page-{page_number}-image-{page_image_index}.png"
                        output_path = self.extraction_dir / file_name
                        output_path.write_bytes(png)
                        results.append(self._describe(output_path, page=page_number))
                        page_image_index += 1
                    except Exception as e:
                        self._record_error(
                            f"Failed to process PDF image on page {page_number}: {e}"
                        )
        finally:
            doc.close()

        return results


class DocxImageExtractor(ImageExtractor):
    """Copy the media files packaged inside a DOCX archive."""

    document_type = DocumentType.DOCX

    def extract(self, file_path, document, cancel_event=None):
        results = []
        safe_title = self.safe_title(file_path, document)

        with zipfile.ZipFile(file_path) as archive:
            media = [
                info for info in archive.infolist()
                if info.filename.startswith(DOCX_MEDIA_PREFIX) and not info.is_dir()
            ]
            for index, info in enumerate(media):
                self._check_cancelled(cancel_event)
                try:
                    ext = PurePosixPath(info.filename).suffix or ".png"
                    results.append(
                        self._write(f"{safe_title}-image-{index}{ext}", archive.read(info))
                    )
                except Exception as e:
                    self._record_error(f"Failed to extract DOCX image {info.filename}: {e}")

        return results


class ImageFileExtractor(ImageExtractor):
    """Standalone image files are copied unchanged."""

    document_type = DocumentType.IMAGE

    def extract(self, file_path, document, cancel_event=None):
        self._check_cancelled(cancel_event)
        source = Path(file_path)
        ext = source.suffix or ".png"
        output_path = self.extraction_dir / f"{self.safe_title(file_path, document)}{ext}"
        copied = source.resolve() != output_path.resolve()
        if copied:
            shutil.copyfile(source, output_path)
        return [self._describe(output_path, owned=copied)]


EXTRACTORS: Dict[DocumentType, Type[ImageExtractor]] = {
    DocumentType.PDF: PdfImageExtractor,
    DocumentType.DOCX: DocxImageExtractor,
    DocumentType.IMAGE: ImageFileExtractor,
}


def get_extractor(
    doc_type: Union[DocumentType, str],
    config: ImageRagConfig
) -> ImageExtractor:
    """
    Build a fresh extractor for a document type.

    Raises:
        ValueError: If doc_type is not a supported document type
    """
    doc_type = DocumentType(doc_type)
    extractor_cls = EXTRACTORS[doc_type]
    if extractor_cls is PdfImageExtractor:
        return PdfImageExtractor(config.extraction_dir, config.root_dir, config.target_dpi)
    return extractor_cls(config.extraction_dir, config.root_dir)
