"""Best-effort OCR over extracted images using Tesseract."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Union

import pytesseract
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGES = ["eng"]


class OCRStatus(str, Enum):
    TEXT = "text"
    EMPTY = "empty"      # OCR ran and found nothing
    FAILED = "failed"    # OCR could not run


@dataclass
class OCRResult:
    text: str
    status: OCRStatus
    error: Optional[str] = None


class OCRLoader:
    """Run Tesseract over image files for a fixed set of languages."""

    def __init__(self, target_languages: Optional[Iterable[str]] = None):
        languages = [lang for lang in (target_languages or []) if lang]
        self.target_languages: List[str] = languages or list(DEFAULT_LANGUAGES)

    @property
    def lang(self) -> str:
        return "+".join(self.target_languages)

    def ocr_image(self, image_path: Union[str, Path]) -> OCRResult:
        """
        Extract text from an image file.

        Never raises; a failure is reported through the result status.
        """
        try:
            with Image.open(image_path) as image:
                if image.mode not in ("L", "RGB"):
                    image = image.convert("RGB")
                text = pytesseract.image_to_string(image, lang=self.lang)
        except Exception as e:
            logger.warning(f"OCR failed for {image_path}: {e}")
            return OCRResult(text="", status=OCRStatus.FAILED, error=str(e))

        text = text.strip()
        if not text:
            return OCRResult(text="", status=OCRStatus.EMPTY)
        return OCRResult(text=text, status=OCRStatus.TEXT)

    def ocr(self, image_path: Union[str, Path]) -> str:
        return self.ocr_image(image_path).text


def new_ocr(target_languages: Optional[Iterable[str]] = None) -> OCRLoader:
    """Create an OCR adapter for the given Tesseract language codes."""
    return OCRLoader(target_languages=target_languages)
