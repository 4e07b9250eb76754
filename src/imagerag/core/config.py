"""Environment-driven configuration for the image pipeline."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_BASE_PATH = "http://127.0.0.1:11434"
DEFAULT_EMBED_MODEL = "gemma3:27b"


@dataclass
class ImageRagConfig:
    """Configuration for extraction, embedding and storage."""
    root_dir: Path = field(default_factory=Path.cwd)
    extraction_dir: Optional[Path] = None
    vector_store_path: Optional[Path] = None
    embed_base_path: str = DEFAULT_BASE_PATH
    embed_model: str = DEFAULT_EMBED_MODEL
    embed_auth_token: Optional[str] = None
    embed_timeout: float = 60.0
    embed_retry_attempts: int = 3
    target_dpi: int = 140
    ocr_languages: List[str] = field(default_factory=lambda: ["eng"])
    top_k: int = 3
    max_workers: int = 1
    store_lock_timeout: float = 30.0

    def __post_init__(self):
        self.root_dir = Path(self.root_dir).resolve()
        if self.extraction_dir is None:
            self.extraction_dir = self.root_dir / "extracted_img"
        self.extraction_dir = Path(self.extraction_dir).resolve()
        if self.vector_store_path is None:
            self.vector_store_path = self.extraction_dir / "image_vectors.json"
        self.vector_store_path = Path(self.vector_store_path).resolve()


def _split_languages(raw: str) -> List[str]:
    return [lang.strip() for lang in raw.split(",") if lang.strip()]


def get_config() -> ImageRagConfig:
    """Get pipeline configuration from environment."""
    root_dir = Path(os.getenv("IMAGERAG_ROOT_DIR") or Path.cwd())
    extraction_dir = os.getenv("IMAGE_EXTRACTION_DIR")
    store_path = os.getenv("IMAGE_VECTOR_STORE_PATH")

    base_path = (
        os.getenv("OLLAMA_BASE_PATH")
        or os.getenv("EMBEDDING_BASE_PATH")
        or DEFAULT_BASE_PATH
    )

    return ImageRagConfig(
        root_dir=root_dir,
        extraction_dir=Path(extraction_dir) if extraction_dir else None,
        vector_store_path=Path(store_path) if store_path else None,
        embed_base_path=base_path.rstrip("/"),
        embed_model=os.getenv("OLLAMA_IMAGE_EMBED_MODEL", DEFAULT_EMBED_MODEL),
        embed_auth_token=os.getenv("OLLAMA_AUTH_TOKEN") or None,
        embed_timeout=float(os.getenv("EMBED_TIMEOUT", "60")),
        embed_retry_attempts=int(os.getenv("EMBED_RETRY_ATTEMPTS", "3")),
        target_dpi=int(os.getenv("IMAGE_TARGET_DPI", "140")),
        ocr_languages=_split_languages(os.getenv("OCR_LANGUAGES", "eng")) or ["eng"],
        top_k=int(os.getenv("IMAGE_TOP_K", "3")),
        max_workers=int(os.getenv("INGEST_MAX_WORKERS", "1")),
        store_lock_timeout=float(os.getenv("STORE_LOCK_TIMEOUT", "30")),
    )
