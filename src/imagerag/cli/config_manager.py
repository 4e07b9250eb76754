"""Configuration manager for imagerag CLI settings."""

import os
import json
from pathlib import Path
from typing import Dict, Any
import logging

logger = logging.getLogger(__name__)

# Keys are the lower-cased environment variable names read by get_config()
DEFAULT_CONFIG: Dict[str, Any] = {
    "ollama_base_path": "http://127.0.0.1:11434",
    "ollama_image_embed_model": "gemma3:27b",
    "image_extraction_dir": "./extracted_img",
    "image_target_dpi": 140,
    "ocr_languages": "eng",
    "image_top_k": 3,
    "ingest_max_workers": 1,
    "embed_timeout": 60,
    "embed_retry_attempts": 3,
    "log_level": "INFO",
    "json_logs": False,
}

_POSITIVE_INT_KEYS = (
    "image_target_dpi",
    "image_top_k",
    "ingest_max_workers",
    "embed_retry_attempts",
)


def _env_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


class ImageRagConfigManager:
    """Manage imagerag configuration settings with persistence."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "imagerag_cli.json"
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file."""
        config = dict(DEFAULT_CONFIG)

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    config.update(json.load(f))
                    logger.info("Configuration loaded from file")
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load config file: {e}, using defaults")
        else:
            logger.debug("No config file found, using defaults")

        return config

    def _save_config(self):
        """Save configuration to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(self.config, f, indent=2)
        logger.info("Configuration saved to file")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any, persist: bool = True):
        """Set configuration value and export it to the environment."""
        if key not in DEFAULT_CONFIG:
            raise KeyError(f"Unknown configuration key: {key}")
        if key in _POSITIVE_INT_KEYS:
            value = int(value)
        elif key == "json_logs" and isinstance(value, str):
            value = value.lower() == "true"

        self.config[key] = value
        os.environ[key.upper()] = _env_value(value)

        if persist:
            self._save_config()

        logger.info(f"Set {key} = {value}")

    def reset(self, key: str, persist: bool = True):
        """Reset configuration value to default."""
        if key in DEFAULT_CONFIG:
            self.set(key, DEFAULT_CONFIG[key], persist)
            logger.info(f"Reset {key} to default")
        else:
            logger.warning(f"No default value for {key}")

    def apply_to_environment(self):
        """Export persisted settings; explicit environment variables win."""
        if not self.config_file.exists():
            return
        for key, value in self.config.items():
            os.environ.setdefault(key.upper(), _env_value(value))

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self.config.copy()

    def validate(self) -> Dict[str, Any]:
        """Validate current configuration."""
        validation = {
            "valid": True,
            "issues": [],
            "warnings": []
        }

        base_path = str(self.get("ollama_base_path", ""))
        if not base_path.startswith(("http://", "https://")):
            validation["issues"].append("ollama_base_path must be an http(s) URL")
            validation["valid"] = False

        if not self.get("ollama_image_embed_model"):
            validation["issues"].append("ollama_image_embed_model not set")
            validation["valid"] = False

        for key in _POSITIVE_INT_KEYS:
            value = self.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                validation["issues"].append(f"{key} must be a positive integer")
                validation["valid"] = False

        extraction_dir = Path(self.get("image_extraction_dir", ""))
        if not extraction_dir.exists():
            validation["warnings"].append(
                f"Extraction directory not found (created on first ingest): {extraction_dir}"
            )

        if not os.getenv("OLLAMA_AUTH_TOKEN"):
            validation["warnings"].append("OLLAMA_AUTH_TOKEN not set (fine for local Ollama)")

        return validation


def get_config_manager() -> ImageRagConfigManager:
    """Get the configuration manager for the current working directory."""
    config_dir = os.getenv("IMAGERAG_CONFIG_DIR", "./config")
    return ImageRagConfigManager(config_dir)
