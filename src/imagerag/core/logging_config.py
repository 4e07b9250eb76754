"""Structured logging configuration for imagerag."""

import logging
from typing import List, Optional

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging for imagerag with audit capabilities."""

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        # JSON output for production/audit
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True),
        ])

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger with audit context for a specific component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_ingestion_event(
    logger: structlog.BoundLogger,
    file_path: str,
    source_doc: str,
    document_type: str,
    images_extracted: int,
    images_indexed: int,
    issues: List[str],
    processing_time_ms: float,
    cancelled: bool = False
) -> None:
    """Log image ingestion for a single document."""
    logger.info(
        "image_ingestion_completed",
        file_path=file_path,
        source_doc=source_doc,
        document_type=document_type,
        images_extracted=images_extracted,
        images_indexed=images_indexed,
        issues=issues,
        processing_time_ms=processing_time_ms,
        cancelled=cancelled,
        event_type="image_ingestion"
    )


def log_image_retrieval(
    logger: structlog.BoundLogger,
    query: str,
    candidates: int,
    results_count: int,
    top_score: Optional[float],
    execution_time_ms: float
) -> None:
    """Log image retrieval with full audit trail."""
    logger.info(
        "image_retrieval_completed",
        query=query,
        candidates=candidates,
        results_count=results_count,
        top_score=top_score,
        execution_time_ms=execution_time_ms,
        event_type="image_retrieval"
    )
