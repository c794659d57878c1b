"""Public observability primitives: structured logging, correlation, and redaction."""

from movesmith.observability.logging import (
    LoggingConfig,
    LogSession,
    SecretScrubber,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    redact_text,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LogSession",
    "LoggingConfig",
    "SecretScrubber",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact_text",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
