"""Logging and tracing setup for the admin console."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ispadmin import __version__
from ispadmin.core.config import Settings

APP_LOGGER = "ispadmin"

# Third-party loggers kept at INFO or above; asyncpg logs query arguments at DEBUG.
_QUIET_LOGGERS = ("asyncpg", "httpx")

_active_provider: TracerProvider | None = None


def _otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` exporter headers, skipping malformed pairs."""

    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}


def _logging_config(settings: Settings, level: int) -> dict[str, Any]:
    loggers: dict[str, Any] = {name: {"level": max(level, logging.INFO)} for name in _QUIET_LOGGERS}
    loggers[APP_LOGGER] = {"level": level}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"console": {"format": settings.log_format}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "level": level,
            }
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": loggers,
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the console handler and return the ``ispadmin`` logger."""

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    dictConfig(_logging_config(settings, level))
    logger = logging.getLogger(APP_LOGGER)
    logger.debug("Logging configured for %s (%s)", settings.app_name, settings.environment)
    return logger


def _span_exporter(settings: Settings) -> OTLPSpanExporter:
    options: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        options["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _otlp_headers(settings.otel_exporter_otlp_headers)
    if headers:
        options["headers"] = headers
    return OTLPSpanExporter(**options)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Register an OTLP tracer provider once per process when tracing is enabled."""

    global _active_provider

    if not settings.otel_enabled or _active_provider is not None:
        return None

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(settings)))
    trace.set_tracer_provider(provider)
    _active_provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
