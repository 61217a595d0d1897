import logging

from ispadmin.core.config import Settings
from ispadmin.core.logging import _otlp_headers, configure_logging, init_tracer


def test_otlp_headers_skip_malformed_pairs():
    assert _otlp_headers("api-key=abc, tenant = isp ,broken,=nokey") == {"api-key": "abc", "tenant": "isp"}
    assert _otlp_headers(None) == {}


def test_configure_logging_applies_level_and_quiets_asyncpg():
    logger = configure_logging(Settings(log_level="debug"))

    assert logger.name == "ispadmin"
    assert logger.level == logging.DEBUG
    assert logging.getLogger("asyncpg").level == logging.INFO


def test_tracer_disabled_by_default():
    assert init_tracer(Settings(otel_enabled=False)) is None
