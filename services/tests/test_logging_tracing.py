import logging

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider

from services.common import ServiceSettings, build_app, configure_logging
from services.common.tracing import _INSTRUMENTED_APPS, configure_tracing, get_tracer


class TestTracingInstrumentation:
    def test_tracing_disabled_leaves_app_alone(self) -> None:
        settings = ServiceSettings(enable_tracing=False, enable_metrics=False, app_name="Untraced Store")
        before = len(_INSTRUMENTED_APPS)
        build_app(settings)
        assert len(_INSTRUMENTED_APPS) == before

    def test_tracing_instruments_each_app_once(self) -> None:
        settings = ServiceSettings(enable_tracing=True, enable_metrics=False, app_name="Traced Store")
        configure_logging(settings)
        before = len(_INSTRUMENTED_APPS)
        app = build_app(settings)
        assert len(_INSTRUMENTED_APPS) == before + 1
        configure_tracing(app, settings)
        assert len(_INSTRUMENTED_APPS) == before + 1
        assert isinstance(trace.get_tracer_provider(), TracerProvider)

    def test_checkout_spans_tag_log_records(self, caplog: pytest.LogCaptureFixture) -> None:
        settings = ServiceSettings(enable_tracing=True, enable_metrics=False, app_name="Store Log Trace")
        configure_logging(settings)
        build_app(settings)
        caplog.clear()
        logger = logging.getLogger("services.store_service.app.services")
        with caplog.at_level(logging.INFO):
            logger.info("before checkout")
            with get_tracer().start_as_current_span("store.place_order"):
                logger.info("during checkout")

        outside = next(record for record in caplog.records if record.message == "before checkout")
        inside = next(record for record in caplog.records if record.message == "during checkout")
        assert getattr(outside, "trace_id", "-") == "-"
        assert len(getattr(inside, "trace_id", "-")) == 32
        assert len(getattr(inside, "span_id", "-")) == 16
        assert getattr(inside, "service", None) == "Store Log Trace"

    def test_third_party_loggers_are_quieted(self) -> None:
        configure_logging(ServiceSettings(enable_tracing=False, enable_metrics=False, log_level="INFO"))
        assert logging.getLogger("aiosqlite").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
        configure_logging(ServiceSettings(enable_tracing=False, enable_metrics=False, log_level="DEBUG"))
        assert logging.getLogger("httpx").level == logging.DEBUG
        configure_logging(ServiceSettings(enable_tracing=False, enable_metrics=False))
