import logging

import pytest
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as OTLPGrpcExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as OTLPHttpExporter
from opentelemetry.sdk.trace import TracerProvider

from portal.common import ServiceSettings, build_app, configure_logging, shutdown_tracing
from portal.common.logging import TraceContextFilter
from portal.common.tracing import _INSTRUMENTED_APPS, _span_exporter, configure_tracing


def test_span_exporter_follows_protocol_setting() -> None:
    assert _span_exporter(ServiceSettings(tracing_endpoint=None)) is None
    grpc = _span_exporter(
        ServiceSettings(tracing_endpoint="http://collector:4317", tracing_protocol="grpc")
    )
    assert isinstance(grpc, OTLPGrpcExporter)
    http = _span_exporter(ServiceSettings(tracing_endpoint="http://collector:4318/v1/traces"))
    assert isinstance(http, OTLPHttpExporter)


@pytest.mark.usefixtures("caplog")
class TestTraceCorrelation:
    def test_app_is_instrumented_once(self, caplog: pytest.LogCaptureFixture) -> None:
        settings = ServiceSettings(
            enable_tracing=True,
            enable_metrics=False,
            app_name="Tracing Test Service",
        )
        configure_logging(settings)
        caplog.set_level(logging.WARNING)
        before = len(_INSTRUMENTED_APPS)
        app = build_app(settings)
        assert len(_INSTRUMENTED_APPS) == before + 1
        configure_tracing(app, settings)
        assert len(_INSTRUMENTED_APPS) == before + 1
        assert isinstance(trace.get_tracer_provider(), TracerProvider)
        shutdown_tracing()

    def test_records_carry_service_and_span_ids(self, caplog: pytest.LogCaptureFixture) -> None:
        settings = ServiceSettings(
            enable_tracing=True,
            enable_metrics=False,
            app_name="Logging Trace Test",
        )
        configure_logging(settings)
        build_app(settings)
        caplog.handler.addFilter(TraceContextFilter(settings.app_name))
        caplog.clear()
        tracer = trace.get_tracer(__name__)
        logger = logging.getLogger("portal.trace-test")
        with caplog.at_level(logging.INFO):
            logger.info("outside span")
            with tracer.start_as_current_span("workorder.update"):
                logger.info("inside span")

        outside = next(record for record in caplog.records if record.message == "outside span")
        inside = next(record for record in caplog.records if record.message == "inside span")
        assert (outside.trace_id, outside.span_id) == ("-", "-")
        assert len(inside.trace_id) == 32
        assert len(inside.span_id) == 16
        assert inside.service == "Logging Trace Test"
