"""
Unit tests for the tracer implementations.
"""

from tandem.observability import (
    ATTR_COMMUNITY_ID,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)


class TestCreateTracer:
    def test_enabled(self):
        tracer = create_tracer(__name__)

        assert isinstance(tracer, OpenTelemetryTracer)
        assert tracer.enabled

    def test_disabled(self):
        tracer = create_tracer(__name__, enable_tracing=False)

        assert isinstance(tracer, NullTracer)
        assert not tracer.enabled

    def test_implementations_satisfy_protocol(self):
        for tracer in (NullTracer(), MockTracer(), OpenTelemetryTracer(__name__)):
            assert isinstance(tracer, Tracer)


class TestSpans:
    def test_null_span_yields_none(self):
        with NullTracer().span("tandem.test") as span:
            assert span is None

    def test_otel_span_without_provider(self):
        with OpenTelemetryTracer(__name__).span("tandem.test", {ATTR_COMMUNITY_ID: "c1"}):
            pass

    def test_mock_records_attributes(self):
        tracer = MockTracer()

        with tracer.span("tandem.test", {ATTR_COMMUNITY_ID: "c1"}):
            pass

        assert tracer.spans == [("tandem.test", {ATTR_COMMUNITY_ID: "c1"})]
        tracer.clear()
        assert tracer.span_names == []
