from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest
from flask import Flask

from lemon.tracing import _sample_ratio, configure_tracing


@pytest.fixture
def app():
    return Flask(__name__)


@patch.dict(os.environ, {"LEMON_OTEL_ENABLED": "false"})
def test_tracing_disabled(app):
    """Test that tracing does nothing when disabled"""
    with patch("lemon.tracing.trace.set_tracer_provider") as mock_set_provider:
        configure_tracing(app)
        mock_set_provider.assert_not_called()


@patch.dict(os.environ, {
    "LEMON_OTEL_ENABLED": "true",
    "LEMON_OTEL_SERVICE_NAME": "test-service",
    "OTEL_EXPORTER_OTLP_ENDPOINT": "http://localhost:4317",
})
@patch("lemon.tracing.TracerProvider")
@patch("lemon.tracing.OTLPSpanExporter")
@patch("lemon.tracing.BatchSpanProcessor")
@patch("lemon.tracing.trace.set_tracer_provider")
@patch("lemon.tracing.FlaskInstrumentor")
@patch("lemon.tracing.RequestsInstrumentor")
def test_tracing_enabled_with_otlp_endpoint(
    mock_requests_inst,
    mock_flask_inst,
    mock_set_provider,
    mock_batch_processor,
    mock_otlp_exporter,
    mock_tracer_provider,
    app,
):
    """Test tracing configuration when enabled with OTLP endpoint"""
    mock_provider = MagicMock()
    mock_tracer_provider.return_value = mock_provider
    mock_exporter = MagicMock()
    mock_otlp_exporter.return_value = mock_exporter
    mock_processor = MagicMock()
    mock_batch_processor.return_value = mock_processor

    configure_tracing(app)

    mock_tracer_provider.assert_called_once()
    resource_arg = mock_tracer_provider.call_args[1]["resource"]
    assert resource_arg.attributes["service.name"] == "test-service"

    mock_otlp_exporter.assert_called_once_with(endpoint="http://localhost:4317", insecure=True)
    mock_batch_processor.assert_called_once_with(mock_exporter)
    mock_provider.add_span_processor.assert_called_once_with(mock_processor)
    mock_set_provider.assert_called_once_with(mock_provider)

    mock_flask_inst.return_value.instrument_app.assert_called_once_with(
        app, excluded_urls="health,version,metrics"
    )
    mock_requests_inst.return_value.instrument.assert_called_once()


@patch.dict(os.environ, {
    "LEMON_OTEL_ENABLED": "true",
    "OTEL_EXPORTER_OTLP_ENDPOINT": "",
    "LEMON_OTEL_EXCLUDED_URLS": "health",
})
@patch("lemon.tracing.TracerProvider")
@patch("lemon.tracing.ConsoleSpanExporter")
@patch("lemon.tracing.BatchSpanProcessor")
@patch("lemon.tracing.trace.set_tracer_provider")
@patch("lemon.tracing.FlaskInstrumentor")
@patch("lemon.tracing.RequestsInstrumentor")
def test_tracing_enabled_without_otlp_endpoint(
    mock_requests_inst,
    mock_flask_inst,
    mock_set_provider,
    mock_batch_processor,
    mock_console_exporter,
    mock_tracer_provider,
    app,
):
    """Test tracing falls back to console exporter when no OTLP endpoint"""
    mock_provider = MagicMock()
    mock_tracer_provider.return_value = mock_provider
    mock_exporter = MagicMock()
    mock_console_exporter.return_value = mock_exporter

    configure_tracing(app)

    resource_arg = mock_tracer_provider.call_args[1]["resource"]
    assert resource_arg.attributes["service.name"] == "lemon"

    mock_console_exporter.assert_called_once()
    mock_batch_processor.assert_called_once_with(mock_exporter)
    mock_set_provider.assert_called_once_with(mock_provider)
    mock_flask_inst.return_value.instrument_app.assert_called_once_with(app, excluded_urls="health")


def test_sample_ratio_is_clamped():
    with patch.dict(os.environ, {"LEMON_OTEL_SAMPLE_RATIO": "0.25"}):
        assert _sample_ratio() == 0.25
    with patch.dict(os.environ, {"LEMON_OTEL_SAMPLE_RATIO": "7"}):
        assert _sample_ratio() == 1.0
    with patch.dict(os.environ, {"LEMON_OTEL_SAMPLE_RATIO": "-1"}):
        assert _sample_ratio() == 0.0
    with patch.dict(os.environ, {"LEMON_OTEL_SAMPLE_RATIO": "often"}):
        assert _sample_ratio() == 1.0
