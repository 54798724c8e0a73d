"""
Unit tests for the OpenTelemetry tracing utilities.

Tests the store_span and stage_span context managers that wrap store
reads and pipeline stages.
"""

import pytest
from unittest.mock import MagicMock, patch

from ranking_engine.observability.tracing import stage_span, store_span


@pytest.fixture
def mock_span():
    """Patch the tracer so every started span is the returned mock."""
    span = MagicMock()
    tracer = MagicMock()
    tracer.start_as_current_span.return_value.__enter__ = MagicMock(
        return_value=span
    )
    tracer.start_as_current_span.return_value.__exit__ = MagicMock(
        return_value=None
    )
    with patch(
        "ranking_engine.observability.tracing.trace.get_tracer", return_value=tracer
    ):
        span.tracer = tracer
        yield span


class TestStoreSpan:
    """Tests for the store_span context manager."""

    def test_creates_span_named_after_backend_and_operation(self, mock_span):
        """Should create a span named '<backend>.<operation>'."""
        with store_span("query_points", "qdrant"):
            pass

        mock_span.tracer.start_as_current_span.assert_called_once()
        call_args = mock_span.tracer.start_as_current_span.call_args
        assert call_args[0][0] == "qdrant.query_points"

    def test_sets_db_system_and_operation(self, mock_span):
        """Should set db.system to the backend and db.operation to the call."""
        with store_span("zrange", "redis"):
            pass

        mock_span.set_attribute.assert_any_call("db.system", "redis")
        mock_span.set_attribute.assert_any_call("db.operation", "zrange")

    def test_sets_backend_prefixed_attributes(self, mock_span):
        """Custom attributes land under db.<backend>.<name>."""
        with store_span("scroll", "qdrant", limit=10, purpose="search"):
            pass

        mock_span.set_attribute.assert_any_call("db.qdrant.limit", 10)
        mock_span.set_attribute.assert_any_call("db.qdrant.purpose", "search")

    def test_skips_none_attributes(self, mock_span):
        """Should not set attributes with None values."""
        with store_span("get", "redis", key=None):
            pass

        names = [c[0][0] for c in mock_span.set_attribute.call_args_list]
        assert "db.redis.key" not in names

    def test_yields_span_for_additional_attributes(self, mock_span):
        """Should yield the span so caller can set additional attributes."""
        with store_span("retrieve", "qdrant") as span:
            span.set_attribute("db.qdrant.results_count", 42)

        mock_span.set_attribute.assert_any_call("db.qdrant.results_count", 42)

    def test_records_and_reraises_exception(self, mock_span):
        """Errors are recorded on the span and then re-raised."""
        with pytest.raises(ValueError):
            with store_span("retrieve", "qdrant"):
                raise ValueError("Connection failed")

        mock_span.record_exception.assert_called_once()
        mock_span.set_status.assert_called_once()


class TestStageSpan:
    """Tests for the stage_span context manager."""

    def test_span_name_and_attributes(self, mock_span):
        with stage_span("search", "scoring"):
            pass

        call_args = mock_span.tracer.start_as_current_span.call_args
        assert call_args[0][0] == "ranking.search.scoring"
        mock_span.set_attribute.assert_any_call("ranking.flow", "search")
        mock_span.set_attribute.assert_any_call("ranking.stage", "scoring")

    def test_records_exception(self, mock_span):
        with pytest.raises(RuntimeError):
            with stage_span("discovery", "retrieving"):
                raise RuntimeError("boom")

        mock_span.record_exception.assert_called_once()
