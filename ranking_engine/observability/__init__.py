from ranking_engine.observability.metrics import metrics, setup_metrics
from ranking_engine.observability.tracing import setup_tracing, stage_span, store_span

__all__ = ["metrics", "setup_metrics", "setup_tracing", "stage_span", "store_span"]
