from prometheus_client import Counter, Histogram


class Metrics:
    def __init__(self):
        # engine metrics
        self.ranking_requests = Counter(
            "ranking_requests_total",
            "Completed ranking requests",
            ["flow", "source"],  # flow: "recommendation", "search", "discovery"
        )

        self.ranking_failures = Counter(
            "ranking_failures_total",
            "Failed ranking requests",
            ["flow", "kind"],  # kind: error kind, e.g. "timeout", "not_found"
        )

        self.stage_duration = Histogram(
            "ranking_stage_duration_seconds",
            "Latency of each ranking pipeline stage",
            ["flow", "stage"],
            buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        self.candidates_retrieved = Histogram(
            "candidates_retrieved",
            "Candidate set size after retrieval",
            ["flow"],
            buckets=(0, 5, 10, 25, 50, 100, 250, 500, 1000),
        )

        self.items_excluded_history = Counter(
            "items_excluded_history_total",
            "Candidates excluded because the user already interacted with them",
        )

        self.filter_applied = Counter(
            "filter_applied_total",
            "Search filters applied",
            ["attribute"],
        )

        # store metrics
        self.store_operation_duration = Histogram(
            "store_operation_duration_seconds",
            "Item/profile store operation latency",
            ["operation"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        self.pool_cache_requests = Counter(
            "pool_cache_requests_total",
            "Popular pool cache lookups",
            ["result"],  # "hit", "miss", "error", "bypass"
        )

        # recommendation quality metrics
        self.recommendation_diversity = Histogram(
            "recommendation_diversity_score",
            "Intra-list diversity of returned items (avg pairwise cosine distance)",
            buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
        )


# singleton instance
metrics = Metrics()


def setup_metrics(app):
    """
    setup prometheus metrics instrumentation for fastapi.
    it auto-instruments all http endpoints with request count/latency.
    """
    from prometheus_fastapi_instrumentator import Instrumentator

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        excluded_handlers=["/health/live", "/health/ready", "/metrics"],
    )

    instrumentator.instrument(app).expose(app, include_in_schema=False)
