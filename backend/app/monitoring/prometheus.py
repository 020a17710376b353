# backend/app/monitoring/prometheus.py
import time

from prometheus_client import Counter, Histogram

# Endpoint label for requests no route matched, keeping label values bounded
UNMATCHED_ENDPOINT = "unmatched"


def get_http_requests_total():
    """
    Returns a singleton Counter for total HTTP requests.
    Ensures the metric is only registered once per process.
    """
    if not hasattr(get_http_requests_total, "_counter"):
        get_http_requests_total._counter = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"]
        )
    return get_http_requests_total._counter


def get_http_request_duration_seconds():
    """
    Returns a singleton Histogram for HTTP request duration.
    """
    if not hasattr(get_http_request_duration_seconds, "_histogram"):
        get_http_request_duration_seconds._histogram = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"]
        )
    return get_http_request_duration_seconds._histogram


def get_provider_requests_total():
    """
    Returns a singleton Counter for calls to the verification provider,
    labelled by gateway operation and outcome (ok, provider_error, transport_error).
    """
    if not hasattr(get_provider_requests_total, "_counter"):
        get_provider_requests_total._counter = Counter(
            "kyc_provider_requests_total",
            "Requests sent to the identity verification provider",
            ["operation", "outcome"]
        )
    return get_provider_requests_total._counter


def get_provider_request_duration_seconds():
    """
    Returns a singleton Histogram for provider call latency.
    """
    if not hasattr(get_provider_request_duration_seconds, "_histogram"):
        get_provider_request_duration_seconds._histogram = Histogram(
            "kyc_provider_request_duration_seconds",
            "Identity verification provider request duration in seconds",
            ["operation"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
        )
    return get_provider_request_duration_seconds._histogram


def get_webhook_events_total():
    """
    Returns a singleton Counter for ingested webhooks.
    """
    if not hasattr(get_webhook_events_total, "_counter"):
        get_webhook_events_total._counter = Counter(
            "kyc_webhook_events_total",
            "Verification webhooks received",
            ["classification", "outcome"]
        )
    return get_webhook_events_total._counter


def get_links_created_total():
    """
    Returns a singleton Counter for verification links minted, by mode (single, bulk).
    """
    if not hasattr(get_links_created_total, "_counter"):
        get_links_created_total._counter = Counter(
            "kyc_links_created_total",
            "Verification links created",
            ["mode"]
        )
    return get_links_created_total._counter


def setup_metrics(app):
    """
    Setup Prometheus metrics middleware for FastAPI application.
    """
    @app.middleware("http")
    async def metrics_middleware(request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        # The matched route is only known once routing has run
        route = request.scope.get("route")
        endpoint = getattr(route, "path", UNMATCHED_ENDPOINT)

        get_http_request_duration_seconds().labels(
            method=request.method,
            endpoint=endpoint
        ).observe(duration)
        get_http_requests_total().labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code
        ).inc()

        return response
