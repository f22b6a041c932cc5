from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "HTTP requests that ended in a server error",
    ["method", "path", "status"],
)

PAYMENT_WEBHOOKS = Counter(
    "payment_webhook_total",
    "Paylink webhook deliveries by outcome",
    ["outcome"],
)
PAYMENT_RECONCILE = Counter(
    "payment_reconcile_total",
    "Invoice verifications by result",
    ["result"],
)
PAYLINK_REQUESTS = Counter(
    "paylink_requests_total",
    "Outbound Paylink API calls",
    ["operation", "outcome"],
)
