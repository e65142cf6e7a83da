from prometheus_client import Counter, Histogram

# ---- HTTP ----
REQS = Counter("http_requests_total", "Total HTTP requests", ["service", "path", "method", "status"])
LAT = Histogram("http_request_duration_seconds", "Request latency", ["service", "path", "method"])

# ---- Orders ----
ORDERS_CREATED = Counter("orders_created_total", "Orders created successfully")
ORDERS_FAILED = Counter("order_create_failures_total", "Order create failures", ["reason"])
ORDER_TRANSITIONS = Counter("order_status_transitions_total", "Order status transitions applied", ["old", "new"])
ORDER_TRANSITION_FAILED = Counter("order_status_failures_total", "Order status transitions rejected", ["reason"])
ORDERS_DELETED = Counter("orders_deleted_total", "Orders deleted by an admin")
