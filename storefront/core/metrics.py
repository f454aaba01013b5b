from prometheus_client import Counter, Histogram


KAFKA_PRODUCER_START_TOTAL = Counter(
    "storefront_kafka_producer_start_total",
    "Kafka producer start events",
    ["service", "result"],
)

KAFKA_PRODUCER_STOP_TOTAL = Counter(
    "storefront_kafka_producer_stop_total",
    "Kafka producer stop events",
    ["service", "result"],
)

KAFKA_PRODUCER_MESSAGES_TOTAL = Counter(
    "storefront_kafka_producer_messages_total",
    "Kafka producer send events",
    ["service", "result"],
)

CART_DB_OPERATIONS_TOTAL = Counter(
    "storefront_cart_db_operations_total",
    "Cart DB operations",
    ["service", "operation", "status"],
)

ORDERS_DB_OPERATIONS_TOTAL = Counter(
    "storefront_orders_db_operations_total",
    "Orders DB operations",
    ["service", "operation", "status"],
)

CHECKOUT_STEPS_TOTAL = Counter(
    "storefront_checkout_steps_total",
    "Order creation workflow steps",
    ["service", "step", "status"],
)

AUTH_TOKEN_VALIDATION_TOTAL = Counter(
    "storefront_auth_token_validation_total",
    "Authentication token validation events in Storefront service",
    ["service", "result"],
)

HTTP_REQUESTS_TOTAL = Counter(
    "storefront_http_requests_total",
    "Total HTTP requests",
    ["service", "method", "path", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "storefront_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["service", "method", "path"],
)

ORDERS_API_REQUESTS_TOTAL = Counter(
    "storefront_orders_api_requests_total",
    "Orders API request events",
    ["service", "endpoint", "method", "status"],
)

CART_API_REQUESTS_TOTAL = Counter(
    "storefront_cart_api_requests_total",
    "Cart API request events",
    ["service", "endpoint", "method", "status"],
)
