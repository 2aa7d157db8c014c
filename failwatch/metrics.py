from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

REQUESTS_TOTAL = Counter(
    "failwatch_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REJECTIONS_TOTAL = Counter(
    "failwatch_rejections_total",
    "Requests rejected by credential validation",
    ["reason"],
)
ALERTS_TOTAL = Counter(
    "failwatch_alerts_total",
    "Threshold alerts by delivery outcome",
    ["outcome"],
)
STORE_ERRORS_TOTAL = Counter(
    "failwatch_store_errors_total",
    "Failure store read/write errors",
    ["operation"],
)
TRACKED_ORIGINS = Gauge("failwatch_tracked_origins", "Origins currently held by the window tracker")


__all__ = [
    "CONTENT_TYPE_LATEST",
    "REQUESTS_TOTAL",
    "REJECTIONS_TOTAL",
    "ALERTS_TOTAL",
    "STORE_ERRORS_TOTAL",
    "TRACKED_ORIGINS",
    "generate_latest",
]
