"""Prometheus metrics for acctflow.

Provides pre-defined metrics for monitoring parsing, classification
and batch writes.
"""

from prometheus_client import Counter, Gauge, Histogram, Info, start_http_server

# Application info
APP_INFO = Info(
    "acctflow",
    "acctflow application information",
)

# Input metrics
LINES_READ = Counter(
    "acctflow_lines_read_total",
    "Total number of input lines read",
)

RECORDS_PARSED = Counter(
    "acctflow_records_parsed_total",
    "Total number of flow records successfully parsed",
)

LINES_REJECTED = Counter(
    "acctflow_lines_rejected_total",
    "Total number of input lines skipped by the parser",
    ["reason"],
)

QUEUE_SIZE = Gauge(
    "acctflow_queue_size",
    "Current number of records waiting between reader and writer",
)

# Classification metrics
RECORDS_CLASSIFIED = Counter(
    "acctflow_records_classified_total",
    "Total number of flow records classified",
    ["direction", "traffic_class"],
)

# Storage metrics
BATCHES_FLUSHED = Counter(
    "acctflow_batches_flushed_total",
    "Total number of batches written to storage",
)

RECORDS_FLUSHED = Counter(
    "acctflow_records_flushed_total",
    "Total number of records written to storage",
)

WRITE_FAILURES = Counter(
    "acctflow_write_failures_total",
    "Total number of failed storage operations",
    ["operation"],
)

BATCH_SIZE = Histogram(
    "acctflow_batch_size",
    "Size of flushed batches",
    buckets=[10, 100, 1000, 5000, 10000, 25000, 50000, 100000, 250000],
)

FLUSH_LATENCY = Histogram(
    "acctflow_flush_latency_seconds",
    "Time to write a batch to storage",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)


def set_app_info(version: str, environment: str) -> None:
    """Set application info metric.

    Args:
        version: Application version.
        environment: Deployment environment.
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })


def start_metrics_server(port: int, bind_address: str = "0.0.0.0") -> bool:
    """Start the Prometheus HTTP exporter.

    Args:
        port: Listen port. 0 disables the exporter.
        bind_address: Listen address.

    Returns:
        True if the exporter was started.
    """
    if port == 0:
        return False
    start_http_server(port, addr=bind_address)
    return True
