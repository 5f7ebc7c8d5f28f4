"""
Prometheus metrics for upload runs.

Metrics Provided:
    - upload_requests_total: Counter of finished uploads by status
    - upload_bytes_total: Counter of source bytes uploaded
    - upload_retries_total: Counter of retry attempts
    - upload_duration_seconds: Histogram of per-file upload latency
    - uploads_in_flight: Gauge of uploads currently holding a worker slot
    - upload_errors_total: Counter of failed uploads by final error type

Usage:
    from gcs_publish.utils.metrics import get_metrics

    metrics = get_metrics()
    with metrics.track_upload():
        upload_file(key, path, options, store)
    metrics.record_upload_success(bytes_uploaded=1024)

    # Expose /metrics while a long upload runs:
    gcs-publish --metrics-port 9090 ...
"""

import os
from contextlib import nullcontext
from typing import Optional

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)

from gcs_publish import __version__
from gcs_publish.utils.logging import get_logger

logger = get_logger(__name__)


class PrometheusMetrics:
    """
    Centralized Prometheus metrics for the upload pipeline.

    Every recording method is a no-op when metrics are disabled, so callers
    never need to check ``enabled`` themselves.

    Example:
        >>> from prometheus_client import CollectorRegistry
        >>> metrics = PrometheusMetrics(registry=CollectorRegistry())
        >>> metrics.record_upload_success(bytes_uploaded=2048)
    """

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None) -> None:
        """
        Initialize metrics collectors.

        Args:
            enabled: Whether metrics collection is enabled
            registry: Prometheus registry (uses the default registry if None)
        """
        self.enabled = enabled
        self.registry = registry if registry is not None else REGISTRY

        if not self.enabled:
            logger.debug("Metrics collection disabled")
            return

        self.upload_requests = Counter(
            name="upload_requests_total",
            documentation="Total number of finished file uploads",
            labelnames=["status"],  # success, failure
            registry=self.registry,
        )

        self.upload_bytes = Counter(
            name="upload_bytes_total",
            documentation="Total source bytes uploaded",
            registry=self.registry,
        )

        self.upload_retries = Counter(
            name="upload_retries_total",
            documentation="Total number of upload retry attempts",
            registry=self.registry,
        )

        self.upload_duration = Histogram(
            name="upload_duration_seconds",
            documentation="Time spent uploading one file, retries included",
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
            registry=self.registry,
        )

        self.uploads_in_flight = Gauge(
            name="uploads_in_flight",
            documentation="Number of uploads currently holding a worker slot",
            registry=self.registry,
        )

        self.upload_errors = Counter(
            name="upload_errors_total",
            documentation="Failed uploads by final error type (local and storage)",
            labelnames=["error_type"],
            registry=self.registry,
        )

        self.app_info = Info(
            name="gcs_publish",
            documentation="Application metadata",
            registry=self.registry,
        )
        self.app_info.info({"version": __version__})

        logger.debug("PrometheusMetrics initialized")

    def track_upload(self):
        """
        Context manager timing one file upload.

        Example:
            >>> with metrics.track_upload():
            ...     upload_file(key, path, options, store)
        """
        if not self.enabled:
            return nullcontext()
        return self.upload_duration.time()

    def track_in_flight(self):
        """Context manager counting the enclosed block as an in-flight upload."""
        if not self.enabled:
            return nullcontext()
        return self.uploads_in_flight.track_inprogress()

    def record_upload_success(self, bytes_uploaded: int) -> None:
        """
        Record successful upload.

        Args:
            bytes_uploaded: Number of source bytes uploaded
        """
        if not self.enabled:
            return
        self.upload_requests.labels(status="success").inc()
        self.upload_bytes.inc(bytes_uploaded)

    def record_upload_failure(self, error_type: str) -> None:
        """
        Record upload that failed after exhausting its retries.

        Args:
            error_type: Class name of the final error
        """
        if not self.enabled:
            return
        self.upload_requests.labels(status="failure").inc()
        self.upload_errors.labels(error_type=error_type).inc()

    def record_retry(self) -> None:
        """Record one retry attempt."""
        if not self.enabled:
            return
        self.upload_retries.inc()


# Global metrics instance (singleton)
_metrics_instance: Optional[PrometheusMetrics] = None


def get_metrics() -> PrometheusMetrics:
    """
    Get global metrics instance (singleton).

    Collection is enabled unless METRICS_ENABLED is set to something other
    than "true".

    Returns:
        Global PrometheusMetrics instance
    """
    global _metrics_instance

    if _metrics_instance is None:
        enabled = os.getenv("METRICS_ENABLED", "true").lower() == "true"
        _metrics_instance = PrometheusMetrics(enabled=enabled)

    return _metrics_instance


def start_metrics_server(port: int = 9090, addr: str = "0.0.0.0") -> None:
    """
    Start the Prometheus exporter on a daemon thread.

    Args:
        port: Port to listen on
        addr: Address to bind to
    """
    logger.info(f"Starting Prometheus metrics server on {addr}:{port}")
    start_http_server(port=port, addr=addr)
    logger.info(f"Metrics server running at http://{addr}:{port}/metrics")
