"""
Shared utilities for gcs-publish.

- logging: Structured logging with entry/exit decorators
- retry: Exponential backoff with jitter
- config / config_loader: Settings from flags, environment and YAML
- metrics: Prometheus collectors for upload runs
"""

from gcs_publish.utils.logging import get_logger, log_function_call

__all__ = ["get_logger", "log_function_call"]
