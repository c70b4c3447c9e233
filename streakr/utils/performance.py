"""
Performance monitoring utilities for Streakr
Provides decorators and context managers for timing settlement and API work
"""

import functools
import time

from flask import current_app, g, has_app_context, has_request_context, request

from streakr.utils.logging_config import get_logger

logger = get_logger(__name__)


def timer(func):
    """
    Decorator to time function execution

    Args:
        func: Function to time

    Returns:
        Wrapped function with timing
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            execution_time = time.time() - start_time

            threshold = current_app.config.get("SLOW_FUNCTION_THRESHOLD", 1.0)
            if execution_time > threshold:
                logger.warning(
                    f"Slow function {func.__name__} took {execution_time:.2f}s "
                    f"(threshold: {threshold}s)"
                )
            else:
                logger.debug(
                    f"Function {func.__name__} executed in {execution_time:.2f}s"
                )

            return result

        except Exception as e:
            execution_time = time.time() - start_time
            logger.error(
                f"Function {func.__name__} failed after {execution_time:.2f}s: {str(e)}"
            )
            raise

    return wrapper


class PerformanceMonitor:
    """Context manager for monitoring performance of code blocks"""

    def __init__(self, operation_name, log_threshold=0.1):
        self.operation_name = operation_name
        self.log_threshold = log_threshold
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time

        if self.duration > self.log_threshold:
            if exc_type:
                logger.error(
                    f"Operation '{self.operation_name}' failed after {self.duration:.3f}s: {exc_val}"
                )
            else:
                logger.info(
                    f"Operation '{self.operation_name}' completed in {self.duration:.3f}s"
                )

        # Store in Flask's g for request-level aggregation
        if has_app_context():
            metrics = g.setdefault("performance_metrics", [])
            metrics.append(
                {
                    "operation": self.operation_name,
                    "duration": self.duration,
                    "success": exc_type is None,
                }
            )


def track_request_performance():
    """Track overall request performance"""
    g.request_start_time = time.time()


def log_request_performance(response):
    """Log request performance summary"""
    if not has_request_context() or not hasattr(g, "request_start_time"):
        return response

    total_duration = time.time() - g.request_start_time

    threshold = current_app.config.get("SLOW_REQUEST_THRESHOLD", 2.0)
    if total_duration > threshold:
        logger.warning(
            f"Slow request: {request.method} {request.path} "
            f"took {total_duration:.2f}s (threshold: {threshold}s)"
        )

        for metric in g.get("performance_metrics", []):
            logger.info(
                f"  - {metric['operation']}: {metric['duration']:.3f}s "
                f"({'success' if metric['success'] else 'failed'})"
            )

    return response
