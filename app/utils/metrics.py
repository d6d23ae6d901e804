"""
Metrics Collection for the calendar backend.

Provides in-process counters for plan writes, month cache traffic and alarm dispatch.
"""

import time
from typing import Dict, Any, Callable
from collections import defaultdict
from datetime import datetime
import functools
import threading


class MetricsCollector:
    """Collects and manages metrics for the plan service."""

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics = defaultdict(int)
        self.timers = defaultdict(float)
        self.lock = threading.Lock()

        # Initialize counters
        for name in (
            "plans_created_total",
            "plans_updated_total",
            "plans_deleted_total",
            "plan_conflicts_total",
            "month_cache_hits_total",
            "month_cache_misses_total",
            "month_cache_evictions_total",
            "alarms_sent_total",
            "alarms_failed_total",
        ):
            self.metrics[name] = 0

    def increment_counter(self, metric_name: str, value: int = 1):
        """Increment a counter metric."""
        with self.lock:
            self.metrics[metric_name] += value

    def record_timer(self, metric_name: str, duration: float):
        """Record a timing metric."""
        with self.lock:
            self.timers[metric_name] += duration

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics values."""
        with self.lock:
            return {
                "counters": dict(self.metrics),
                "timers": dict(self.timers),
                "timestamp": datetime.utcnow().isoformat()
            }

    def reset(self):
        with self.lock:
            for name in self.metrics:
                self.metrics[name] = 0
            self.timers.clear()

    def cache_hit(self):
        self.increment_counter("month_cache_hits_total")

    def cache_miss(self):
        self.increment_counter("month_cache_misses_total")

    def time_operation(self, metric_name: str) -> Callable:
        """Decorator that adds the wrapped call's duration to a timer."""
        def decorator(func):
            @functools.wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return func(*args, **kwargs)
                finally:
                    self.record_timer(metric_name, time.time() - start_time)
            return wrapper
        return decorator


# Global metrics instance
metrics_collector = MetricsCollector()
