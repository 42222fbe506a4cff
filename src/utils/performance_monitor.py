# ========================
# src/utils/performance_monitor.py
# ========================

"""
Performance Monitoring Utilities

Tracks elapsed time, throughput and resident memory of ingestion runs.
"""

import os
import time
import logging
from contextlib import contextmanager
from typing import Dict, Any

import psutil

logger = logging.getLogger(__name__)

class PerformanceMonitor:
    """
    Performance monitoring utility for the ingestion pipeline.
    Tracks memory usage, processing time, and throughput.
    """

    def __init__(self, name: str = "Pipeline", log_interval: int = 100):
        """
        Initialize performance monitor.

        Args:
            name (str): Name for this monitoring session
            log_interval (int): Log a progress line every this many batches
        """
        self.name = name
        self.log_interval = log_interval
        self.start_time = None
        self.end_time = None
        self.peak_memory_bytes = 0
        self.rows_processed = 0
        self.batches_processed = 0
        self._process = psutil.Process(os.getpid())

        logger.debug(f"PerformanceMonitor initialized: {name}")

    def start_monitoring(self) -> None:
        """Start performance monitoring."""
        self.start_time = time.perf_counter()
        self.peak_memory_bytes = self.current_memory_bytes()

        logger.debug(f"{self.name} - Performance monitoring started, "
                     f"initial memory: {self.peak_memory_bytes / (1024 * 1024):.2f} MB")

    def update_progress(self, rows_in_batch: int) -> int:
        """
        Record one processed batch.

        Args:
            rows_in_batch (int): Number of rows in this batch

        Returns:
            int: Current resident memory in bytes
        """
        self.rows_processed += rows_in_batch
        self.batches_processed += 1
        current_memory = self.current_memory_bytes()
        self.peak_memory_bytes = max(self.peak_memory_bytes, current_memory)

        if self.log_interval and self.batches_processed % self.log_interval == 0:
            self._log_progress(current_memory)
        return current_memory

    def current_memory_bytes(self) -> int:
        """Resident set size of this process in bytes."""
        try:
            return self._process.memory_info().rss
        except psutil.Error as e:
            logger.debug(f"Could not get memory usage: {e}")
            return 0

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time

    def _log_progress(self, current_memory: int) -> None:
        """Log current progress."""
        elapsed = self.elapsed_seconds
        throughput = self.rows_processed / elapsed if elapsed > 0 else 0

        logger.info(
            f"{self.name} - Progress: {self.batches_processed} batches, "
            f"{self.rows_processed:,} rows, "
            f"{throughput:.0f} rows/sec, "
            f"Memory: {current_memory / (1024 * 1024):.2f} MB"
        )

    def stop_monitoring(self) -> Dict[str, Any]:
        """
        Stop monitoring and return performance summary.

        Returns:
            dict: Performance statistics
        """
        self.end_time = time.perf_counter()
        total_time = self.elapsed_seconds
        throughput = self.rows_processed / total_time if total_time > 0 else 0

        summary = {
            'name': self.name,
            'total_processing_time_seconds': total_time,
            'rows_processed': self.rows_processed,
            'batches_processed': self.batches_processed,
            'average_throughput_rows_per_second': throughput,
            'peak_memory_bytes': self.peak_memory_bytes,
        }

        logger.info(
            f"{self.name} - Finished in {total_time:.2f}s: "
            f"{self.rows_processed:,} rows in {self.batches_processed} batches, "
            f"{throughput:.0f} rows/sec, "
            f"peak memory {self.peak_memory_bytes / (1024 * 1024):.2f} MB"
        )
        return summary

@contextmanager
def monitor_performance(name: str = "Pipeline", log_interval: int = 100):
    """
    Context manager for easy performance monitoring.

    Args:
        name (str): Name for this monitoring session
        log_interval (int): Batches between progress log lines

    Yields:
        PerformanceMonitor: Monitor instance
    """
    monitor = PerformanceMonitor(name, log_interval)
    monitor.start_monitoring()
    try:
        yield monitor
    finally:
        monitor.stop_monitoring()
