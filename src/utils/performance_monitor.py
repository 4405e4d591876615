# ========================
# src/utils/performance_monitor.py
# ========================

"""
Performance Monitoring Utilities

Tracks elapsed time, throughput and process memory for each pipeline pass.
"""

import time
import os
import logging
from contextlib import contextmanager
from typing import Dict, Any, Optional

import psutil

logger = logging.getLogger(__name__)


class PerformanceMonitor:
    """
    Performance monitor for one pipeline pass.
    Counts sites and samples processed and the peak resident memory.
    """

    def __init__(self, name: str = "Pipeline", log_every: int = 100):
        """
        Initialize performance monitor.

        Args:
            name (str): Name for this monitoring session
            log_every (int): Log progress every N sites
        """
        self.name = name
        self.log_every = log_every
        self.start_time = None
        self.end_time = None
        self.peak_memory_mb = 0.0
        self.sites_processed = 0
        self.samples_processed = 0
        self.checkpoints = []
        self.summary = None
        self._process = psutil.Process(os.getpid())

    def start_monitoring(self) -> None:
        """Start performance monitoring."""
        self.start_time = time.time()
        self.peak_memory_mb = self._get_memory_usage_mb()
        logger.info(f"{self.name} - monitoring started, memory {self.peak_memory_mb:.2f} MB")

    def update_progress(self, samples_in_site: int) -> None:
        """
        Record one finished site.

        Args:
            samples_in_site (int): Number of samples the site contributed
        """
        self.samples_processed += samples_in_site
        self.sites_processed += 1
        current_memory = self._get_memory_usage_mb()
        self.peak_memory_mb = max(self.peak_memory_mb, current_memory)

        if self.sites_processed % self.log_every == 0:
            self._log_progress(current_memory)

    def add_checkpoint(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Add a performance checkpoint.

        Args:
            name (str): Checkpoint name
            metadata (dict): Optional metadata to store
        """
        checkpoint = {
            'name': name,
            'timestamp': time.time(),
            'memory_mb': self._get_memory_usage_mb(),
            'sites_processed': self.sites_processed,
            'samples_processed': self.samples_processed,
            'metadata': metadata or {}
        }
        self.checkpoints.append(checkpoint)
        logger.debug(f"Checkpoint '{name}': {checkpoint}")

    def _log_progress(self, current_memory: float) -> None:
        if self.start_time:
            elapsed = time.time() - self.start_time
            throughput = self.samples_processed / elapsed if elapsed > 0 else 0
            logger.info(
                f"{self.name} - Progress: {self.sites_processed} sites, "
                f"{self.samples_processed:,} samples, "
                f"{throughput:.0f} samples/sec, "
                f"Memory: {current_memory:.2f} MB"
            )

    def stop_monitoring(self) -> Dict[str, Any]:
        """
        Stop monitoring and return performance summary.

        Returns:
            dict: Performance statistics
        """
        self.end_time = time.time()
        total_time = self.end_time - self.start_time if self.start_time else 0
        throughput = self.samples_processed / total_time if total_time > 0 else 0

        summary = {
            'name': self.name,
            'total_processing_time_seconds': total_time,
            'sites_processed': self.sites_processed,
            'samples_processed': self.samples_processed,
            'average_throughput_samples_per_second': throughput,
            'peak_memory_usage_mb': self.peak_memory_mb,
            'checkpoints': self.checkpoints
        }

        logger.info(
            f"{self.name} - finished in {total_time:.2f}s: {self.sites_processed} sites, "
            f"{self.samples_processed:,} samples, peak memory {self.peak_memory_mb:.2f} MB"
        )
        return summary

    def _get_memory_usage_mb(self) -> float:
        """Current resident memory in MB."""
        try:
            return self._process.memory_info().rss / (1024 * 1024)
        except psutil.Error as e:
            logger.debug(f"Could not get memory usage: {e}")
            return 0.0


@contextmanager
def monitor_performance(name: str = "Pipeline"):
    """
    Context manager for easy performance monitoring.

    Args:
        name (str): Name for this monitoring session

    Yields:
        PerformanceMonitor: Monitor instance
    """
    monitor = PerformanceMonitor(name)
    monitor.start_monitoring()
    try:
        yield monitor
    finally:
        monitor.summary = monitor.stop_monitoring()
