"""
Structured operation logging for the index core.
Every line carries an operation name, a status and a details mapping.
"""

import logging
from typing import Any, Dict, Optional

from ..core.config import debug_enabled


class StructuredLogger:
    """Structured logger for index lifecycle, training, GPU and snapshot operations."""

    def __init__(self, name: str = "pgv_faiss"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if debug_enabled() else logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None,
                      level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_index_operation(self, operation: str, family: str, details: Dict[str, Any] = None,
                            status: str = "success"):
        """Log an operation against a single index handle."""
        log_details = {"family": family}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"index.{operation}", status, log_details, level)

    def log_training(self, family: str, from_state: str, to_state: str, sample_count: int,
                     status: str = "success", details: Dict[str, Any] = None):
        """Log a training state transition."""
        log_details = {
            "family": family,
            "from_state": from_state,
            "to_state": to_state,
            "sample_count": sample_count,
        }
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("training.transition", status, log_details, level)

    def log_gpu_acquired(self, device: int, temp_memory_bytes: int):
        """Log a successful GPU context acquisition."""
        log_details = {
            "device": device,
            "temp_memory_mb": round(temp_memory_bytes / (1024 * 1024), 2),
        }
        self.log_operation("gpu.acquire", "success", log_details)

    def log_gpu_fallback(self, device: int, reason: str):
        """Log a GPU acquisition failure that degrades to CPU."""
        log_details = {
            "device": device,
            "reason": reason[:200],
            "fallback": "cpu",
        }
        self.log_operation("gpu.acquire", "fallback", log_details, logging.WARNING)

    def log_gpu_released(self, device: int):
        """Log a GPU context release."""
        self.log_operation("gpu.release", "success", {"device": device}, logging.DEBUG)

    def log_snapshot(self, operation: str, size_bytes: int, details: Dict[str, Any] = None,
                     status: str = "success"):
        """Log snapshot encode/decode."""
        log_details = {"size_bytes": size_bytes}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"snapshot.{operation}", status, log_details, level)

    def log_storage(self, operation: str, key: str, size_bytes: Optional[int] = None,
                    status: str = "success"):
        """Log a blob store or vector table access."""
        log_details = {"key": key}
        if size_bytes is not None:
            log_details["size_bytes"] = size_bytes

        level = logging.DEBUG if status == "success" else logging.WARNING
        self.log_operation(f"storage.{operation}", status, log_details, level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
