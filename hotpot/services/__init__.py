"""
Service layer exports.
"""

from .alert_service import AlertService

__all__ = ["AlertService"]
