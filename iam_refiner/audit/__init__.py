"""
Audit Package.

Exports the AuditLogger recording per-principal run outcomes.
"""

from .audit_logger import AuditLogger

__all__ = ["AuditLogger"]
