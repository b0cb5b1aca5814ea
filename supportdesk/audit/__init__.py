"""Audit trail of support actions."""

from .sink import AuditLogger

__all__ = ["AuditLogger"]
