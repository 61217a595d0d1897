"""Append-only audit trail for tickets and chats."""

from .recorder import AuditRecorder, AuditSubject, HistoryEntry

__all__ = ["AuditRecorder", "AuditSubject", "HistoryEntry"]
