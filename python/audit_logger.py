"""
Ledger Audit Logging Module

Provides a structured audit trail for credit ledger events:
- Transactions appended and rejected
- Officer status changes
- Snapshot reconciliations
- Query settlements and officer registrations

Every event is one JSON object per line in audit.log. User supplied text
(remarks, names, references) is sanitized before it is written so a crafted
value cannot forge extra log entries.
"""

import contextvars
import json
import logging
import re
import uuid
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

AUDIT_LOGGER_NAME = "ledger.audit"

_request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("audit_request_id", default="")
_actor_var: contextvars.ContextVar[str] = contextvars.ContextVar("audit_actor", default="")
_source_ip_var: contextvars.ContextVar[str] = contextvars.ContextVar("audit_source_ip", default="")


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:500] if len(sanitized) > 500 else sanitized


@dataclass
class LedgerEvent:
    """Structured audit event"""
    event_type: str  # e.g., TRANSACTION_APPENDED, STATUS_CHANGED
    severity: str = "INFO"  # INFO, WARNING, ERROR
    officer_id: str = ""
    action: str = ""
    error_code: str = ""
    request_id: str = ""
    actor: str = ""
    source_ip: str = ""
    details: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'officer_id': self.officer_id,
            'action': self.action,
            'error_code': self.error_code,
            'request_id': self.request_id,
            'actor': self.actor,
            'source_ip': self.source_ip,
            'details': self.details
        }

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


class AuditLogger:
    """Writes ledger audit events with structured output

    Features:
    - Separate audit.log file
    - JSON-formatted events for easy parsing
    - Automatic sanitization of free text
    - Request ID correlation (per request context, safe across threads)
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.INFO,
        enable_console: bool = False,
        enable_file: bool = True
    ):
        """Initialize audit logger

        Args:
            log_dir: Directory for log files
            log_level: Minimum log level to record
            enable_console: Also output to console
            enable_file: Write to audit.log file
        """
        self.log_dir = Path(log_dir)
        self.enable_file = enable_file

        self.logger = logging.getLogger(AUDIT_LOGGER_NAME)
        self.logger.setLevel(log_level)
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(
            '%(asctime)s - AUDIT - %(levelname)s - %(message)s'
        )

        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_path, encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

    @property
    def log_path(self) -> Path:
        return self.log_dir / "audit.log"

    # ------------------------------------------
    # Request context
    # ------------------------------------------

    def set_request_context(
        self,
        request_id: Optional[str] = None,
        actor: str = "",
        source_ip: str = ""
    ) -> str:
        """Set context for the current request

        Args:
            request_id: Unique request identifier (auto-generated if None)
            actor: Administrator performing the request, if known
            source_ip: Source IP address if available

        Returns:
            The request ID being used
        """
        request_id = request_id or f"REQ-{uuid.uuid4().hex[:8]}"
        _request_id_var.set(request_id)
        _actor_var.set(actor)
        _source_ip_var.set(source_ip)
        return request_id

    def clear_request_context(self) -> None:
        """Clear the current request context"""
        _request_id_var.set("")
        _actor_var.set("")
        _source_ip_var.set("")

    # ------------------------------------------
    # Sanitization
    # ------------------------------------------

    def _sanitize_input(self, text: str, max_length: int = 200) -> str:
        """Sanitize text for safe logging, truncating long values"""
        if not text:
            return ""
        sanitized = sanitize_for_logging(text)
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_details(self, details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize all values in a details dictionary

        Numbers, booleans and None pass through; everything else is
        converted to a sanitized string. Nested dicts are handled
        recursively.
        """
        if not details:
            return {}

        sanitized = {}
        for key, value in details.items():
            safe_key = self._sanitize_input(str(key), max_length=100) if key else "unknown"

            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_details(value)
            elif isinstance(value, (list, tuple, set, frozenset)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else self._sanitize_input(str(item))
                    for item in value
                ]
            else:
                sanitized[safe_key] = self._sanitize_input(str(value))

        return sanitized

    # ------------------------------------------
    # Events
    # ------------------------------------------

    def _emit(
        self,
        event_type: str,
        severity: str = "INFO",
        officer_id: Any = "",
        action: str = "",
        error_code: str = "",
        details: Optional[Dict[str, Any]] = None
    ) -> LedgerEvent:
        event = LedgerEvent(
            event_type=event_type,
            severity=severity,
            officer_id=str(officer_id) if officer_id else "",
            action=action,
            error_code=error_code,
            request_id=_request_id_var.get(),
            actor=self._sanitize_input(_actor_var.get(), max_length=100),
            source_ip=_source_ip_var.get(),
            details=self._sanitize_details(details)
        )

        if severity == "ERROR":
            self.logger.error(event.to_json())
        elif severity == "WARNING":
            self.logger.warning(event.to_json())
        else:
            self.logger.info(event.to_json())
        return event

    def log_transaction_appended(
        self,
        officer_id: Any,
        action: str,
        credits: int,
        previous_balance: int,
        new_balance: int,
        sequence: int,
        transaction_id: Any,
        processed_by: Optional[str] = None,
        remarks: Optional[str] = None
    ) -> LedgerEvent:
        """Log a committed credit transaction"""
        return self._emit(
            "TRANSACTION_APPENDED",
            officer_id=officer_id,
            action=action,
            details={
                'transaction_id': transaction_id,
                'sequence': sequence,
                'credits': credits,
                'previous_balance': previous_balance,
                'new_balance': new_balance,
                'processed_by': processed_by,
                'remarks': remarks
            }
        )

    def log_transaction_rejected(
        self,
        officer_id: Any,
        action: str,
        error_code: str,
        reason: str,
        amount: Any = None
    ) -> LedgerEvent:
        """Log an append that was refused or failed before commit"""
        return self._emit(
            "TRANSACTION_REJECTED",
            severity="WARNING",
            officer_id=officer_id,
            action=action,
            error_code=error_code,
            details={'reason': reason, 'amount': amount}
        )

    def log_status_changed(self, officer_id: Any, old_status: str, new_status: str) -> LedgerEvent:
        """Log an officer status transition"""
        return self._emit(
            "STATUS_CHANGED",
            officer_id=officer_id,
            details={'old_status': old_status, 'new_status': new_status}
        )

    def log_reconciled(
        self,
        officer_id: Any,
        credits_remaining: int,
        total_credits: int,
        changed: bool
    ) -> LedgerEvent:
        """Log an explicit snapshot reconciliation

        A reconciliation that had to change the snapshot means something
        wrote it outside the ledger, so it is logged as a warning.
        """
        return self._emit(
            "SNAPSHOT_RECONCILED",
            severity="WARNING" if changed else "INFO",
            officer_id=officer_id,
            details={
                'credits_remaining': credits_remaining,
                'total_credits': total_credits,
                'changed': changed
            }
        )

    def log_officer_registered(self, officer_id: Any, name: str) -> LedgerEvent:
        return self._emit("OFFICER_REGISTERED", officer_id=officer_id, details={'name': name})

    def log_query_settled(
        self,
        officer_id: Any,
        query_id: Any,
        credits: int,
        transaction_id: Any = None
    ) -> LedgerEvent:
        return self._emit(
            "QUERY_SETTLED",
            officer_id=officer_id,
            details={
                'query_id': query_id,
                'credits': credits,
                'transaction_id': transaction_id
            }
        )


# Global audit logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger(
    log_dir: str = "logs",
    enable_console: bool = False,
    enable_file: bool = True
) -> AuditLogger:
    """Get or create the global audit logger instance

    Args:
        log_dir: Directory for log files
        enable_console: Also output to console
        enable_file: Write audit.log

    Returns:
        AuditLogger instance
    """
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger(
            log_dir=log_dir,
            enable_console=enable_console,
            enable_file=enable_file
        )
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset the global audit logger (for testing)"""
    global _audit_logger
    if _audit_logger is not None:
        for handler in list(_audit_logger.logger.handlers):
            _audit_logger.logger.removeHandler(handler)
            handler.close()
    _audit_logger = None
