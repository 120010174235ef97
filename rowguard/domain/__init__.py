from rowguard.domain.admin_email_operations import admin_email_ops
from rowguard.domain.audit_log_operations import audit_log_ops

__all__ = [
    "admin_email_ops",
    "audit_log_ops",
]
