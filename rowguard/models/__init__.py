from rowguard.models.admin_email import AdminEmail, AdminEmailCreate
from rowguard.models.audit_log import PolicyAuditLog

__all__ = [
    "AdminEmail",
    "AdminEmailCreate",
    "PolicyAuditLog",
]
