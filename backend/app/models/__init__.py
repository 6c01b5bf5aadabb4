from backend.app.models.activation_code import ActivationCode
from backend.app.models.admin_audit_log import AdminAuditLog
from backend.app.models.admin_identity import AdminIdentity
from backend.app.models.admin_session_revocation import AdminSessionRevocation

__all__ = [
    "ActivationCode",
    "AdminAuditLog",
    "AdminIdentity",
    "AdminSessionRevocation",
]
