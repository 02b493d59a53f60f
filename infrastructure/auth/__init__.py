from .authorizer import ROLE_PERMISSIONS, RoleBasedAuthorizer
from .audit_logger import StructlogAuditLogger

__all__ = ["ROLE_PERMISSIONS", "RoleBasedAuthorizer", "StructlogAuditLogger"]
