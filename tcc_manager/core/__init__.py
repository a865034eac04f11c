from .errors import TCCManagerError
from .models import AppRecord, PermissionState, ServiceKind

__all__ = ["AppRecord", "PermissionState", "ServiceKind", "TCCManagerError"]
