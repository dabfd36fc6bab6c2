from .base import Base
from .error_code import ErrorCode
from .point_award import PointAward
from .report import Report, ReportStatus
from .user import User

__all__ = [
    "Base",
    "ErrorCode",
    "PointAward",
    "Report",
    "ReportStatus",
    "User",
]
