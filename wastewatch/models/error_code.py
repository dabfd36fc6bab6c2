from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable error codes returned to API clients."""

    BAD_REQUEST = "BAD_REQUEST"
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
    UNSUPPORTED_MEDIA = "UNSUPPORTED_MEDIA"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    STORAGE_FAILED = "STORAGE_FAILED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
