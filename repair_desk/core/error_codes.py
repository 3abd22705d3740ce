from enum import StrEnum


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"

    ALREADY_VOIDED = "ALREADY_VOIDED"
    ALREADY_INVOICED = "ALREADY_INVOICED"
    INVALID_STATUS = "INVALID_STATUS"
    SLOT_CONFLICT = "SLOT_CONFLICT"
    TECH_ALREADY_PUNCHED_IN = "TECH_ALREADY_PUNCHED_IN"
    STRIPE_NOT_CONNECTED = "STRIPE_NOT_CONNECTED"
    NOT_CONFIGURED = "NOT_CONFIGURED"
