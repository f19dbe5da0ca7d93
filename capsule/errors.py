"""Error taxonomy shared by the ledger and the HTTP API.

Numeric codes are stable: integrators match on them, so never renumber.
"""

from enum import IntEnum


class ErrorCode(IntEnum):
    NOT_ADMIN = 100
    ALREADY_PROCESSED = 101
    STILL_PENDING = 102
    MISSING = 103
    LOCKED = 104
    INVALID_TIMEOUT = 105
    INVALID_SUBJECT_LENGTH = 106
    INVALID_CONTENT_LENGTH = 107
    INVALID_TYPE = 108
    DISABLED = 109
    SELF_INTERACTION = 110  # reserved, no operation raises it
    NETWORK_PAUSED = 111
    INVALID_TAGS = 112
    INVALID_HASH = 113
    INVALID_TARGET = 114
    INVALID_PRIVATE_FLAG = 115

    @property
    def slug(self) -> str:
        """Wire name, e.g. ``still-pending``."""
        return self.name.lower().replace("_", "-")


# HTTP status used when a failed Result crosses the API boundary
HTTP_STATUS = {
    ErrorCode.NOT_ADMIN: 403,
    ErrorCode.ALREADY_PROCESSED: 409,
    ErrorCode.STILL_PENDING: 425,
    ErrorCode.MISSING: 404,
    ErrorCode.LOCKED: 403,
    ErrorCode.INVALID_TIMEOUT: 400,
    ErrorCode.INVALID_SUBJECT_LENGTH: 400,
    ErrorCode.INVALID_CONTENT_LENGTH: 400,
    ErrorCode.INVALID_TYPE: 400,
    ErrorCode.DISABLED: 410,
    ErrorCode.SELF_INTERACTION: 403,
    ErrorCode.NETWORK_PAUSED: 503,
    ErrorCode.INVALID_TAGS: 400,
    ErrorCode.INVALID_HASH: 400,
    ErrorCode.INVALID_TARGET: 400,
    ErrorCode.INVALID_PRIVATE_FLAG: 400,
}


class LedgerError(Exception):
    """Raised by a ledger guard; converted to a failed Result by the caller."""

    def __init__(self, code: ErrorCode):
        super().__init__(code.slug)
        self.code = code
