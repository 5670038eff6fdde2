"""
RestQL error taxonomy of the write pipeline
"""

import enum
from typing import Optional


@enum.unique
class Reason(enum.Enum):
    NO_IDENTITY = "no unique index matches the record"
    HETEROGENEOUS_BATCH = "batch records have differing field sets"
    INVALID_PAYLOAD = "payload has the wrong shape for this operation"
    INVALID_QUERY = "query is invalid for this resource"
    UNSUPPORTED = "operation is not supported for this resource"
    UNKNOWN_RESOURCE = "resource is not registered"
    UNKNOWN_ASSOCIATION = "association is not defined"
    NOT_FOUND = "row does not exist"
    DUPLICATE = "a live row with the same identity exists"
    UNDECODABLE_CONFLICT = "uniqueness violation cannot be decoded"
    VANISHED_CONFLICT = "conflicting row cannot be found"
    DESYNC = "store and resolver disagree about the written rows"
    STORE_FAILURE = "the store failed to execute the operation"


class RestQLError(Exception):
    """
    Base class for all errors raised by the write pipeline

    Every error carries the name of the affected resource (model) and a
    specific reason, so that callers can tell the different failure cases
    apart without inspecting store-specific error messages.
    """

    status_code: int = 500

    def __init__(self, resource: str, reason: Reason, detail: Optional[str] = None):
        super().__init__(f"{resource}: {reason.value}" + (f" ({detail})" if detail else ""))
        self.resource = resource
        self.reason = reason
        self.detail = detail


class ValidationError(RestQLError):
    """
    Error for malformed input, never retried
    """

    status_code = 400


class NotFoundError(RestQLError):
    """
    Error when a referenced resource, association or row is absent
    """

    status_code = 404


class ConflictError(RestQLError):
    """
    Error for unresolved, undecodable or disallowed uniqueness violations
    """

    status_code = 409


class InternalError(RestQLError):
    """
    Error for resolver/store desyncs and unclassified store failures
    """

    status_code = 500
