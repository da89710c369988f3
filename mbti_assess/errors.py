from __future__ import annotations


class AssessmentError(Exception):
    # Base class for domain errors (intended, meaningful failures).
    pass


class StorageError(AssessmentError):
    # Raised by a single storage backend; never escapes the tiered storage.
    pass


class StorageQuotaExceeded(StorageError):
    # Backend is full; the tiered storage evicts and retries once.
    pass


class StorageUnavailable(StorageError):
    # Backend cannot be reached at all (missing directory, dead connection).
    pass


class ContentError(AssessmentError):
    # Static YAML content is missing or malformed.
    pass


class SessionNotFound(AssessmentError):
    # No live or persisted state for the given session id.
    pass


class PhaseViolation(AssessmentError):
    # Operation is not allowed in the session's current phase.
    pass


class SessionExpired(AssessmentError):
    # Session exists but its expiry window has passed.
    pass
