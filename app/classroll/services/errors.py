# app/classroll/services/errors.py

# --- Service layer exception hierarchy ---
# Routers translate these into HTTP responses; see api/utilities/errors.py.

class ServiceError(Exception):
    """General exception class for the service layer."""
    pass


# --- Authentication ---

class AuthenticationError(ServiceError):
    """Missing, malformed or rejected credential."""
    pass

class TokenExpiredError(AuthenticationError):
    pass

class InvalidTokenError(AuthenticationError):
    pass


# --- Validation (rejected before any mutation) ---

class ValidationError(ServiceError):
    """Input violates a domain rule."""
    pass

class InvalidAttendanceCounts(ValidationError):
    """present <= total <= possible does not hold."""
    pass

class InvalidPhoneNumber(ValidationError):
    pass


# --- Missing entities ---

class NotFoundError(ServiceError):
    pass

class ProfileNotFound(NotFoundError):
    pass

class SubjectNotFound(NotFoundError):
    pass

class QueueItemNotFound(NotFoundError):
    pass

class RecordNotFound(NotFoundError):
    pass


# --- Conflicts (caller must refresh state before retrying) ---

class ConflictError(ServiceError):
    pass

class DuplicateSubject(ConflictError):
    pass

class DuplicateQueueItem(ConflictError):
    pass

class ConcurrentModificationError(ConflictError):
    """The profile kept changing underneath us until the retry budget ran out."""
    pass


# --- Infrastructure ---

class ExternalServiceError(ServiceError):
    """Messaging, identity or assistant provider failure."""
    pass

class PersistenceError(ServiceError):
    """The store could not be reached or rejected the write."""
    pass
