class TaskPulseError(Exception):
    """Base exception for all taskpulse errors."""
    pass

class RecoverableError(TaskPulseError):
    """An error that can be recovered from without data loss."""
    pass

class FatalError(TaskPulseError):
    """An error that requires application termination or major intervention."""
    pass

class CorruptionError(FatalError):
    """Corrupted Data Error - from syntax errors in data formats, to just unknown data"""
    pass

class FileOperationError(RecoverableError):
    """File operation failed but can be retried."""
    pass

class MigrationNeededError(RecoverableError):
    """ Data is valid, but was written by a different schema version """
    pass

class ReferenceNotFound(RecoverableError):
    """A mutation references an id that is absent from the entity store."""

    def __init__(self, entity_type, entity_id, field: str = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.field = field
        label = getattr(entity_type, "value", entity_type)
        if field:
            message = f"{field} references unknown {label} {entity_id!r}"
        else:
            message = f"Unknown {label} {entity_id!r}"
        super().__init__(message)

class EntityNotFound(ReferenceNotFound):
    """The mutation target itself does not exist."""
    pass

class ConstraintViolation(RecoverableError):
    """Entity data breaks a uniqueness or validity rule."""
    pass

class TransportFailure(RecoverableError):
    """The persistence layer failed; the store was not touched."""
    pass

class StaleWriteDiscarded(RecoverableError):
    """ Not a failure - the originating view went away before the write resolved """

    def __init__(self, entity_type, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        label = getattr(entity_type, "value", entity_type)
        super().__init__(f"Discarded stale write for {label} {entity_id!r}")
