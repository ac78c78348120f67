"""Typed, recoverable failures raised by the registry and the queue engine.

The API layer maps each ``code`` to a transport status; nothing here is
process-fatal.
"""


class QueueError(Exception):
    """Base class for expected queue failures."""

    code = "queue_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(QueueError):
    """A referenced patient or visit does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class PatientNotFoundError(NotFoundError):
    """The patient a visit should be created for does not exist."""

    code = "patient_not_found"

    def __init__(self, patient_id: str):
        super().__init__("Patient", patient_id)


class DuplicatePhoneError(QueueError):
    """The phone number already belongs to a different patient."""

    code = "duplicate_phone"

    def __init__(self, phone: str):
        super().__init__(f"A patient with phone {phone} already exists")
        self.phone = phone


class InvalidTransitionError(QueueError):
    """The requested status is not the sanctioned successor of the current one."""

    code = "invalid_transition"

    def __init__(self, current: str, requested: str | None = None):
        if requested is None:
            message = f"Visit is {current} and cannot advance any further"
        else:
            message = f"Cannot move a visit from {current} to {requested}"
        super().__init__(message)
        self.current = current
        self.requested = requested


class FieldValidationError(QueueError):
    """A required field is missing or a value is malformed."""

    code = "validation_error"


class QueueNumberConflictError(QueueError):
    """A ledger already holds this queue number for the day."""

    code = "queue_number_conflict"

    def __init__(self, queue_number: int):
        super().__init__(f"Queue number {queue_number} is already taken for this day")
        self.queue_number = queue_number
