# packhouse/errors.py

from typing import Any, Dict


class PackhouseError(Exception):
    """Base for every failure a caller can act on.

    ``kind`` is the machine-readable tag, ``message`` the text shown to the
    operator, and ``context`` any extra fields a caller needs to disambiguate
    (e.g. the token of the session it could resume).
    """

    kind = "Error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.context}


# ---------- lookup / input ----------

class NotFound(PackhouseError):
    kind = "NotFound"
    status_code = 404


class InvalidInput(PackhouseError):
    kind = "InvalidInput"
    status_code = 422


# ---------- state preconditions ----------

class PreconditionFailed(PackhouseError):
    kind = "PreconditionFailed"
    status_code = 409


class NotDeleted(PreconditionFailed):
    kind = "NotDeleted"


class WrongShipmentKind(PreconditionFailed):
    kind = "WrongShipmentKind"


class IncompleteSessionSet(PreconditionFailed):
    kind = "IncompleteSessionSet"


class NoSealedCartons(PreconditionFailed):
    kind = "NoSealedCartons"


# ---------- scan validation / ledger ----------

class ItemNotInOrder(NotFound):
    kind = "ItemNotInOrder"


class NotYetPicked(PreconditionFailed):
    kind = "NotYetPicked"


class QuantityExceeded(PackhouseError):
    kind = "QuantityExceeded"
    status_code = 409


class FullyPackedInSession(PackhouseError):
    kind = "FullyPackedInSession"
    status_code = 409


# ---------- idempotency guards ----------

class SessionAlreadyActive(PackhouseError):
    kind = "AlreadyActive"
    status_code = 409


class AlreadyShipped(PackhouseError):
    kind = "AlreadyShipped"
    status_code = 409


# ---------- store ----------

class BackingStoreError(PackhouseError):
    kind = "BackingStoreError"
    status_code = 503


class ConstraintViolation(BackingStoreError):
    """A unique/foreign key constraint rejected the write."""


class StoreTimeout(BackingStoreError):
    kind = "Timeout"
    status_code = 504


class WriteConflict(BackingStoreError):
    """The store picked this transaction as a deadlock or serialization victim."""

    kind = "Conflict"
    status_code = 409
