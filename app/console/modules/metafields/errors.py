from __future__ import annotations


class MetafieldError(Exception):
    """Base for every error the metafield engine raises."""

    status_code = 400
    code = "metafield_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class DefinitionConflict(MetafieldError):
    status_code = 409
    code = "definition_conflict"


class DuplicateKeyError(DefinitionConflict):
    code = "duplicate_key"

    def __init__(self, owner_type: str, namespace: str, key: str):
        super().__init__(f"A {owner_type} metafield {namespace}.{key} already exists.")
        self.owner_type = owner_type
        self.namespace = namespace
        self.key = key


class InvalidDefinition(DefinitionConflict):
    """Definition payload rejected at save time (missing fields, bad rules JSON, bad regex)."""

    status_code = 400
    code = "invalid_definition"


class DefinitionInUse(DefinitionConflict):
    code = "definition_in_use"

    def __init__(self, definition_id: int, value_count: int):
        super().__init__(
            f"Metafield definition {definition_id} still has {value_count} stored value(s); "
            "delete with cascade to remove them."
        )
        self.definition_id = definition_id
        self.value_count = value_count


class NotFound(MetafieldError):
    status_code = 404
    code = "not_found"


class ValidationFailure(MetafieldError):
    code = "validation_failed"

    def __init__(self, message: str, *, field: str | None = None, index: int | None = None):
        super().__init__(message)
        self.field = field
        self.index = index

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.field is not None:
            d["field"] = self.field
        if self.index is not None:
            d["index"] = self.index
        return d


class MalformedInput(ValidationFailure):
    code = "malformed_input"


class TransportError(MetafieldError):
    """Failure of an external collaborator (database, remote API); message is passed through."""

    status_code = 502
    code = "transport_error"

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause

    @classmethod
    def from_exception(cls, exc: BaseException) -> "TransportError":
        return cls(str(exc), cause=exc)
