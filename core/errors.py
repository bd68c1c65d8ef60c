"""
Typed failures raised by the catalog engine.

Every rejected operation raises one of these; the HTTP layer maps ``kind``
to a status code.
"""
from typing import Any, Dict, Optional


class EngineError(Exception):
    kind = "EngineError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.message}


class ValidationError(EngineError):
    """Malformed or out-of-range input, detected before any write."""

    kind = "ValidationError"

    def __init__(self, field: str, rule: str, message: Optional[str] = None):
        self.field = field
        self.rule = str(rule)
        super().__init__(message or f"Invalid value for '{field}': {self.rule}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(field=self.field, rule=self.rule)
        return data


class ConflictError(EngineError):
    """Uniqueness violation, e.g. a duplicate sku."""

    kind = "ConflictError"

    def __init__(self, field: str, rule: str = "Duplicate", message: Optional[str] = None):
        self.field = field
        self.rule = str(rule)
        super().__init__(message or f"A record with this '{field}' already exists")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(field=self.field, rule=self.rule)
        return data


class NotFoundError(EngineError):
    kind = "NotFoundError"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(entity=self.entity, id=self.entity_id)
        return data


class InsufficientStockError(EngineError):
    kind = "InsufficientStockError"

    def __init__(self, product_id: int, requested: int, available: Optional[int] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for product {product_id}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(productId=self.product_id, requested=self.requested, available=self.available)
        return data


class StorageFailure(EngineError):
    """The store is unreachable or a transaction aborted unexpectedly."""

    kind = "StorageFailure"

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)
