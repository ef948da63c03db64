"""
Error taxonomy for the commission engine.

Every error carries a stable ``code`` that callers (the HTTP adapter,
bulk result lists) report instead of the Python class name.
"""

from typing import Optional


class CommissionError(Exception):
    """Base class for all engine errors."""

    code = "CommissionError"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(CommissionError):
    """Referenced sale, partner, rule or commission does not exist."""

    code = "NotFound"

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class DuplicateCommission(CommissionError):
    """A commission already exists for the (sale, partner) pair."""

    code = "DuplicateCommission"

    def __init__(self, sale_id: int, partner_id: int) -> None:
        super().__init__(
            f"Commission already exists for sale {sale_id} and partner {partner_id}"
        )
        self.sale_id = sale_id
        self.partner_id = partner_id


class InvalidState(CommissionError):
    """Transition is not allowed from the record's current status."""

    code = "InvalidState"


class AmountExceedsPending(CommissionError):
    """Payment is larger than the remaining pending balance."""

    code = "AmountExceedsPending"

    def __init__(self, amount, pending) -> None:
        super().__init__(f"Payment amount {amount} exceeds pending commission {pending}")
        self.amount = amount
        self.pending = pending


class InvalidCalculation(CommissionError):
    """Rule produced a negative or nonsensical commission."""

    code = "InvalidCalculation"


class RuleMismatch(InvalidCalculation):
    """Rule has no rate for the sale (unit type, volume band, validity window)."""


class InvalidInput(CommissionError):
    """Malformed operation arguments."""

    code = "InvalidInput"


class RuleValidationError(CommissionError):
    """Rule configuration failed validation at save time."""

    code = "ValidationError"

    def __init__(self, errors: list[str], warnings: Optional[list[str]] = None) -> None:
        super().__init__("Validation failed: " + ", ".join(errors))
        self.errors = errors
        self.warnings = warnings or []


class ConcurrentModification(CommissionError):
    """Another transaction changed the record first. Safe to retry."""

    code = "ConcurrentModification"
    retryable = True
