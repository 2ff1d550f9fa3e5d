"""
Typed Exception Hierarchy for the Contract Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (web handlers, batch jobs, the office desktop client)
must react differently to "fix your input", "the contract is not in the
right state" and "the database went away".  Parsing message strings for
that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        registry.liquidate_contract(contract_id)
    except IllegalTransitionError as e:
        api_response(code=e.code, state=e.current_state, operation=e.operation)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LandContractError (base)
    |
    +-- ValidationError
    |   +-- MissingFieldError
    |
    +-- StateError
    |   +-- IllegalTransitionError
    |
    +-- ConflictError
    |
    +-- UnavailableError
    |
    +-- NotFoundError
    |   +-- ContractNotFoundError
    |   +-- LiquidationRecordNotFoundError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|------------------------------------------
Validation    | VALIDATION_ERROR            | Input rejected before any write
              | MISSING_FIELD               | Required text field empty or blank
--------------|-----------------------------|------------------------------------------
State         | STATE_ERROR                 | Operation not allowed in current state
              | ILLEGAL_TRANSITION          | Lifecycle table has no such edge
--------------|-----------------------------|------------------------------------------
Conflict      | CONFLICT                    | Unique constraint fired; rolled back
--------------|-----------------------------|------------------------------------------
Unavailable   | UNAVAILABLE                 | Storage/transport failure; retryable
--------------|-----------------------------|------------------------------------------
Not found     | CONTRACT_NOT_FOUND          | Contract ID does not exist
              | LIQUIDATION_RECORD_NOT_FOUND| Liquidation record ID does not exist
--------------|-----------------------------|------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION      | Update/delete of append-only data

===============================================================================
HANDLING PATTERNS
===============================================================================

ValidationError and StateError are surfaced to the user and never retried.
ConflictError indicates an allocator defect; nothing was persisted.
UnavailableError may be retried by the caller with the same idempotency key.
"""


class LandContractError(Exception):
    """
    Base exception for all contract kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LAND_CONTRACT_ERROR"


# Validation


class ValidationError(LandContractError):
    """Input was rejected before any state was touched."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class MissingFieldError(ValidationError):
    """A required text field was empty or blank."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str):
        super().__init__(f"Required field is missing or blank: {field}", field=field)


# Lifecycle state


class StateError(LandContractError):
    """Operation attempted from a lifecycle state that does not allow it."""

    code: str = "STATE_ERROR"


class IllegalTransitionError(StateError):
    """The lifecycle transition table has no edge for this operation."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, contract_id: str, operation: str, current_state: str):
        self.contract_id = contract_id
        self.operation = operation
        self.current_state = current_state
        super().__init__(
            f"Cannot {operation} contract {contract_id} in state {current_state}"
        )


# Storage


class ConflictError(LandContractError):
    """
    A uniqueness constraint was violated.

    Under a correct allocator this never happens; when it does the whole
    operation has been rolled back and nothing partial is persisted.
    """

    code: str = "CONFLICT"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Conflict during {operation}: {detail}")


class UnavailableError(LandContractError):
    """Storage or transport failure.  Safe to retry with the same idempotency key."""

    code: str = "UNAVAILABLE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage unavailable during {operation}: {detail}")


# Lookups


class NotFoundError(LandContractError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ContractNotFoundError(NotFoundError):
    """Contract with given ID was not found."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Contract not found: {contract_id}")


class LiquidationRecordNotFoundError(NotFoundError):
    """Liquidation record with given ID was not found."""

    code: str = "LIQUIDATION_RECORD_NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Liquidation record not found: {record_id}")


# Immutability


class ImmutabilityViolationError(LandContractError):
    """Attempt to modify or delete append-only or immutable data."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
