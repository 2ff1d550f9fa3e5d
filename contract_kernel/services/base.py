"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service in the kernel.  Concrete services receive a
    SQLAlchemy ``Session`` that they use via ``session.flush()`` --
    never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (ContractRegistry, or a test harness) owns commit/rollback, which is
      what makes "allocate number + write rows + record history" atomic.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models -- those belong in
          ``contract_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
