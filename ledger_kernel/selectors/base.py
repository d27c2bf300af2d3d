"""
Module: ledger_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors form the read side of the kernel, providing structured access
    to ledger and inventory data without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors never call session.add(), delete(),
      flush() or commit().
    - Tenant scoping: every public query takes tenant_id explicitly and
      filters on it.
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Each public method issues its aggregate as one statement, so a
      caller never sees an entry with only some of its lines counted.

Audit relevance:
    Selectors derive every figure from journal lines and cost layers at
    query time.  There are no stored balances.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs or computed results.
    """

    def __init__(self, session: Session):
        self.session = session
