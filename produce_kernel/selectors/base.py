"""
Module: produce_kernel.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/ and models/.
    Selectors never add, flush, delete or commit.

Selectors return frozen dataclasses rather than ORM instances, so callers
outside the kernel never hold a live, lazily-loading model.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Holds the caller's session; subclasses implement the queries."""

    def __init__(self, session: Session):
        self.session = session
