"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session-handling contract.  Kernel services use
    ``session.flush()`` -- never ``session.commit()``.  The payroll module
    service owns commit/rollback.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from payroll_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()``; the caller controls
          transaction boundaries.
    """

    def __init__(self, session: Session):
        self.session = session
