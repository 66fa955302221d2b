"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Common plumbing for all repositories:
- Session injection
- SQLAlchemy error translation
- Query / commit helpers with logging

============================================================
"""

import logging
from abc import ABC
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    TransactionError,
)


# Type variable for ORM model
T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base class for all repositories.
    
    ============================================================
    USAGE
    ============================================================
    class MyRepository(BaseRepository[MyModel]):
        def __init__(self, session: Session):
            super().__init__(session, MyModel, "MyRepository")
    
    ============================================================
    """
    
    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")
    
    @property
    def session(self) -> Session:
        return self._session
    
    @property
    def repository_name(self) -> str:
        return self._repository_name
    
    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================
    
    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Translate a database error into a repository exception.
        
        Raises:
            RepositoryException: Always
        """
        self._logger.error(
            f"Database error in {operation}: {error}",
            extra={"context": context or {}},
        )
        
        if isinstance(error, OperationalError):
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error
        
        if isinstance(error, SQLAlchemyIntegrityError):
            error_str = str(error).lower()
            if "duplicate" in error_str or "unique" in error_str:
                raise DuplicateRecordError(
                    repository_name=self._repository_name,
                    operation=operation,
                    constraint=self._model_class.__tablename__,
                    value=context,
                ) from error
            
            raise IntegrityError(
                repository_name=self._repository_name,
                operation=operation,
                message=str(error)
            ) from error
        
        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            original_error=str(error)
        ) from error
    
    def _add(self, entity: T) -> T:
        """Add an entity and flush so generated keys are available."""
        try:
            self._session.add(entity)
            self._session.flush()
            return entity
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "add", {"entity": str(entity)})
            raise
    
    def _execute_query(self, stmt: Any, operation: str = "query") -> List[Any]:
        """Execute a select and return all scalar results."""
        try:
            return list(self._session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise
    
    def _execute_rows(self, stmt: Any, operation: str = "query") -> List[Any]:
        """Execute a select and return row tuples."""
        try:
            return list(self._session.execute(stmt).all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise
    
    def _execute_scalar(self, stmt: Any, operation: str = "query_scalar") -> Optional[Any]:
        """Execute a select and return a single result or None."""
        try:
            return self._session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise
    
    def _commit(self, operation: str = "commit") -> None:
        """
        Commit the current transaction.
        
        Raises:
            TransactionError: If commit fails
        """
        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise TransactionError(
                repository_name=self._repository_name,
                operation=operation,
                phase="commit",
                original_error=str(e)
            ) from e
