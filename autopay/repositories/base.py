"""Base repository with common CRUD operations."""
from typing import TypeVar, Generic, Type, Optional, Dict, Any

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from autopay.app.exceptions import ConflictError, TransientError
from autopay.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository with common database operations.

    Writes are flushed but only committed when ``commit=True`` so that a
    service can compose several repository calls into one transaction.
    """

    def __init__(self, model: Type[ModelType], db: Session):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    def create(self, obj_in: Dict[str, Any], commit: bool = False) -> ModelType:
        """
        Create new record.

        Args:
            obj_in: Dictionary with object data
            commit: Commit immediately instead of only flushing

        Returns:
            Created model instance

        Raises:
            ConflictError: a unique constraint was violated
        """
        db_obj = self.model(**obj_in)
        self.db.add(db_obj)
        self.flush()
        if commit:
            self.commit()
        return db_obj

    def get(self, id: Any, fresh: bool = False) -> Optional[ModelType]:
        """
        Get record by primary key.

        Args:
            id: Primary key value
            fresh: Reload column values even if the instance is already in the session
        """
        if fresh:
            return self.db.get(self.model, id, populate_existing=True)
        return self.db.get(self.model, id)

    def get_by_field(self, field_name: str, field_value: Any) -> Optional[ModelType]:
        """Get record by specific field value."""
        if not hasattr(self.model, field_name):
            return None
        return self.db.query(self.model).filter(getattr(self.model, field_name) == field_value).first()

    def update(self, db_obj: ModelType, obj_in: Dict[str, Any], commit: bool = False) -> ModelType:
        """Set the given fields on an instance and flush."""
        for field, value in obj_in.items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)
        self.flush()
        if commit:
            self.commit()
        return db_obj

    def commit(self) -> None:
        """Commit current transaction."""
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"Conflicting {self.model.__tablename__} record") from exc
        except OperationalError as exc:
            self.db.rollback()
            raise TransientError() from exc

    def flush(self) -> None:
        """Flush changes to database without committing.

        Uniqueness violations surface as ConflictError and store
        unavailability as TransientError; the transaction is rolled back
        in both cases.
        """
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"Conflicting {self.model.__tablename__} record") from exc
        except OperationalError as exc:
            self.db.rollback()
            raise TransientError() from exc
