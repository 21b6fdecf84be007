"""
Base repository class providing common database operations.
"""

from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from repositories.database import Base

T = TypeVar("T", bound=Base)  # type: ignore[type-arg]


class BaseRepository(Generic[T]):
    """
    Base repository over a single SQLAlchemy model.

    Repositories never commit on their own except through create(); the
    service layer owns transaction boundaries via commit()/rollback().
    """

    def __init__(self, model: type[T], db: Session):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    def get_by_id(self, id: object) -> T | None:
        """
        Get entity by primary key.

        Args:
            id: Entity ID

        Returns:
            Entity if found, None otherwise
        """
        return self.db.query(self.model).filter(self.model.id == id).first()

    def add(self, entity: T) -> None:
        """Add entity to session without committing."""
        self.db.add(entity)

    def add_all(self, entities: list[T]) -> None:
        """Add multiple entities to session without committing."""
        self.db.add_all(entities)

    def create(self, entity: T) -> T:
        """
        Persist a new entity and commit.

        Args:
            entity: Entity to create

        Returns:
            Created entity, refreshed from the database
        """
        self.db.add(entity)
        self.db.commit()
        self.db.refresh(entity)
        return entity

    def commit(self) -> None:
        """Commit the current transaction."""
        self.db.commit()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.db.flush()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.db.rollback()

    def refresh(self, entity: T) -> None:
        """Refresh entity from database."""
        self.db.refresh(entity)
