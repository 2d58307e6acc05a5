from typing import Generic, TypeVar, Type, Optional, List, Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from doclink.utils.logging import get_logger

# Define a generic type for SQLAlchemy models
ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Base repository implementing common CRUD operations.

    Repositories only flush. Committing or rolling back is left to the
    service that owns the unit of work, so several repository calls can
    share one transaction.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        """Initialize the repository.

        Args:
            session: SQLAlchemy async session
            model: The SQLAlchemy model class this repository manages
        """
        self.session = session
        self.model = model
        self.logger = LOGGER

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """Get a record by its ID.

        Args:
            id: The primary key of the record

        Returns:
            The record if found, None otherwise
        """
        try:
            query = select(self.model).where(self.model.id == id)
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error retrieving {self.model.__name__} by ID {id}: {str(e)}",
                exc_info=True
            )
            raise

    async def find_ids_by_field(
        self,
        field: str,
        value: Any,
        active_only: bool = True
    ) -> List[int]:
        """Get the IDs of records whose ``field`` equals ``value``.

        Args:
            field: Column name to filter on
            value: Exact value to match
            active_only: Restrict to records with ``active`` set

        Returns:
            Matching IDs in ascending order
        """
        try:
            query = select(self.model.id).where(getattr(self.model, field) == value)
            if active_only and hasattr(self.model, "active"):
                query = query.where(self.model.active.is_(True))
            result = await self.session.execute(query.order_by(self.model.id))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error querying {self.model.__name__} by {field}: {str(e)}",
                exc_info=True
            )
            raise

    async def create(self, **kwargs) -> ModelType:
        """Create a new record.

        Args:
            **kwargs: Fields and values for the new record

        Returns:
            The created record, flushed so its ID is assigned
        """
        try:
            instance = self.model(**kwargs)
            self.session.add(instance)
            await self.session.flush()
            return instance
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error creating {self.model.__name__}: {str(e)}",
                exc_info=True
            )
            raise

    async def update(self, id: int, **kwargs) -> Optional[ModelType]:
        """Update an existing record.

        Args:
            id: The primary key of the record to update
            **kwargs: Fields and values to update

        Returns:
            The updated record if found, None otherwise
        """
        try:
            instance = await self.get_by_id(id)
            if not instance:
                return None

            for key, value in kwargs.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)

            await self.session.flush()
            return instance
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error updating {self.model.__name__} {id}: {str(e)}",
                exc_info=True
            )
            raise

    async def delete(self, id: int) -> bool:
        """Delete a record by ID.

        Args:
            id: The primary key of the record to delete

        Returns:
            True if deleted, False if not found
        """
        try:
            instance = await self.get_by_id(id)
            if not instance:
                return False

            await self.session.delete(instance)
            await self.session.flush()
            return True
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error deleting {self.model.__name__} {id}: {str(e)}",
                exc_info=True
            )
            raise
