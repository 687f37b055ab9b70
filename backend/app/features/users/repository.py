"""
User repository.

Data access layer for the User model.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.repository import BaseRepository
from .models import User


class UserRepository(BaseRepository[User]):
    """Repository for User operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, User)

    async def get_by_id(self, user_id: str) -> User | None:
        return await self.get_by(id=user_id)

    async def get_or_create(self, user_id: str, **kwargs) -> tuple[User, bool]:
        """
        Get existing user or create new one.

        Args:
            user_id: Dashboard user ID
            **kwargs: Additional fields for new user

        Returns:
            Tuple of (user, created) where created is True if new user was made
        """
        user = await self.get_by_id(user_id)
        if user:
            return user, False
        user = await self.create(id=user_id, **kwargs)
        return user, True
