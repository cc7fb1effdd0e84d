import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dirauth.models.user import AUTH_SOURCE_LDAP, AUTH_SOURCE_LOCAL, User

logger = logging.getLogger(__name__)


class UserStore:
    """Local user records, looked up and created by username."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_username(self, username: str) -> User | None:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def create(self, values: dict[str, Any]) -> bool:
        user = User(
            username=values["username"],
            name=values.get("name") or "",
            email=values.get("email") or "",
            password_hash=values.get("password_hash"),
            is_admin=bool(values.get("is_admin", False)),
            auth_source=AUTH_SOURCE_LDAP if values.get("is_ldap_user") else AUTH_SOURCE_LOCAL,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Unable to create user '{values['username']}': {e}")
            return False
        await self.db.refresh(user)
        return True
