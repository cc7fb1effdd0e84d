from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from dirauth.models.base import Base, IntegerPrimaryKey, TimestampMixin

AUTH_SOURCE_LOCAL = "local"
AUTH_SOURCE_LDAP = "ldap"


class User(Base, IntegerPrimaryKey, TimestampMixin):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Only local accounts carry a password; directory users verify against LDAP
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_admin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="false", default=False
    )
    auth_source: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default=AUTH_SOURCE_LOCAL
    )  # 'local' or 'ldap'

    @property
    def is_ldap_user(self) -> bool:
        return self.auth_source == AUTH_SOURCE_LDAP
