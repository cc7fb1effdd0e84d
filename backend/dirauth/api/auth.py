import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dirauth.config import settings
from dirauth.database import get_db
from dirauth.models.user import User
from dirauth.schemas.user import Token, UserLogin, UserOut
from dirauth.services.auth import TokenSession, get_current_user, verify_password
from dirauth.services.directory import DirectoryClient
from dirauth.services.events import dispatcher
from dirauth.services.ldap_auth import LdapAuthenticator, LdapBackend, get_directory_client
from dirauth.services.users import UserStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=Token)
async def login(
    data: UserLogin,
    db: AsyncSession = Depends(get_db),
    client: DirectoryClient = Depends(get_directory_client),
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials",
    )
    users = UserStore(db)
    session = TokenSession()

    # Local accounts are checked against their own password only
    user = await users.get_by_username(data.username)
    if user is not None and not user.is_ldap_user:
        if not verify_password(data.password, user.password_hash):
            raise credentials_exception
        session.refresh(user)
        return Token(access_token=session.access_token, user=UserOut.model_validate(user))

    if not settings.ldap_enabled:
        raise credentials_exception

    backend = LdapBackend(LdapAuthenticator(client), users, session, dispatcher)
    if not await backend.authenticate(data.username, data.password):
        raise credentials_exception

    return Token(access_token=session.access_token, user=UserOut.model_validate(session.user))


@router.get("/me", response_model=UserOut)
async def get_me(current_user: User = Depends(get_current_user)):
    return UserOut.model_validate(current_user)


@router.get("/config")
async def get_auth_config():
    """Public endpoint to check auth configuration."""
    return {
        "ldap_enabled": settings.ldap_enabled,
        "account_creation": settings.ldap_enabled and settings.ldap_account_creation,
    }
