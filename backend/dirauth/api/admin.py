import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dirauth.config import settings
from dirauth.database import get_db
from dirauth.models.user import AUTH_SOURCE_LDAP, AUTH_SOURCE_LOCAL, User
from dirauth.services.auth import get_current_user
from dirauth.services.directory import DirectoryClient, DirectoryStatus
from dirauth.services.ldap_auth import LdapAuthenticator, get_directory_client

router = APIRouter(prefix="/api/admin", tags=["admin"])


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


class LdapConfig(BaseModel):
    ldap_enabled: bool = False
    ldap_server: str = ""
    ldap_port: int = 389
    ldap_ssl_verify: bool = True
    ldap_start_tls: bool = False
    ldap_username_case_sensitive: bool = False
    ldap_bind_type: str = "anonymous"
    ldap_username: str = ""
    ldap_password: str = ""
    ldap_account_creation: bool = True
    ldap_account_base: str = ""
    ldap_user_pattern: str = "(uid={username})"
    ldap_account_fullname: str = "displayname"
    ldap_account_email: str = "mail"
    ldap_account_id: str = "uid"


class DirectoryUserOut(BaseModel):
    username: str
    name: str
    email: str


@router.get("/ldap-config", response_model=LdapConfig)
async def get_ldap_config(admin: User = Depends(require_admin)):
    """Get current LDAP configuration (admin only)."""
    return LdapConfig(
        ldap_enabled=settings.ldap_enabled,
        ldap_server=settings.ldap_server,
        ldap_port=settings.ldap_port,
        ldap_ssl_verify=settings.ldap_ssl_verify,
        ldap_start_tls=settings.ldap_start_tls,
        ldap_username_case_sensitive=settings.ldap_username_case_sensitive,
        ldap_bind_type=settings.ldap_bind_type,
        ldap_username=settings.ldap_username,
        ldap_password="***" if settings.ldap_password else "",
        ldap_account_creation=settings.ldap_account_creation,
        ldap_account_base=settings.ldap_account_base,
        ldap_user_pattern=settings.ldap_user_pattern,
        ldap_account_fullname=settings.ldap_account_fullname,
        ldap_account_email=settings.ldap_account_email,
        ldap_account_id=settings.ldap_account_id,
    )


@router.get("/ldap-lookup", response_model=DirectoryUserOut)
async def ldap_lookup(
    username: str | None = Query(default=None),
    email: str | None = Query(default=None),
    admin: User = Depends(require_admin),
    client: DirectoryClient = Depends(get_directory_client),
):
    """Resolve a directory account by username and/or email (admin only)."""
    if not settings.ldap_enabled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="LDAP is not enabled",
        )
    if not username and not email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username or email required",
        )

    result = await asyncio.to_thread(
        LdapAuthenticator(client).lookup, username=username, email=email
    )
    if result.status is DirectoryStatus.ERROR:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="LDAP server unavailable",
        )
    if not result.found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found in directory",
        )
    return DirectoryUserOut(
        username=result.user.username,
        name=result.user.name,
        email=result.user.email,
    )


@router.get("/stats")
async def get_admin_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Get user statistics (admin only)."""
    total_users = await db.execute(select(func.count(User.id)))
    ldap_users = await db.execute(
        select(func.count(User.id)).where(User.auth_source == AUTH_SOURCE_LDAP)
    )
    local_users = await db.execute(
        select(func.count(User.id)).where(User.auth_source == AUTH_SOURCE_LOCAL)
    )
    admin_users = await db.execute(
        select(func.count(User.id)).where(User.is_admin == True)
    )
    return {
        "total_users": total_users.scalar(),
        "ldap_users": ldap_users.scalar(),
        "local_users": local_users.scalar(),
        "admin_users": admin_users.scalar(),
        "ldap_enabled": settings.ldap_enabled,
    }
