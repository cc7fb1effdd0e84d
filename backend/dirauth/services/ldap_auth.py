"""LDAP/Active Directory authentication service."""

import asyncio
import logging
from dataclasses import dataclass

from dirauth.config import Settings, settings
from dirauth.services.directory import (
    ConnectionOptions,
    DirectoryClient,
    DirectoryConnection,
    DirectoryStatus,
)
from dirauth.services.events import AuthEvent, EventDispatcher
from dirauth.services.users import UserStore

logger = logging.getLogger(__name__)

AUTH_SUCCESS_EVENT = "auth.success"

BIND_ANONYMOUS = "anonymous"
BIND_PROXY = "proxy"
BIND_USER = "user"


@dataclass
class DirectoryUser:
    username: str
    name: str = ""
    email: str = ""


@dataclass
class DirectoryResult:
    status: DirectoryStatus
    user: DirectoryUser | None = None

    @property
    def found(self) -> bool:
        return self.status is DirectoryStatus.SUCCESS and self.user is not None


class LdapAuthenticator:
    """Find and verify accounts in the directory.

    The connection is first bound according to ``ldap_bind_type`` only to get
    permission to search; the password check itself is a second bind as the
    DN of the entry that was found.
    """

    def __init__(self, client: DirectoryClient, config: Settings | None = None):
        self.client = client
        self.config = config or settings

    def connect(self) -> DirectoryConnection | None:
        return self.client.connect(ConnectionOptions.from_settings(self.config))

    def bind(
        self,
        handle: DirectoryConnection,
        username: str | None,
        password: str | None,
        bind_type: str | None = None,
    ) -> DirectoryStatus:
        bind_type = bind_type or self.config.ldap_bind_type

        if bind_type == BIND_USER:
            from ldap3.utils.dn import escape_rdn

            dn = self.config.ldap_username.replace("{username}", escape_rdn(username) if username else "")
            secret = password
        elif bind_type == BIND_PROXY:
            dn = self.config.ldap_username
            secret = self.config.ldap_password
        else:
            dn = None
            secret = None

        return self.client.bind(handle, dn, secret)

    def user_filter(self, username: str) -> str:
        from ldap3.utils.conv import escape_filter_chars

        return self.config.ldap_user_pattern.replace(
            "{username}", escape_filter_chars(username)
        )

    def email_filter(self, email: str) -> str:
        from ldap3.utils.conv import escape_filter_chars

        return f"({self.config.ldap_account_email}={escape_filter_chars(email)})"

    def find_user(self, username: str, password: str) -> DirectoryResult:
        """Search the account and check its password.

        Returns a result carrying the normalized user only when both the
        search and the bind as the found entry succeeded.
        """
        handle = self.connect()
        if handle is None:
            return DirectoryResult(DirectoryStatus.ERROR)

        try:
            status = self.bind(handle, username, password)
            if status is not DirectoryStatus.SUCCESS:
                return DirectoryResult(status)
            return self._search(handle, username, password)
        finally:
            self.client.close(handle)

    def _search(
        self, handle: DirectoryConnection, username: str, password: str
    ) -> DirectoryResult:
        result = self.client.search(
            handle,
            self.config.ldap_account_base,
            self.user_filter(username),
            [self.config.ldap_account_fullname, self.config.ldap_account_email],
        )
        if result.status is DirectoryStatus.ERROR:
            return DirectoryResult(DirectoryStatus.ERROR)
        if not result.entries:
            logger.debug(f"LDAP: User '{username}' not found")
            return DirectoryResult(DirectoryStatus.NOT_FOUND)

        entry = result.entries[0]

        # An empty password would turn the check into an unauthenticated bind
        if not password:
            return DirectoryResult(DirectoryStatus.NOT_FOUND)

        status = self.client.bind(handle, entry.dn, password)
        if status is not DirectoryStatus.SUCCESS:
            return DirectoryResult(status)

        return DirectoryResult(
            DirectoryStatus.SUCCESS,
            DirectoryUser(
                username=username,
                name=entry.first(self.config.ldap_account_fullname),
                email=entry.first(self.config.ldap_account_email),
            ),
        )

    def lookup_filter(self, username: str | None = None, email: str | None = None) -> str | None:
        if username and email:
            return f"(&{self.user_filter(username)}{self.email_filter(email)})"
        if username:
            return self.user_filter(username)
        if email:
            return self.email_filter(email)
        return None

    def lookup(self, username: str | None = None, email: str | None = None) -> DirectoryResult:
        """Resolve a directory account by username and/or email.

        No end-user password is involved: the connection is bound with the
        service account in proxy mode and anonymously otherwise.
        """
        if not username and not email:
            return DirectoryResult(DirectoryStatus.NOT_FOUND)

        handle = self.connect()
        if handle is None:
            return DirectoryResult(DirectoryStatus.ERROR)

        bind_type = BIND_PROXY if self.config.ldap_bind_type == BIND_PROXY else BIND_ANONYMOUS
        try:
            status = self.bind(handle, None, None, bind_type=bind_type)
            if status is not DirectoryStatus.SUCCESS:
                return DirectoryResult(status)

            result = self.client.search(
                handle,
                self.config.ldap_account_base,
                self.lookup_filter(username, email),
                [
                    self.config.ldap_account_fullname,
                    self.config.ldap_account_email,
                    self.config.ldap_account_id,
                ],
            )
        finally:
            self.client.close(handle)

        if result.status is DirectoryStatus.ERROR:
            return DirectoryResult(DirectoryStatus.ERROR)
        if not result.entries:
            return DirectoryResult(DirectoryStatus.NOT_FOUND)

        entry = result.entries[0]

        # Without a username the account id attribute is the only identifier
        if not username and not entry.has(self.config.ldap_account_id):
            logger.warning(
                f"LDAP: attribute '{self.config.ldap_account_id}' missing from entry "
                f"{entry.dn}, check ldap_account_id"
            )
            return DirectoryResult(DirectoryStatus.NOT_FOUND)

        return DirectoryResult(
            DirectoryStatus.SUCCESS,
            DirectoryUser(
                username=entry.first(self.config.ldap_account_id, username or ""),
                name=entry.first(self.config.ldap_account_fullname),
                email=entry.first(self.config.ldap_account_email, email or ""),
            ),
        )


class LdapBackend:
    """Log users in with their directory credentials.

    Local accounts (``auth_source == "local"``) are never shadowed by a
    directory account of the same name.
    """

    AUTH_NAME = "LDAP"

    def __init__(
        self,
        authenticator: LdapAuthenticator,
        users: UserStore,
        session,
        dispatcher: EventDispatcher,
        config: Settings | None = None,
    ):
        self.authenticator = authenticator
        self.users = users
        self.session = session
        self.dispatcher = dispatcher
        self.config = config or settings

    def normalize_username(self, username: str) -> str:
        return username if self.config.ldap_username_case_sensitive else username.lower()

    async def authenticate(self, username: str, password: str) -> bool:
        username = self.normalize_username(username)
        result = await asyncio.to_thread(self.authenticator.find_user, username, password)
        if not result.found:
            if result.status is DirectoryStatus.ERROR:
                logger.warning(f"LDAP: directory unavailable while authenticating '{username}'")
            return False

        user = await self.users.get_by_username(username)
        if user is not None:
            if not user.is_ldap_user:
                logger.info(f"LDAP: local account '{username}' is not directory-managed, refusing")
                return False
        else:
            if not self.config.ldap_account_creation:
                logger.info(f"LDAP: no local account for '{username}' and account creation is disabled")
                return False
            if not await self.create_user(username, result.user.name, result.user.email):
                return False
            user = await self.users.get_by_username(username)
            if user is None:
                return False

        self.session.refresh(user)
        self.dispatcher.dispatch(AUTH_SUCCESS_EVENT, AuthEvent(self.AUTH_NAME, user.id))
        logger.info(f"LDAP: user '{username}' authenticated")
        return True

    async def create_user(self, username: str, name: str, email: str) -> bool:
        return await self.users.create({
            "username": username,
            "name": name,
            "email": email,
            "is_admin": False,
            "is_ldap_user": True,
        })


def get_directory_client() -> DirectoryClient:
    from dirauth.services.directory import Ldap3DirectoryClient

    return Ldap3DirectoryClient()
