"""LDAP directory client: connect, bind and search over ldap3."""

import enum
import logging
import ssl
from dataclasses import dataclass, field
from typing import Any, Protocol

from dirauth.config import Settings, settings

logger = logging.getLogger(__name__)


class DirectoryStatus(enum.Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"  # rejected credentials, unknown DN, no entries
    ERROR = "error"  # server unreachable, protocol or filter errors


@dataclass(frozen=True)
class ConnectionOptions:
    """Settings for a single directory connection."""

    server: str
    port: int = 389
    verify_certificate: bool = True
    start_tls: bool = False
    network_timeout: int = 1
    time_limit: int = 1

    @classmethod
    def from_settings(cls, config: Settings | None = None):
        config = config or settings
        return cls(
            server=config.ldap_server,
            port=config.ldap_port,
            verify_certificate=config.ldap_ssl_verify,
            start_tls=config.ldap_start_tls,
            network_timeout=config.ldap_network_timeout,
            time_limit=config.ldap_time_limit,
        )


@dataclass
class DirectoryEntry:
    """A search result entry.

    Attribute names are stored lower-cased since LDAP attribute names are
    case-insensitive and servers do not agree on the casing they return.
    """

    dn: str
    attributes: dict[str, list[Any]] = field(default_factory=dict)

    def __post_init__(self):
        self.attributes = {
            name.lower(): list(values) if isinstance(values, (list, tuple)) else [values]
            for name, values in self.attributes.items()
        }

    def has(self, name: str) -> bool:
        return bool(self.attributes.get(name.lower()))

    def first(self, name: str, default: str = "") -> str:
        values = self.attributes.get(name.lower())
        if not values:
            return default
        return str(values[0])


@dataclass
class SearchResult:
    status: DirectoryStatus
    entries: list[DirectoryEntry] = field(default_factory=list)


@dataclass
class DirectoryConnection:
    connection: Any
    time_limit: int = 1


class DirectoryClient(Protocol):
    def connect(self, options: ConnectionOptions) -> DirectoryConnection | None: ...

    def bind(
        self, handle: DirectoryConnection, dn: str | None, password: str | None
    ) -> DirectoryStatus: ...

    def search(
        self,
        handle: DirectoryConnection,
        base: str,
        search_filter: str,
        attributes: list[str],
    ) -> SearchResult: ...

    def close(self, handle: DirectoryConnection) -> None: ...


class Ldap3DirectoryClient:
    """`DirectoryClient` backed by the ldap3 library.

    Every call reports failures through its return value. Operator-relevant
    causes (missing library, unreachable server, StartTLS failure) are logged
    as errors; rejected credentials are not logged at all so that a wrong
    password cannot be told apart from an unknown account.
    """

    def connect(self, options: ConnectionOptions) -> DirectoryConnection | None:
        try:
            from ldap3 import NONE, Connection, Server, Tls
            from ldap3.core.exceptions import LDAPException
        except ImportError:
            logger.error("ldap3 package not installed. Run: pip install ldap3")
            return None

        if not options.server:
            logger.error("LDAP server is not configured")
            return None

        # Certificate checking is a property of this connection only
        tls = Tls(
            validate=ssl.CERT_REQUIRED if options.verify_certificate else ssl.CERT_NONE,
        )

        try:
            server = Server(
                options.server,
                port=options.port,
                tls=tls,
                get_info=NONE,
                connect_timeout=options.network_timeout,
            )
            conn = Connection(
                server,
                version=3,
                auto_referrals=False,
                receive_timeout=options.network_timeout,
                raise_exceptions=False,
            )
            conn.open()
        except LDAPException as e:
            logger.error(f'Unable to connect to the LDAP server "{options.server}": {e}')
            return None

        handle = DirectoryConnection(connection=conn, time_limit=options.time_limit)

        if options.start_tls:
            try:
                started = conn.start_tls()
            except LDAPException as e:
                logger.error(f"LDAP StartTLS failed: {e}")
                started = False
            else:
                if not started:
                    logger.error(f"LDAP StartTLS failed: {conn.result}")
            if not started:
                self.close(handle)
                return None

        return handle

    def bind(
        self, handle: DirectoryConnection, dn: str | None, password: str | None
    ) -> DirectoryStatus:
        from ldap3 import ANONYMOUS, SIMPLE
        from ldap3.core.exceptions import (
            LDAPBindError,
            LDAPException,
            LDAPPasswordIsMandatoryError,
        )

        conn = handle.connection
        try:
            if dn is None:
                bound = conn.rebind(authentication=ANONYMOUS)
            else:
                bound = conn.rebind(user=dn, password=password, authentication=SIMPLE)
        except (LDAPBindError, LDAPPasswordIsMandatoryError):
            return DirectoryStatus.NOT_FOUND
        except LDAPException as e:
            logger.debug(f"LDAP bind error: {e}")
            return DirectoryStatus.ERROR

        return DirectoryStatus.SUCCESS if bound else DirectoryStatus.NOT_FOUND

    def search(
        self,
        handle: DirectoryConnection,
        base: str,
        search_filter: str,
        attributes: list[str],
    ) -> SearchResult:
        from ldap3 import SUBTREE
        from ldap3.core.exceptions import LDAPException

        conn = handle.connection
        try:
            found = conn.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes,
                time_limit=handle.time_limit,
            )
        except LDAPException as e:
            logger.debug(f"LDAP search error for {search_filter}: {e}")
            return SearchResult(DirectoryStatus.ERROR)

        if not found or not conn.entries:
            return SearchResult(DirectoryStatus.NOT_FOUND)

        entries = [
            DirectoryEntry(dn=entry.entry_dn, attributes=entry.entry_attributes_as_dict)
            for entry in conn.entries
        ]
        return SearchResult(DirectoryStatus.SUCCESS, entries)

    def close(self, handle: DirectoryConnection) -> None:
        from ldap3.core.exceptions import LDAPException

        try:
            handle.connection.unbind()
        except LDAPException as e:
            logger.debug(f"LDAP unbind error: {e}")
