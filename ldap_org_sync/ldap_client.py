"""
LDAP client for connecting to and reading from LDAP directories.

This module wraps ldap3 with the operations the sync pipeline needs: binding,
bulk and paged searches yielding DirectoryRecord objects, and detection of the
server vendor, which is cached for the lifetime of the connection.
"""

import logging
import ssl
from typing import Any, Dict, Iterator, List, Optional

from ldap3 import ALL, BASE, LEVEL, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPBindError, LDAPException, LDAPSocketOpenError

from ldap_org_sync.records import DirectoryRecord
from ldap_org_sync.retry import MaxRetriesExceeded, retry_connect
from ldap_org_sync.vendors import LdapVendor, VendorDetectionError, detect_vendor, load_vendor

logger = logging.getLogger(__name__)

PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'

SCOPES = {
    'base': BASE,
    'one': LEVEL,
    'sub': SUBTREE,
}


class LDAPConnectionError(Exception):
    """Raised when LDAP connection fails."""
    pass


class RetrievalError(Exception):
    """Raised when an LDAP search fails; names the base DN that was searched."""

    def __init__(self, base_dn: str, cause: Any):
        self.base_dn = base_dn
        self.cause = cause
        super().__init__(f'LDAP search at DN "{base_dn}" failed: {cause}')


class LDAPClient:
    """
    LDAP client for reading directory entries.

    The vendor of the connected server is detected on first use and kept
    until the client disconnects.
    """

    def __init__(self, config: Dict[str, Any], max_retries: int = 3, retry_wait: float = 5):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP configuration dictionary (the ``ldap`` section)
            max_retries: Default number of connection attempts for connect()
            retry_wait: Default seconds between connection attempts
        """
        self.config = config
        self.target = config['target']
        bind = config.get('bind') or {}
        self.bind_dn = bind.get('dn')
        self.bind_secret = bind.get('secret')
        self.vendor_override = config.get('vendor')

        # SSL/TLS configuration
        tls = config.get('tls') or {}
        self.use_ssl = self.target.lower().startswith('ldaps://')
        self.start_tls = tls.get('start_tls', False)
        self.verify_ssl = tls.get('verify', True)
        self.ca_cert_file = tls.get('ca_certs')
        self.cert_file = tls.get('certs')
        self.key_file = tls.get('keys')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 500)

        self.max_retries = max_retries
        self.retry_wait = retry_wait

        self.server = None
        self.connection = None
        self._connected = False
        self._vendor: Optional[LdapVendor] = None

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[int] = None) -> bool:
        """
        Establish connection to LDAP server with retry logic.

        Args:
            max_retries: Maximum number of connection attempts (uses the constructor default if None)
            retry_wait: Seconds to wait between retries (uses the constructor default if None)

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If connection fails after all retries
        """
        max_retries = max_retries or self.max_retries
        retry_wait = retry_wait if retry_wait is not None else self.retry_wait

        try:
            self.server = Server(
                self.target,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.target} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except LDAPConnectionError:
            raise
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}") from e

        try:
            retry_connect(self._open_and_bind, self.target, attempts=max_retries, wait_seconds=retry_wait)
        except MaxRetriesExceeded as e:
            raise LDAPConnectionError(
                f"Failed to connect to LDAP after {e.attempts} attempts: {e.last_exception}") from e
        except LDAPException as e:
            raise LDAPConnectionError(f"LDAP connection failed: {e}") from e

        self._connected = True
        logger.info(f"Successfully connected and bound to LDAP server {self.target}")
        return True

    def _open_and_bind(self):
        self.connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_secret,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )
        try:
            self.connection.open()
            if self.connection.closed:
                raise LDAPSocketOpenError(f"Failed to open connection: {self.connection.result}")

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise LDAPConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if self.bind_dn and not self.connection.bind():
                raise LDAPBindError(f"LDAP bind failed for {self.bind_dn}: {self.connection.result}")
        except Exception:
            self._discard_connection()
            raise

    def _discard_connection(self):
        if self.connection is not None:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while discarding connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        # Client certificate for mutual TLS
        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}") from e

    def disconnect(self):
        """Close LDAP connection and forget the detected vendor."""
        self._vendor = None
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except Exception as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _search_kwargs(self, base_dn: str, options: Dict[str, Any]) -> Dict[str, Any]:
        scope = (options.get('scope') or 'one').lower()
        if scope not in SCOPES:
            raise RetrievalError(base_dn, f"unsupported search scope '{scope}'")
        kwargs = {
            'search_base': base_dn,
            'search_filter': options.get('filter') or '(objectClass=*)',
            'search_scope': SCOPES[scope],
            'attributes': options.get('attributes') or ['*'],
        }
        if options.get('size_limit'):
            kwargs['size_limit'] = options['size_limit']
        return kwargs

    def _require_connection(self, base_dn: str):
        if not self._connected or self.connection is None:
            raise RetrievalError(base_dn, "not connected to LDAP server")

    def _collect_entries(self) -> List[DirectoryRecord]:
        # Referrals and intermediate responses are not entries
        return [DirectoryRecord.from_ldap3(item) for item in (self.connection.response or [])
                if item.get('type') == 'searchResEntry']

    def search(self, base_dn: str, options: Dict[str, Any]) -> List[DirectoryRecord]:
        """
        Perform a single, unpaged search.

        Args:
            base_dn: Fully qualified base DN to search within
            options: Search options (scope, filter, attributes)

        Returns:
            All matching records

        Raises:
            RetrievalError: If the search fails
        """
        self._require_connection(base_dn)
        kwargs = self._search_kwargs(base_dn, options)
        try:
            success = self.connection.search(**kwargs)
        except LDAPException as e:
            raise RetrievalError(base_dn, e) from e

        if not success and self.connection.result.get('result', 0) != 0:
            raise RetrievalError(base_dn, self.connection.result.get('description') or self.connection.result)
        return self._collect_entries()

    def search_paginated(self, base_dn: str, options: Dict[str, Any]) -> Iterator[List[DirectoryRecord]]:
        """
        Perform a paged search, yielding one page of records at a time.

        The next page is only requested when the caller asks for it, so only
        one page is held in memory.

        Args:
            base_dn: Fully qualified base DN to search within
            options: Search options (scope, filter, attributes, page_size)

        Yields:
            Lists of records, one per server page

        Raises:
            RetrievalError: If any page request fails
        """
        self._require_connection(base_dn)
        kwargs = self._search_kwargs(base_dn, options)
        page_size = options.get('page_size') or self.page_size
        cookie = None
        page_count = 0

        while True:
            try:
                success = self.connection.search(paged_size=page_size, paged_cookie=cookie, **kwargs)
            except LDAPException as e:
                raise RetrievalError(base_dn, e) from e

            result = self.connection.result
            if not success and result.get('result', 0) != 0:
                raise RetrievalError(base_dn, result.get('description') or result)

            page = self._collect_entries()
            page_count += 1
            logger.debug(f"Page {page_count} of {base_dn}: {len(page)} entries")
            yield page

            controls = result.get('controls') or {}
            cookie = controls.get(PAGED_RESULTS_CONTROL, {}).get('value', {}).get('cookie')
            if not cookie:
                break

    def get_root_dse(self) -> Optional[DirectoryRecord]:
        """
        Read the server's root DSE.

        Returns:
            The root DSE record, or None if the server did not return exactly one
        """
        result = self.search('', {'scope': 'base', 'filter': '(objectclass=*)', 'attributes': ['*', '+']})
        if len(result) == 1:
            return result[0]
        return None

    def get_vendor(self) -> LdapVendor:
        """
        Get the vendor of the connected server.

        Detection runs once per connection. A configured vendor module
        replaces detection. Failures are not cached.

        Raises:
            VendorDetectionError: If the vendor cannot be determined
        """
        if self._vendor is not None:
            return self._vendor

        if self.vendor_override:
            vendor = load_vendor(self.vendor_override)
        else:
            try:
                root = self.get_root_dse()
            except RetrievalError as e:
                raise VendorDetectionError(f"Failed to read root DSE: {e}") from e
            vendor = detect_vendor(root)

        logger.info(f"Using directory vendor: {vendor.name}")
        self._vendor = vendor
        return vendor

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        Get connection statistics and status.

        Returns:
            Dictionary with connection information
        """
        stats = {
            'connected': self._connected,
            'target': self.target,
            'use_ssl': self.use_ssl,
            'start_tls': self.start_tls,
            'verify_ssl': self.verify_ssl,
            'bind_dn': self.bind_dn,
            'page_size': self.page_size,
            'vendor': self._vendor.name if self._vendor else None
        }

        if self.connection:
            stats.update({
                'server_host': getattr(self.connection.server, 'host', None),
                'server_port': getattr(self.connection.server, 'port', None),
                'bound': getattr(self.connection, 'bound', False),
                'tls_started': getattr(self.connection, 'tls_started', False)
            })

        return stats

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
