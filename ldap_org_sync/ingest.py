"""
Streaming ingestion of directory records.

Records are pulled from the LDAP client one page at a time. Every record of a
page is handed to the transformer on a thread pool, and the whole page is
joined before the next page is requested, so at most one page of records and
their follow-up work is in flight at any time.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ldap_org_sync.entities import Entity
from ldap_org_sync.records import DirectoryRecord
from ldap_org_sync.transform import (
    default_group_transformer,
    default_user_transformer,
    extract_references,
)
from ldap_org_sync.vendors.base import LdapVendor

logger = logging.getLogger(__name__)

Transformer = Callable[[LdapVendor, Dict[str, Any], DirectoryRecord], Any]


class SyncCancelledError(Exception):
    """Raised when a run is cancelled while records are being read."""
    pass


class RawMembershipIndex(dict):
    """
    Unresolved relation edges keyed by directory-supplied identifiers.

    Maps a source identifier to the list of identifiers it claims, kept in
    first-seen order without duplicates. Keys and values are stored exactly as
    the directory supplied them.
    """

    def __init__(self):
        super().__init__()
        self._seen: Dict[str, set] = {}

    def add(self, source: str, targets: Iterable[str]):
        claimed = self.setdefault(source, [])
        seen = self._seen.setdefault(source, set(claimed))
        for target in targets:
            if target not in seen:
                seen.add(target)
                claimed.append(target)


class ProgressReporter:
    """Logs a running record count at most once per interval."""

    def __init__(self, base_dn: str, interval_seconds: float = 5.0):
        self.base_dn = base_dn
        self.interval_seconds = interval_seconds
        self.count = 0
        self._last_report = time.monotonic()

    def advance(self, count: int = 1):
        self.count += count
        now = time.monotonic()
        if now - self._last_report >= self.interval_seconds:
            logger.debug(f"Read {self.count} LDAP entries so far from {self.base_dn}...")
            self._last_report = now


class StreamingIngestor:
    """
    Drives paged retrieval and transformation for one sync run.

    Args:
        client: Directory client providing ``search_paginated``
        vendor: Vendor detected for the client's connection
        max_workers: Upper bound on records transformed concurrently within a page
        progress_interval: Seconds between progress log lines
        cancel_event: Set to stop the run at the next page boundary
    """

    def __init__(self, client, vendor: LdapVendor, max_workers: int = 4,
                 progress_interval: float = 5.0, cancel_event: Optional[threading.Event] = None):
        self.client = client
        self.vendor = vendor
        self.max_workers = max(1, max_workers)
        self.progress_interval = progress_interval
        self.cancel_event = cancel_event or threading.Event()

    def _check_cancelled(self, base_dn: str):
        if self.cancel_event.is_set():
            raise SyncCancelledError(f"Sync cancelled while reading {base_dn}")

    def ingest(self, kind: str, configs: List[Dict[str, Any]], transformer: Transformer,
               relation_keys: Tuple[str, ...]) -> Tuple[List[Entity], Dict[str, RawMembershipIndex], int]:
        """
        Read and transform every record matched by the given queries.

        Args:
            kind: Entity kind being read, for logging
            configs: Query configurations of that kind
            transformer: Callable building an entity from a record
            relation_keys: Map keys whose attributes hold raw relation identifiers

        Returns:
            Tuple of (entities, raw index per relation key, records processed)

        Raises:
            RecordTransformError: If the transformer rejects a record
            RetrievalError: If the directory search fails
            SyncCancelledError: If the run is cancelled
        """
        entities = []
        indices = {key: RawMembershipIndex() for key in relation_keys}
        processed = 0

        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix=f'ingest-{kind.lower()}') as executor:
            for config in configs:
                base_dn = config['dn']
                logger.info(f"Reading {kind} entries from {base_dn}")
                progress = ProgressReporter(base_dn, self.progress_interval)
                self._check_cancelled(base_dn)

                pages = self.client.search_paginated(base_dn, config.get('options') or {})
                try:
                    for page in pages:
                        results = self._transform_page(executor, transformer, config, page)
                        self._check_cancelled(base_dn)

                        for record, entity in zip(page, results):
                            processed += 1
                            progress.advance()
                            if entity is None:
                                continue
                            entities.append(entity)
                            for key in relation_keys:
                                source, targets = extract_references(self.vendor, config, record, key)
                                if source and targets:
                                    indices[key].add(source, targets)
                finally:
                    close = getattr(pages, 'close', None)
                    if close is not None:
                        close()

                logger.info(f"Read {progress.count} {kind} entries from {base_dn}")

        return entities, indices, processed

    def _transform_page(self, executor: ThreadPoolExecutor, transformer: Transformer,
                        config: Dict[str, Any], page: List[DirectoryRecord]) -> List[Any]:
        """Transform one page and join all of its work before returning."""
        futures = [executor.submit(transformer, self.vendor, config, record) for record in page]
        wait(futures)

        results = []
        followups = []
        for future in futures:
            # Raises the first failure in record order
            result = future.result()
            if isinstance(result, Future):
                followups.append(result)
            results.append(result)

        # Follow-up work a transformer scheduled itself belongs to this page too
        if followups:
            wait(followups)
            results = [r.result() if isinstance(r, Future) else r for r in results]
        return results


def read_ldap_users(client, configs: List[Dict[str, Any]], vendor: Optional[LdapVendor] = None,
                    transformer: Optional[Transformer] = None,
                    **ingestor_options) -> Tuple[List[Entity], RawMembershipIndex, int]:
    """
    Read users from the directory.

    Args:
        client: Connected directory client
        configs: User query configurations
        vendor: Vendor to decode with; detected through the client when omitted
        transformer: Replaces default_user_transformer when given
        **ingestor_options: Passed to StreamingIngestor

    Returns:
        Tuple of (users, raw memberOf index keyed by user DN, records processed)
    """
    vendor = vendor or client.get_vendor()
    ingestor = StreamingIngestor(client, vendor, **ingestor_options)
    users, indices, processed = ingestor.ingest(
        'User', configs, transformer or default_user_transformer, ('memberOf',))
    return users, indices['memberOf'], processed


def read_ldap_groups(client, configs: List[Dict[str, Any]], vendor: Optional[LdapVendor] = None,
                     transformer: Optional[Transformer] = None,
                     **ingestor_options) -> Tuple[List[Entity], RawMembershipIndex, RawMembershipIndex, int]:
    """
    Read groups from the directory.

    Returns:
        Tuple of (groups, raw memberOf index, raw members index, records processed)
    """
    vendor = vendor or client.get_vendor()
    ingestor = StreamingIngestor(client, vendor, **ingestor_options)
    groups, indices, processed = ingestor.ingest(
        'Group', configs, transformer or default_group_transformer, ('memberOf', 'members'))
    return groups, indices['memberOf'], indices['members'], processed
