"""
Reading a complete organisation graph from a directory.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from ldap_org_sync.ingest import Transformer, read_ldap_groups, read_ldap_users
from ldap_org_sync.resolve import resolve_relations

logger = logging.getLogger(__name__)


def read_ldap_org(client, user_configs: List[Dict[str, Any]], group_configs: List[Dict[str, Any]],
                  user_transformer: Optional[Transformer] = None,
                  group_transformer: Optional[Transformer] = None,
                  max_workers: int = 4, progress_interval: float = 5.0,
                  cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
    """
    Read users and groups and resolve the relations between them.

    The vendor is detected once through the client and shared by both reads.
    Users are read before groups; relations are resolved only after both
    reads have finished.

    Args:
        client: Connected directory client
        user_configs: User query configurations
        group_configs: Group query configurations
        user_transformer: Replaces the default user transformer when given
        group_transformer: Replaces the default group transformer when given
        max_workers: Upper bound on records transformed concurrently
        progress_interval: Seconds between progress log lines
        cancel_event: Set to stop the run at the next page boundary

    Returns:
        Dictionary with ``users``, ``groups`` and ``processed`` (records read)
    """
    vendor = client.get_vendor()
    options = {
        'max_workers': max_workers,
        'progress_interval': progress_interval,
        'cancel_event': cancel_event,
    }

    users, user_member_of, users_processed = read_ldap_users(
        client, user_configs, vendor=vendor, transformer=user_transformer, **options)
    groups, group_member_of, group_members, groups_processed = read_ldap_groups(
        client, group_configs, vendor=vendor, transformer=group_transformer, **options)

    resolve_relations(groups, users, user_member_of, group_member_of, group_members)

    logger.info(f"Read {len(users)} users and {len(groups)} groups "
                f"({users_processed + groups_processed} directory records)")
    return {
        'users': users,
        'groups': groups,
        'processed': users_processed + groups_processed,
    }
