"""
Default transformers from directory records to entity records.

A transformer has the signature ``(vendor, query_config, record)`` and returns
an entity, or None to drop the record. Callers can supply their own
transformer per run; it may delegate to the defaults here.
"""

from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from ldap_org_sync.entities import (
    Entity,
    LDAP_DN_ANNOTATION,
    LDAP_RDN_ANNOTATION,
    LDAP_UUID_ANNOTATION,
    apply_overrides,
    new_group_entity,
    new_user_entity,
    set_nested_value,
)
from ldap_org_sync.records import DirectoryRecord
from ldap_org_sync.vendors.base import LdapVendor


class RecordTransformError(Exception):
    """Raised when a directory record lacks data required to build an entity."""

    def __init__(self, kind: str, attribute_name: str, dn: str):
        self.kind = kind
        self.attribute_name = attribute_name
        self.dn = dn
        noun = kind.lower()
        super().__init__(
            f"{kind} syncing failed: missing '{attribute_name}' attribute, "
            f"consider applying a {noun} filter to skip processing {noun}s "
            f"with incomplete data. Offending entry: {dn}"
        )


def map_string_attr(record: DirectoryRecord, vendor: LdapVendor,
                    attribute_name: Optional[str], setter: Callable[[str], Any]):
    """Call setter with the first value of an attribute, if it has one."""
    if not attribute_name:
        return
    values = vendor.decode_string_attribute(record, attribute_name)
    if values:
        setter(values[0])


def record_dn(vendor: LdapVendor, record: DirectoryRecord) -> str:
    """DN of a record per the vendor, falling back to the entry's own DN."""
    values = vendor.decode_string_attribute(record, vendor.dn_attribute_name)
    return values[0] if values else record.dn


def _map_common(entity: Entity, vendor: LdapVendor, mapping: Dict[str, str], record: DirectoryRecord):
    set_entity = partial(set_nested_value, entity)
    # Annotation keys contain dots, so they are set directly
    annotations = entity['metadata']['annotations']

    map_string_attr(record, vendor, mapping.get('name'), partial(set_entity, 'metadata.name'))
    map_string_attr(record, vendor, mapping.get('rdn'), partial(annotations.__setitem__, LDAP_RDN_ANNOTATION))
    map_string_attr(record, vendor, vendor.uuid_attribute_name,
                    partial(annotations.__setitem__, LDAP_UUID_ANNOTATION))
    annotations[LDAP_DN_ANNOTATION] = record_dn(vendor, record)

    map_string_attr(record, vendor, mapping.get('displayName'), partial(set_entity, 'spec.profile.displayName'))
    map_string_attr(record, vendor, mapping.get('email'), partial(set_entity, 'spec.profile.email'))
    map_string_attr(record, vendor, mapping.get('picture'), partial(set_entity, 'spec.profile.picture'))


def default_user_transformer(vendor: LdapVendor, config: Dict[str, Any],
                             record: DirectoryRecord) -> Optional[Entity]:
    """
    Build a User entity from a directory record.

    Args:
        vendor: Vendor used to decode attribute values
        config: User query configuration (uses its ``map`` and ``set``)
        record: Directory record

    Returns:
        User entity with empty ``memberOf``

    Raises:
        RecordTransformError: If the mapped name attribute is missing
    """
    mapping = config['map']
    entity = new_user_entity()
    _map_common(entity, vendor, mapping, record)

    if not entity['metadata']['name']:
        raise RecordTransformError('User', mapping['name'], record.dn)

    apply_overrides(entity, config.get('set'))
    return entity


def default_group_transformer(vendor: LdapVendor, config: Dict[str, Any],
                              record: DirectoryRecord) -> Optional[Entity]:
    """
    Build a Group entity from a directory record.

    Args:
        vendor: Vendor used to decode attribute values
        config: Group query configuration (uses its ``map`` and ``set``)
        record: Directory record

    Returns:
        Group entity with empty ``children`` and no ``parent``

    Raises:
        RecordTransformError: If the mapped name attribute is missing
    """
    mapping = config['map']
    entity = new_group_entity()
    _map_common(entity, vendor, mapping, record)

    set_entity = partial(set_nested_value, entity)
    map_string_attr(record, vendor, mapping.get('description'), partial(set_entity, 'metadata.description'))
    map_string_attr(record, vendor, mapping.get('type'), partial(set_entity, 'spec.type'))

    if not entity['metadata']['name']:
        raise RecordTransformError('Group', mapping['name'], record.dn)

    apply_overrides(entity, config.get('set'))
    return entity


def extract_references(vendor: LdapVendor, config: Dict[str, Any], record: DirectoryRecord,
                       map_key: str) -> Tuple[str, List[str]]:
    """
    Read the raw relation identifiers a record claims.

    Args:
        vendor: Vendor used to decode attribute values
        config: Query configuration whose ``map`` names the relation attribute
        record: Directory record
        map_key: 'memberOf' or 'members'

    Returns:
        Tuple of (record DN, claimed identifiers as supplied by the directory)
    """
    attribute_name = (config.get('map') or {}).get(map_key)
    if not attribute_name:
        return record_dn(vendor, record), []
    return record_dn(vendor, record), vendor.decode_string_attribute(record, attribute_name)
