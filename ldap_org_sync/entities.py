"""
Entity records produced from directory entries.

Entities are plain dictionaries shaped like catalog descriptors so that they
can be written out as YAML or JSON without conversion:

    {'apiVersion': ..., 'kind': 'User' | 'Group',
     'metadata': {'name': ..., 'annotations': {...}},
     'spec': {...}}
"""

import copy
from typing import Any, Dict, Optional

API_VERSION = 'backstage.io/v1beta1'
DEFAULT_NAMESPACE = 'default'

LDAP_DN_ANNOTATION = 'backstage.io/ldap-dn'
LDAP_RDN_ANNOTATION = 'backstage.io/ldap-rdn'
LDAP_UUID_ANNOTATION = 'backstage.io/ldap-uuid'

Entity = Dict[str, Any]


def new_user_entity() -> Entity:
    """Create an empty user with unresolved relations."""
    return {
        'apiVersion': API_VERSION,
        'kind': 'User',
        'metadata': {
            'name': '',
            'annotations': {},
        },
        'spec': {
            'profile': {},
            'memberOf': [],
        },
    }


def new_group_entity() -> Entity:
    """Create an empty group with unresolved relations."""
    return {
        'apiVersion': API_VERSION,
        'kind': 'Group',
        'metadata': {
            'name': '',
            'annotations': {},
        },
        'spec': {
            'type': 'unknown',
            'profile': {},
            'children': [],
        },
    }


def set_nested_value(target: Dict[str, Any], key_path: str, value: Any):
    """Set a nested value using dot notation, creating intermediate mappings."""
    keys = key_path.split('.')
    current = target
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def apply_overrides(entity: Entity, overrides: Optional[Dict[str, Any]]):
    """Apply dotted-path literal assignments; values are copied, never shared."""
    for key_path, value in (overrides or {}).items():
        set_nested_value(entity, key_path, copy.deepcopy(value))


def get_annotation(entity: Entity, key: str) -> Optional[str]:
    annotations = entity.get('metadata', {}).get('annotations') or {}
    return annotations.get(key)


def stringify_entity_ref(entity: Entity) -> str:
    """
    Build the canonical reference of an entity.

    Returns:
        Reference in the form ``kind:namespace/name``, kind lowercased
    """
    metadata = entity['metadata']
    namespace = metadata.get('namespace') or DEFAULT_NAMESPACE
    return f"{entity['kind'].lower()}:{namespace}/{metadata['name']}"
