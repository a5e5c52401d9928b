"""
Relation resolution between ingested users and groups.

Directories express membership with whatever identifier they like: a DN in
any letter case or a vendor unique id, and either from the member's side
(memberOf) or the group's side (member). Resolution turns those raw edges
into entity references once ingestion is complete.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Dict, List, Optional

from ldap_org_sync.entities import (
    Entity,
    LDAP_DN_ANNOTATION,
    LDAP_UUID_ANNOTATION,
    get_annotation,
    stringify_entity_ref,
)

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Raised when the resolver is given structurally invalid input."""
    pass


class EntityIndex:
    """
    Lookup of entities by raw directory identifier.

    Identifiers are tried as a distinguished name (case-insensitive), then as a
    unique id (exact). The first hit wins; anything else is unmatched.
    """

    def __init__(self, entities: List[Entity]):
        self.by_dn: Dict[str, Entity] = {}
        self.by_uuid: Dict[str, Entity] = {}
        for entity in entities:
            dn = get_annotation(entity, LDAP_DN_ANNOTATION)
            uuid = get_annotation(entity, LDAP_UUID_ANNOTATION)
            # Servers that do not return the id attribute leave it empty
            if dn:
                self.by_dn[dn.lower()] = entity
            if uuid:
                self.by_uuid[uuid] = entity

    def get(self, identifier: str) -> Optional[Entity]:
        if not identifier:
            return None
        entity = self.by_dn.get(identifier.lower())
        if entity is None:
            entity = self.by_uuid.get(identifier)
        return entity


class _RelationSet:
    """Ordered, de-duplicated relation targets per source entity."""

    def __init__(self):
        self.sources: Dict[int, Entity] = {}
        self.targets: Dict[int, Dict[str, None]] = {}

    def add(self, source: Entity, target_ref: str):
        key = id(source)
        self.sources[key] = source
        self.targets.setdefault(key, {})[target_ref] = None

    def items(self):
        for key, source in self.sources.items():
            yield source, list(self.targets[key])

    def count(self) -> int:
        return sum(len(targets) for targets in self.targets.values())


def _validate_entities(entities: Any, label: str):
    if not isinstance(entities, list):
        raise ResolutionError(f"{label} must be a list of entities, got {type(entities).__name__}")
    for i, entity in enumerate(entities):
        if not isinstance(entity, dict) or not isinstance(entity.get('metadata'), dict):
            raise ResolutionError(f"{label}[{i}] is not an entity")
        if not entity['metadata'].get('name'):
            raise ResolutionError(f"{label}[{i}] has no metadata.name")
        if not isinstance(entity.get('spec'), dict):
            raise ResolutionError(f"{label}[{i}] has no spec")


def _validate_index(index: Any, label: str):
    if not isinstance(index, Mapping):
        raise ResolutionError(f"{label} must be a mapping, got {type(index).__name__}")
    for source, targets in index.items():
        if not isinstance(source, str):
            raise ResolutionError(f"{label} has a non-string key: {source!r}")
        if isinstance(targets, (str, bytes)) or not isinstance(targets, Iterable):
            raise ResolutionError(f"{label}[{source!r}] must be a collection of identifiers")
        for target in targets:
            if not isinstance(target, str):
                raise ResolutionError(f"{label}[{source!r}] contains a non-string identifier: {target!r}")


def resolve_relations(groups: List[Entity], users: List[Entity],
                      user_member_of: Mapping, group_member_of: Mapping, group_members: Mapping):
    """
    Populate user ``memberOf`` and group ``parent``/``children`` in place.

    Args:
        groups: Ingested group entities
        users: Ingested user entities
        user_member_of: User identifier to the group identifiers it claims
        group_member_of: Group identifier to the parent group identifiers it claims
        group_members: Group identifier to the user or group identifiers it lists

    Raises:
        ResolutionError: If any argument is malformed; entities are left untouched

    Edges whose source or target matches no known entity are dropped. Relation
    fields are overwritten rather than appended, so resolving the same input
    twice yields the same result. When a group ends up with several parents,
    the last one resolved becomes ``spec.parent``.
    """
    _validate_entities(groups, 'groups')
    _validate_entities(users, 'users')
    _validate_index(user_member_of, 'user_member_of')
    _validate_index(group_member_of, 'group_member_of')
    _validate_index(group_members, 'group_members')

    user_index = EntityIndex(users)
    group_index = EntityIndex(groups)

    new_user_member_of = _RelationSet()
    new_group_parents = _RelationSet()
    new_group_children = _RelationSet()
    dropped = 0

    for user_id, group_ids in user_member_of.items():
        user = user_index.get(user_id)
        if user is None:
            dropped += 1
            continue
        for group_id in group_ids:
            group = group_index.get(group_id)
            if group is None:
                dropped += 1
                continue
            new_user_member_of.add(user, stringify_entity_ref(group))

    for group_id, parent_ids in group_member_of.items():
        group = group_index.get(group_id)
        if group is None:
            dropped += 1
            continue
        for parent_id in parent_ids:
            parent = group_index.get(parent_id)
            if parent is None:
                dropped += 1
                continue
            new_group_parents.add(group, stringify_entity_ref(parent))
            new_group_children.add(parent, stringify_entity_ref(group))

    for group_id, member_ids in group_members.items():
        group = group_index.get(group_id)
        if group is None:
            dropped += 1
            continue
        for member_id in member_ids:
            # Members can be users or groups; users take precedence
            member_user = user_index.get(member_id)
            if member_user is not None:
                new_user_member_of.add(member_user, stringify_entity_ref(group))
                continue
            member_group = group_index.get(member_id)
            if member_group is None:
                dropped += 1
                continue
            new_group_children.add(group, stringify_entity_ref(member_group))
            new_group_parents.add(member_group, stringify_entity_ref(group))

    # Nothing is written until every edge has been processed
    for user, group_refs in new_user_member_of.items():
        user['spec']['memberOf'] = group_refs
    for group, parent_refs in new_group_parents.items():
        group['spec']['parent'] = parent_refs[-1]
    for group, child_refs in new_group_children.items():
        group['spec']['children'] = child_refs

    logger.debug(f"Resolved {new_user_member_of.count()} user memberships, "
                 f"{new_group_children.count()} group children; dropped {dropped} unmatched edges")
