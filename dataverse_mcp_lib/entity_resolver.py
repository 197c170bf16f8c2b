"""
Metadata resolver that turns a table name into an EntityInfo.

Accepts a logical name ("account") or an entity set name ("accounts") and
degrades to naive pluralization when the metadata endpoints cannot help.
"""

import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from .constants import (
    ATTRIBUTE_SELECT,
    ENTITY_DEFINITION_SELECT,
    ENTITY_SET_LOOKUP_SELECT,
    RELATIONSHIP_SELECT,
)
from .models import Attribute, EntityInfo


def naive_pluralize(name: str) -> str:
    """Guess an entity set name by appending 's' unless already present."""
    return name if name.endswith('s') else f"{name}s"


def _quote(value: str) -> str:
    return value.replace("'", "''")


class EntityResolver:
    """Resolves table schema and navigation properties through a DataverseClient."""

    def __init__(self, client, verbose: bool = False):
        self.client = client
        self.verbose = verbose

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Resolver VERBOSE] {message}", file=sys.stderr)

    async def _get_by_logical_name(self, logical_name: str) -> Optional[Dict[str, Any]]:
        endpoint = f"EntityDefinitions(LogicalName='{_quote(logical_name)}')"
        try:
            definition = await self.client.get_metadata(endpoint, {'$select': ENTITY_DEFINITION_SELECT})
        except Exception as e:
            # Some environments reject $select on singletons
            self._log_verbose(f"$select rejected for {endpoint} ({e}), retrying without it.")
            definition = await self.client.get_metadata(endpoint)
        return definition if isinstance(definition, dict) and definition.get('LogicalName') else None

    async def _get_by_entity_set_name(self, entity_set_name: str) -> Optional[Dict[str, Any]]:
        result = await self.client.get_metadata('EntityDefinitions', {
            '$select': ENTITY_SET_LOOKUP_SELECT,
            '$filter': f"EntitySetName eq '{_quote(entity_set_name)}'"
        })
        rows = (result or {}).get('value') or []
        return rows[0] if rows and rows[0].get('LogicalName') else None

    async def _find_definition(self, name_or_set: str) -> Optional[Dict[str, Any]]:
        definition = None
        try:
            definition = await self._get_by_logical_name(name_or_set)
        except Exception as e:
            self._log_verbose(f"No entity with logical name '{name_or_set}': {e}")

        # An entity set name is usually the logical name plus 's'
        if not definition and name_or_set.endswith('s'):
            try:
                definition = await self._get_by_logical_name(name_or_set[:-1])
            except Exception as e:
                self._log_verbose(f"No entity with logical name '{name_or_set[:-1]}': {e}")

        if not definition:
            try:
                definition = await self._get_by_entity_set_name(name_or_set)
            except Exception as e:
                self._log_verbose(f"No entity with entity set name '{name_or_set}': {e}")
        return definition

    async def _get_attributes(self, logical_name: str) -> List[Attribute]:
        endpoint = f"EntityDefinitions(LogicalName='{_quote(logical_name)}')/Attributes"
        try:
            result = await self.client.get_metadata(endpoint, {'$select': ATTRIBUTE_SELECT})
        except Exception as e:
            self._log_verbose(f"Attribute $select failed for {logical_name} ({e}), fetching full set.")
            try:
                result = await self.client.get_metadata(endpoint)
            except Exception as inner:
                self._log_verbose(f"Could not load attributes for {logical_name}: {inner}")
                return []
        rows = (result or {}).get('value') or []
        return [Attribute.from_metadata(row) for row in rows if isinstance(row, dict) and row.get('LogicalName')]

    async def _get_lookup_nav_map(self, logical_name: str) -> Dict[str, str]:
        endpoint = f"EntityDefinitions(LogicalName='{_quote(logical_name)}')/ManyToOneRelationships"
        nav_map = {}
        try:
            result = await self.client.get_metadata(endpoint, {'$select': RELATIONSHIP_SELECT})
        except Exception as e:
            self._log_verbose(f"Could not load many-to-one relationships for {logical_name}: {e}")
            return nav_map
        for rel in (result or {}).get('value') or []:
            attribute = rel.get('ReferencingAttribute')
            nav = rel.get('ReferencingEntityNavigationPropertyName')
            if attribute and nav:
                nav_map[attribute] = nav
        return nav_map

    async def resolve(self, name_or_set: Optional[str]) -> EntityInfo:
        """
        Resolve entity metadata and the lookup navigation-property map.

        Never raises for an unknown table: the result then carries the given
        name, a naively pluralized entity set and no attributes.
        """
        if not name_or_set:
            return EntityInfo()

        definition = await self._find_definition(name_or_set)
        if not definition:
            self._log_verbose(f"Entity '{name_or_set}' not found in metadata, using naive pluralization.")
            return EntityInfo(logical_name=name_or_set, entity_set_name=naive_pluralize(name_or_set))

        logical_name = definition['LogicalName']
        attributes = await self._get_attributes(logical_name)
        nav_map = await self._get_lookup_nav_map(logical_name)
        self._log_verbose(
            f"Resolved {logical_name}: set={definition.get('EntitySetName')}, "
            f"{len(attributes)} attributes, {len(nav_map)} lookup navigation properties."
        )
        return EntityInfo(
            logical_name=logical_name,
            entity_set_name=definition.get('EntitySetName') or naive_pluralize(logical_name),
            primary_id_attribute=definition.get('PrimaryIdAttribute') or '',
            primary_name_attribute=definition.get('PrimaryNameAttribute') or None,
            attributes=attributes,
            lookup_nav_map=nav_map
        )

    async def target_entity_set_name(self, cache: Dict[str, str], target_logical_name: str) -> str:
        """Entity set name of a lookup target, memoized in the caller's cache."""
        key = target_logical_name.lower()
        if key in cache:
            return cache[key]
        try:
            definition = await self.client.get_metadata(
                f"EntityDefinitions(LogicalName='{_quote(target_logical_name)}')",
                {'$select': 'EntitySetName'}
            )
            entity_set_name = (definition or {}).get('EntitySetName')
            if entity_set_name:
                cache[key] = entity_set_name
                return entity_set_name
        except Exception as e:
            self._log_verbose(f"Could not resolve entity set for {target_logical_name}: {e}")
        fallback = naive_pluralize(target_logical_name)
        cache[key] = fallback
        return fallback


class TargetSetResolver:
    """Per-invocation callable resolving lookup targets to entity set names."""

    def __init__(self, resolver: EntityResolver):
        self.resolver = resolver
        self.cache: Dict[str, str] = {}

    async def __call__(self, target_logical_name: str) -> str:
        return await self.resolver.target_entity_set_name(self.cache, target_logical_name)


async def resolve_entity_info(client, name_or_set: Optional[str], verbose: bool = False) -> EntityInfo:
    return await EntityResolver(client, verbose=verbose).resolve(name_or_set)


async def get_target_entity_set_name(client, cache: Dict[str, str], target_logical_name: str,
                                     verbose: bool = False) -> str:
    return await EntityResolver(client, verbose=verbose).target_entity_set_name(cache, target_logical_name)
