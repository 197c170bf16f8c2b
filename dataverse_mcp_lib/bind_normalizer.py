"""
Normalization of @odata.bind relationship associations in request payloads.

Bind values are kept RELATIVE to the API root ("/contacts(<id>)", or
"/_api/contacts(<id>)" on portals). Keys written with a lookup attribute's
logical name are rewritten to the navigation property the Web API expects.
"""

import re
from typing import Any, Dict, List, Optional

from .constants import DEFAULT_API_PATH, ODATA_BIND_SUFFIX
from .models import EntityInfo

ENTITY_REF_PATTERN = re.compile(r'^[a-z0-9_]+\([^)]*\)$', re.IGNORECASE)


def normalize_bind_value(value: Any, api_path: str = DEFAULT_API_PATH, relative_prefix: str = "") -> Any:
    """
    Reduce an entity reference to "<prefix>/entityset(id)".

    Absolute URLs lose their scheme, host and API path; bare "entityset(id)"
    gains a leading slash. Non-string values (including None) are returned
    unchanged. Applying the function twice yields the same result.
    """
    if not isinstance(value, str) or not value:
        return value

    prefix = relative_prefix.rstrip('/')
    api_path = api_path.rstrip('/')

    if value.lower().startswith('http'):
        match = re.search(re.escape(api_path) + r'/([^?]+)$', value, re.IGNORECASE)
        if match:
            return f"{prefix}/{match.group(1)}"
        last_segment = value.rstrip('/').split('/')[-1]
        if ENTITY_REF_PATTERN.match(last_segment):
            return f"{prefix}/{last_segment}"
        return value

    if prefix and value.startswith(f"{prefix}/"):
        return value
    if value.startswith(f"{api_path}/"):
        return f"{prefix}/{value[len(api_path) + 1:]}"
    if not value.startswith('/'):
        return f"{prefix}/{value}"
    return f"{prefix}{value}"


def looks_like_entity_reference(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return value.startswith('http') or value.startswith('/') or bool(ENTITY_REF_PATTERN.match(value))


def has_odata_bind_properties(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    return any(ODATA_BIND_SUFFIX in key for key in data)


def process_odata_bind_properties(data: Any, entity_info: Optional[EntityInfo] = None,
                                  api_path: str = DEFAULT_API_PATH, relative_prefix: str = "") -> Any:
    """
    Return a copy of ``data`` with @odata.bind keys and values normalized.

    Without ``entity_info`` only the values are normalized; key correction and
    the upgrade of plain lookup keys need the navigation-property map.
    """
    if not isinstance(data, dict):
        return data

    processed: Dict[str, Any] = dict(data)
    has_schema = entity_info is not None

    # Move "<attribute>@odata.bind" to "<navigationProperty>@odata.bind"
    for key in list(processed):
        if ODATA_BIND_SUFFIX not in key:
            continue

        raw_prop = key.replace(ODATA_BIND_SUFFIX, '')
        corrected_prop = raw_prop
        if has_schema:
            nav = entity_info.navigation_property_for(raw_prop)
            if nav and nav != raw_prop:
                corrected_prop = nav

        target_key = f"{corrected_prop}{ODATA_BIND_SUFFIX}"
        if target_key != key:
            # First write wins
            if target_key not in processed:
                processed[target_key] = processed[key]
            del processed[key]

    for key in list(processed):
        value = processed[key]

        if ODATA_BIND_SUFFIX in key:
            if isinstance(value, str):
                processed[key] = normalize_bind_value(value, api_path, relative_prefix)
            continue

        # Plain lookup attribute carrying an entity reference
        if has_schema and entity_info.is_lookup_attribute(key) and looks_like_entity_reference(value):
            nav = entity_info.navigation_property_for(key)
            if nav:
                new_key = f"{nav}{ODATA_BIND_SUFFIX}"
                if new_key not in processed:
                    processed[new_key] = normalize_bind_value(value, api_path, relative_prefix)
                    del processed[key]

    return processed


def extract_navigation_property_examples(data: Any) -> List[str]:
    """One comment line per @odata.bind key describing the association."""
    if not isinstance(data, dict):
        return []

    examples = []
    for key, value in data.items():
        if ODATA_BIND_SUFFIX not in key:
            continue
        navigation_property = key.replace(ODATA_BIND_SUFFIX, '')
        if value is None:
            examples.append(f'// Disassociate relationship: "{navigation_property}{ODATA_BIND_SUFFIX}": null')
        else:
            examples.append(f'// Associate with {navigation_property}: "{key}": "{value}"')
    return examples
