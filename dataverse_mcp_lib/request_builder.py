"""
Builds concrete Web API requests (method, endpoint, headers, body) from
structured operation descriptions, using resolved table metadata to pick
entity set names, default $select fields and navigation properties.
"""

import sys
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

from .bind_normalizer import process_odata_bind_properties
from .constants import (
    BOUND_OPERATION_NAMESPACE,
    DEFAULT_PORTAL_URL,
    NIL_GUID,
    NUMERIC_ATTRIBUTE_TYPES,
    ODATA_BIND_SUFFIX,
    ODATA_HEADERS,
    PORTAL_API_PATH,
    REQUIRED_LEVELS,
    SIMPLE_ATTRIBUTE_TYPES,
)
from .entity_resolver import EntityResolver, TargetSetResolver, naive_pluralize
from .models import DataverseConfig, EntityInfo, WebAPIRequest

# Parameters that must be present before anything is resolved or sent
REQUIRED_PARAMS = {
    'retrieve': ('entity_set_name', 'entity_id'),
    'retrieveMultiple': ('entity_set_name',),
    'create': ('entity_set_name',),
    'update': ('entity_set_name', 'entity_id'),
    'delete': ('entity_set_name', 'entity_id'),
    'associate': ('entity_set_name', 'entity_id', 'relationship_name',
                  'related_entity_set_name', 'related_entity_id'),
    'disassociate': ('entity_set_name', 'entity_id', 'relationship_name'),
    'callAction': ('action_or_function_name',),
    'callFunction': ('action_or_function_name',),
}

PORTAL_REQUIRED_PARAMS = {
    'retrieve': ('logical_entity_name', 'entity_id'),
    'retrieveMultiple': ('logical_entity_name',),
    'create': ('logical_entity_name',),
    'update': ('logical_entity_name', 'entity_id'),
    'delete': ('logical_entity_name', 'entity_id'),
}


def _encode_component(value: str) -> str:
    return quote(str(value), safe="!~*'()")


def _join_names(names) -> str:
    names = list(names)
    if len(names) <= 2:
        return " and ".join(names)
    return f"{', '.join(names[:-1])}, and {names[-1]}"


def build_odata_query(select: Optional[List[str]] = None, filter: Optional[str] = None,
                      orderby: Optional[str] = None, top: Optional[int] = None,
                      skip: Optional[int] = None, expand: Optional[str] = None,
                      count: Optional[bool] = None) -> str:
    """Assemble "?$select=...&$filter=..." or an empty string when nothing is set."""
    params = []
    if select:
        params.append(f"$select={','.join(select)}")
    if filter:
        params.append(f"$filter={_encode_component(filter)}")
    if orderby:
        params.append(f"$orderby={_encode_component(orderby)}")
    if top:
        params.append(f"$top={top}")
    if skip:
        params.append(f"$skip={skip}")
    if expand:
        params.append(f"$expand={_encode_component(expand)}")
    if count:
        params.append("$count=true")
    return f"?{'&'.join(params)}" if params else ""


def generate_headers(prefer: Optional[List[str]] = None, if_match: Optional[str] = None,
                     if_none_match: Optional[str] = None, solution_unique_name: Optional[str] = None,
                     caller_id: Optional[str] = None) -> Dict[str, str]:
    headers = dict(ODATA_HEADERS)
    if prefer:
        headers['Prefer'] = ', '.join(prefer)
    if if_match:
        headers['If-Match'] = if_match
    if if_none_match:
        headers['If-None-Match'] = if_none_match
    if solution_unique_name:
        headers['MSCRM.SolutionUniqueName'] = solution_unique_name
    if caller_id:
        headers['MSCRMCallerID'] = caller_id
    return headers


def format_function_parameter(value: Any) -> str:
    """Render a function parameter as an OData literal."""
    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return 'null'
    return str(value)


def _placeholder_value(attribute_type: str, logical_name: str) -> Any:
    if attribute_type == 'boolean':
        return True
    if attribute_type == 'datetime':
        return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
    if attribute_type in NUMERIC_ATTRIBUTE_TYPES:
        return 1
    return f"Example {logical_name}"


async def generate_sample_body(entity_info: EntityInfo,
                               resolve_target_set: Callable[[str], Awaitable[str]],
                               mode: str = 'create', relative_prefix: str = "") -> Dict[str, Any]:
    """
    Synthesize a minimal payload that matches the table schema.

    Uses the primary name column, up to two simple columns (required ones
    for create, any updatable one for update) and up to two lookups bound
    through their navigation property to a nil GUID.
    """
    body: Dict[str, Any] = {}

    if entity_info.primary_name_attribute:
        primary = entity_info.find_attribute(entity_info.primary_name_attribute)
        if primary and primary.is_valid_for(mode):
            body[entity_info.primary_name_attribute] = f"Sample {entity_info.logical_name}"

    simple_candidates = []
    for attr in entity_info.attributes:
        if attr.type_key not in SIMPLE_ATTRIBUTE_TYPES or not attr.is_valid_for(mode):
            continue
        if attr.is_primary_id or attr.is_primary_name:
            continue
        if mode == 'create' and attr.required_level not in REQUIRED_LEVELS:
            continue
        simple_candidates.append(attr)

    for attr in simple_candidates[:2]:
        body[attr.logical_name] = _placeholder_value(attr.type_key, attr.logical_name)

    lookups = [a for a in entity_info.attributes if a.is_lookup() and a.is_valid_for(mode)][:2]
    for attr in lookups:
        nav = entity_info.lookup_nav_map.get(attr.logical_name)
        if not nav or not attr.targets:
            continue
        target_set = await resolve_target_set(attr.targets[0])
        body[f"{nav}{ODATA_BIND_SUFFIX}"] = f"{relative_prefix.rstrip('/')}/{target_set}({NIL_GUID})"

    if not body:
        primary_name = entity_info.primary_name_attribute or next(
            (a.logical_name for a in entity_info.attributes if a.is_primary_name), None
        )
        if primary_name:
            verb = 'Sample' if mode == 'create' else 'Updated'
            body[primary_name] = f"{verb} {entity_info.logical_name}"

    return body


def validate_request_params(operation: str, params: Dict[str, Any],
                            required_params: Dict[str, Tuple[str, ...]] = REQUIRED_PARAMS) -> None:
    """Raise ValueError when an operation is unknown or lacks identifying parameters."""
    if operation not in required_params:
        raise ValueError(f"Unsupported operation: {operation}")
    required = required_params[operation]
    if any(not params.get(name) for name in required):
        verb = 'is' if len(required) == 1 else 'are'
        raise ValueError(f"{_join_names(required)} {verb} required for {operation} operation")


class WebAPIRequestBuilder:
    """Builds Dataverse Web API requests for every supported operation."""

    def __init__(self, client, config: Optional[DataverseConfig] = None, verbose: bool = False):
        self.client = client
        self.config = config or client.config
        self.verbose = verbose
        self.resolver = EntityResolver(client, verbose=verbose)

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Builder VERBOSE] {message}", file=sys.stderr)

    async def _resolve(self, name: Optional[str]) -> Tuple[Optional[EntityInfo], str]:
        if not name:
            return None, ''
        try:
            entity_info = await self.resolver.resolve(name)
            return entity_info, entity_info.entity_set_name or naive_pluralize(name)
        except Exception as e:
            self._log_verbose(f"Metadata resolution failed for {name}: {e}")
            return None, naive_pluralize(name)

    def _headers(self, params: Dict[str, Any]) -> Dict[str, str]:
        solution_unique_name = None
        if params.get('include_solution_context', True) and self.config.solution_context:
            solution_unique_name = self.config.solution_context.solution_unique_name
        headers = generate_headers(
            prefer=params.get('prefer'),
            if_match=params.get('if_match'),
            if_none_match=params.get('if_none_match'),
            solution_unique_name=solution_unique_name,
            caller_id=params.get('caller_id')
        )
        if params.get('include_auth_header'):
            headers['Authorization'] = 'Bearer {ACCESS_TOKEN}'
        return headers

    async def _payload(self, params: Dict[str, Any], entity_info: Optional[EntityInfo], mode: str,
                       resolve_target_set: TargetSetResolver) -> Dict[str, Any]:
        if params.get('data') is not None:
            return process_odata_bind_properties(params['data'], entity_info, self.config.api_path)
        if entity_info:
            return await generate_sample_body(entity_info, resolve_target_set, mode)
        return {}

    async def build(self, operation: str, **params) -> Tuple[WebAPIRequest, Optional[EntityInfo]]:
        """
        Build the request for ``operation``.

        Parameters are validated before any metadata is fetched. Returns the
        request together with the resolved EntityInfo (None when no table
        was named or resolution failed).
        """
        validate_request_params(operation, params)

        entity_info, entity_set = await self._resolve(params.get('entity_set_name'))
        resolve_target_set = TargetSetResolver(self.resolver)
        entity_id = params.get('entity_id')
        method = 'GET'
        body = None

        if operation in ('retrieve', 'retrieveMultiple'):
            select = params.get('select')
            if not select and entity_info:
                select = entity_info.default_select()
            if operation == 'retrieve':
                endpoint = f"{entity_set}({entity_id})"
                endpoint += build_odata_query(select=select, expand=params.get('expand'))
            else:
                endpoint = entity_set + build_odata_query(
                    select=select,
                    filter=params.get('filter'),
                    orderby=params.get('orderby'),
                    top=params.get('top'),
                    skip=params.get('skip'),
                    expand=params.get('expand'),
                    count=params.get('count')
                )

        elif operation == 'create':
            method = 'POST'
            endpoint = entity_set
            body = await self._payload(params, entity_info, 'create', resolve_target_set)

        elif operation == 'update':
            method = 'PATCH'
            endpoint = f"{entity_set}({entity_id})"
            body = await self._payload(params, entity_info, 'update', resolve_target_set)

        elif operation == 'delete':
            method = 'DELETE'
            endpoint = f"{entity_set}({entity_id})"

        elif operation == 'associate':
            method = 'POST'
            related_set = naive_pluralize(params['related_entity_set_name'])
            endpoint = f"{entity_set}({entity_id})/{params['relationship_name']}/$ref"
            body = {"@odata.id": f"{self.config.api_base_url}/{related_set}({params['related_entity_id']})"}

        elif operation == 'disassociate':
            method = 'DELETE'
            related_id = params.get('related_entity_id')
            if related_id:
                # Collection-valued navigation property: remove one related record
                endpoint = f"{entity_set}({entity_id})/{params['relationship_name']}({related_id})/$ref"
            else:
                endpoint = f"{entity_set}({entity_id})/{params['relationship_name']}/$ref"

        elif operation == 'callAction':
            method = 'POST'
            name = params['action_or_function_name']
            if entity_set and entity_id:
                endpoint = f"{entity_set}({entity_id})/{BOUND_OPERATION_NAMESPACE}.{name}"
            else:
                endpoint = name
            body = params.get('parameters') or {}

        else:  # callFunction
            function_call = params['action_or_function_name']
            parameters = params.get('parameters') or {}
            if parameters:
                rendered = ','.join(f"{k}={format_function_parameter(v)}" for k, v in parameters.items())
                function_call += f"({rendered})"
            if entity_set and entity_id:
                endpoint = f"{entity_set}({entity_id})/{BOUND_OPERATION_NAMESPACE}.{function_call}"
            else:
                endpoint = function_call

        if body is not None:
            body = process_odata_bind_properties(body, entity_info, self.config.api_path)

        request = WebAPIRequest(
            operation=operation,
            method=method,
            endpoint=endpoint,
            headers=self._headers(params),
            body=body,
            base_url=self.config.dataverse_url,
            api_path=self.config.api_path
        )
        self._log_verbose(f"Built {operation}: {request.method} {request.url}")
        return request, entity_info


class PortalRequestBuilder(WebAPIRequestBuilder):
    """Builds Power Pages portal Web API requests (served under /_api)."""

    async def _payload(self, params: Dict[str, Any], entity_info: Optional[EntityInfo], mode: str,
                       resolve_target_set: TargetSetResolver) -> Dict[str, Any]:
        if params.get('data') is not None:
            return process_odata_bind_properties(
                params['data'], entity_info, PORTAL_API_PATH, relative_prefix=PORTAL_API_PATH
            )
        if entity_info:
            return await generate_sample_body(
                entity_info, resolve_target_set, mode, relative_prefix=PORTAL_API_PATH
            )
        return {}

    def _headers(self, params: Dict[str, Any]) -> Dict[str, str]:
        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        headers.update(params.get('custom_headers') or {})
        if params.get('request_verification_token') and params.get('operation') in ('create', 'update', 'delete'):
            headers['__RequestVerificationToken'] = '{{REQUEST_VERIFICATION_TOKEN}}'
        return headers

    async def build(self, operation: str, **params) -> Tuple[WebAPIRequest, Optional[EntityInfo]]:
        validate_request_params(operation, params, PORTAL_REQUIRED_PARAMS)

        entity_info, entity_set = await self._resolve(params.get('logical_entity_name'))
        resolve_target_set = TargetSetResolver(self.resolver)
        entity_id = params.get('entity_id')
        method = 'GET'
        body = None

        select = params.get('select')
        if not select and entity_info and entity_info.primary_id_attribute:
            select = entity_info.default_select()

        if operation == 'retrieve':
            endpoint = f"{entity_set}({entity_id})" + build_odata_query(select=select, expand=params.get('expand'))
        elif operation == 'retrieveMultiple':
            endpoint = entity_set + build_odata_query(
                select=select,
                filter=params.get('filter'),
                orderby=params.get('orderby'),
                top=params.get('top'),
                skip=params.get('skip'),
                expand=params.get('expand'),
                count=params.get('count')
            )
        elif operation == 'create':
            method = 'POST'
            endpoint = entity_set
            body = await self._payload(params, entity_info, 'create', resolve_target_set)
        elif operation == 'update':
            method = 'PATCH'
            endpoint = f"{entity_set}({entity_id})"
            body = await self._payload(params, entity_info, 'update', resolve_target_set)
        else:  # delete
            method = 'DELETE'
            endpoint = f"{entity_set}({entity_id})"

        request = WebAPIRequest(
            operation=operation,
            method=method,
            endpoint=endpoint,
            headers=self._headers(dict(params, operation=operation)),
            body=body,
            base_url=(params.get('base_url') or DEFAULT_PORTAL_URL).rstrip('/'),
            api_path=PORTAL_API_PATH
        )
        self._log_verbose(f"Built portal {operation}: {request.method} {request.url}")
        return request, entity_info
