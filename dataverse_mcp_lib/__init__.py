"""
Dataverse MCP Library - request builders for the Dataverse Web API exposed as MCP tools.
"""

from .models import (
    Attribute,
    DataverseConfig,
    EntityInfo,
    SolutionContext,
    WebAPIRequest
)
from .client import DataverseAPIError, DataverseClient
from .entity_resolver import (
    EntityResolver,
    TargetSetResolver,
    get_target_entity_set_name,
    naive_pluralize,
    resolve_entity_info
)
from .bind_normalizer import normalize_bind_value, process_odata_bind_properties
from .request_builder import PortalRequestBuilder, WebAPIRequestBuilder
from .bridge import DataverseMCPBridge

__all__ = [
    'Attribute',
    'DataverseConfig',
    'EntityInfo',
    'SolutionContext',
    'WebAPIRequest',
    'DataverseAPIError',
    'DataverseClient',
    'EntityResolver',
    'TargetSetResolver',
    'get_target_entity_set_name',
    'naive_pluralize',
    'resolve_entity_info',
    'normalize_bind_value',
    'process_odata_bind_properties',
    'PortalRequestBuilder',
    'WebAPIRequestBuilder',
    'DataverseMCPBridge'
]
