"""
Constants used throughout the Dataverse MCP library.
"""

DEFAULT_API_VERSION = "v9.2"

# Path of the Web API relative to the environment URL
API_PATH_TEMPLATE = "/api/data/{version}"
DEFAULT_API_PATH = API_PATH_TEMPLATE.format(version=DEFAULT_API_VERSION)

# Power Pages portals expose the Web API under /_api
PORTAL_API_PATH = "/_api"
DEFAULT_PORTAL_URL = "https://yoursite.powerappsportals.com"

USER_AGENT = "Dataverse-MCP-Bridge/1.0"

# Headers sent on every Web API request
ODATA_HEADERS = {
    'Content-Type': 'application/json',
    'Accept': 'application/json',
    'OData-MaxVersion': '4.0',
    'OData-Version': '4.0'
}

# Placeholder id used in synthesized sample payloads
NIL_GUID = "00000000-0000-0000-0000-000000000000"

# Namespace for bound actions and functions
BOUND_OPERATION_NAMESPACE = "Microsoft.Dynamics.CRM"

ODATA_BIND_SUFFIX = "@odata.bind"

# Attribute types that can carry a literal placeholder value
SIMPLE_ATTRIBUTE_TYPES = {
    'string', 'memo', 'integer', 'decimal', 'double', 'money', 'boolean', 'datetime'
}
NUMERIC_ATTRIBUTE_TYPES = {'integer', 'decimal', 'double', 'money'}

REQUIRED_LEVELS = {'ApplicationRequired', 'SystemRequired'}

# Metadata $select clauses
ENTITY_DEFINITION_SELECT = "EntitySetName,PrimaryIdAttribute,PrimaryNameAttribute,LogicalName"
ENTITY_SET_LOOKUP_SELECT = "EntitySetName,LogicalName,PrimaryIdAttribute,PrimaryNameAttribute"
ATTRIBUTE_SELECT = (
    "LogicalName,AttributeType,IsValidForCreate,IsValidForUpdate,"
    "IsPrimaryId,IsPrimaryName,RequiredLevel,Targets"
)
RELATIONSHIP_SELECT = "ReferencingAttribute,ReferencingEntityNavigationPropertyName"

SOLUTION_SELECT = "friendlyname,uniquename,version,ismanaged"
SOLUTION_PUBLISHER_EXPAND = "publisherid($select=friendlyname,uniquename,customizationprefix)"
