"""
Canned Dataverse metadata and a mocked client for the test modules.
"""

import re
from unittest.mock import AsyncMock, MagicMock

from dataverse_mcp_lib.client import DataverseAPIError
from dataverse_mcp_lib.models import DataverseConfig

DATAVERSE_URL = "https://org.crm.dynamics.com"
NIL_GUID = "00000000-0000-0000-0000-000000000000"

ENTITY_DEFINITIONS = {
    'account': {
        'LogicalName': 'account',
        'EntitySetName': 'accounts',
        'PrimaryIdAttribute': 'accountid',
        'PrimaryNameAttribute': 'name',
    },
    'contact': {
        'LogicalName': 'contact',
        'EntitySetName': 'contacts',
        'PrimaryIdAttribute': 'contactid',
        'PrimaryNameAttribute': 'fullname',
    },
    'cr123_project': {
        'LogicalName': 'cr123_project',
        'EntitySetName': 'cr123_projectset',
        'PrimaryIdAttribute': 'cr123_projectid',
        'PrimaryNameAttribute': 'cr123_name',
    },
}

ATTRIBUTES = {
    'account': [
        {'LogicalName': 'accountid', 'AttributeType': 'Uniqueidentifier', 'IsValidForCreate': True,
         'IsValidForUpdate': False, 'IsPrimaryId': True, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'SystemRequired'}},
        {'LogicalName': 'name', 'AttributeType': 'String', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': True,
         'RequiredLevel': {'Value': 'ApplicationRequired'}},
        {'LogicalName': 'primarycontactid', 'AttributeType': 'Lookup', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'None'}, 'Targets': ['contact']},
        {'LogicalName': 'description', 'AttributeType': 'Memo', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'None'}},
    ],
    'contact': [
        {'LogicalName': 'contactid', 'AttributeType': 'Uniqueidentifier', 'IsValidForCreate': True,
         'IsValidForUpdate': False, 'IsPrimaryId': True, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'SystemRequired'}},
        {'LogicalName': 'fullname', 'AttributeType': 'String', 'IsValidForCreate': False,
         'IsValidForUpdate': False, 'IsPrimaryId': False, 'IsPrimaryName': True,
         'RequiredLevel': {'Value': 'None'}},
        {'LogicalName': 'lastname', 'AttributeType': 'String', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'ApplicationRequired'}},
        {'LogicalName': 'parentcustomerid', 'AttributeType': 'Customer', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'None'}, 'Targets': ['account', 'contact']},
    ],
    'cr123_project': [
        {'LogicalName': 'cr123_projectid', 'AttributeType': 'Uniqueidentifier', 'IsValidForCreate': True,
         'IsValidForUpdate': False, 'IsPrimaryId': True, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'SystemRequired'}},
        {'LogicalName': 'cr123_name', 'AttributeType': 'String', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': True,
         'RequiredLevel': {'Value': 'ApplicationRequired'}},
        {'LogicalName': 'cr123_accountid', 'AttributeType': 'Lookup', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'None'}, 'Targets': ['account']},
        {'LogicalName': 'cr123_budget', 'AttributeType': 'Money', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'ApplicationRequired'}},
        {'LogicalName': 'cr123_active', 'AttributeType': 'Boolean', 'IsValidForCreate': True,
         'IsValidForUpdate': True, 'IsPrimaryId': False, 'IsPrimaryName': False,
         'RequiredLevel': {'Value': 'SystemRequired'}},
    ],
}

RELATIONSHIPS = {
    'account': [
        {'ReferencingAttribute': 'primarycontactid', 'ReferencingEntityNavigationPropertyName': 'primarycontactid'},
    ],
    'contact': [],
    'cr123_project': [
        {'ReferencingAttribute': 'cr123_accountid', 'ReferencingEntityNavigationPropertyName': 'cr123_AccountId'},
    ],
}

DEFINITION_PATTERN = re.compile(r"^EntityDefinitions\(LogicalName='([^']*)'\)(?:/(\w+))?$")


def not_found(endpoint):
    return DataverseAPIError(
        f"Dataverse API Error: Could not find {endpoint} (Code: 0x80060888)",
        status_code=404, code='0x80060888'
    )


async def fake_get_metadata(endpoint, params=None):
    """Answer metadata requests from the canned tables above."""
    if endpoint == 'EntityDefinitions':
        wanted = (params or {}).get('$filter', '').split("'")[1]
        rows = [d for d in ENTITY_DEFINITIONS.values() if d['EntitySetName'] == wanted]
        return {'value': rows}

    match = DEFINITION_PATTERN.match(endpoint)
    if not match or match.group(1) not in ENTITY_DEFINITIONS:
        raise not_found(endpoint)

    logical_name, child = match.groups()
    if child is None:
        return dict(ENTITY_DEFINITIONS[logical_name])
    if child == 'Attributes':
        return {'value': ATTRIBUTES[logical_name]}
    if child == 'ManyToOneRelationships':
        return {'value': RELATIONSHIPS[logical_name]}
    raise not_found(endpoint)


def make_client(get_metadata=fake_get_metadata, solution_context=None):
    """A DataverseClient stand-in whose metadata calls are served from memory."""
    config = DataverseConfig(dataverse_url=DATAVERSE_URL, solution_context=solution_context)
    client = MagicMock()
    client.config = config
    client.dataverse_url = config.dataverse_url
    client.get_metadata = AsyncMock(side_effect=get_metadata)
    client.request = AsyncMock(return_value=None)
    return client
