"""
Data models for Dataverse metadata and generated Web API requests.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict

from .constants import API_PATH_TEMPLATE, DEFAULT_API_VERSION


class Attribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    logical_name: str
    attribute_type: str = ""  # Dataverse AttributeType, e.g. "String", "Lookup"
    is_valid_for_create: bool = False
    is_valid_for_update: bool = False
    is_primary_id: bool = False
    is_primary_name: bool = False
    required_level: Optional[str] = None
    targets: List[str] = []

    @classmethod
    def from_metadata(cls, data: Dict[str, Any]) -> 'Attribute':
        """Build an Attribute from a raw AttributeMetadata JSON object."""
        required = data.get('RequiredLevel')
        if isinstance(required, dict):
            required = required.get('Value')
        targets = data.get('Targets')
        return cls(
            logical_name=str(data.get('LogicalName') or ''),
            attribute_type=str(data.get('AttributeType') or ''),
            is_valid_for_create=data.get('IsValidForCreate') is True,
            is_valid_for_update=data.get('IsValidForUpdate') is True,
            is_primary_id=data.get('IsPrimaryId') is True,
            is_primary_name=data.get('IsPrimaryName') is True,
            required_level=required,
            targets=list(targets) if isinstance(targets, list) else []
        )

    @property
    def type_key(self) -> str:
        return self.attribute_type.lower()

    def is_lookup(self) -> bool:
        # Customer and Owner columns are polymorphic: one navigation property per target table,
        # so a plain value cannot be bound without knowing the target.
        return self.type_key == 'lookup'

    def is_valid_for(self, mode: str) -> bool:
        """Whether the attribute may be written by a create or update request."""
        return self.is_valid_for_create if mode == 'create' else self.is_valid_for_update


class EntityInfo(BaseModel):
    """Resolved schema of one table, rebuilt for every tool invocation."""
    model_config = ConfigDict(frozen=True)

    logical_name: str = ""
    entity_set_name: str = ""
    primary_id_attribute: str = ""
    primary_name_attribute: Optional[str] = None
    attributes: List[Attribute] = []
    lookup_nav_map: Dict[str, str] = {}

    @property
    def is_resolved(self) -> bool:
        return bool(self.primary_id_attribute)

    def find_attribute(self, name: str) -> Optional[Attribute]:
        name_lower = name.lower()
        return next((a for a in self.attributes if a.logical_name.lower() == name_lower), None)

    def is_lookup_attribute(self, name: str) -> bool:
        attr = self.find_attribute(name)
        return attr is not None and attr.is_lookup()

    def navigation_property_for(self, attribute_name: str) -> Optional[str]:
        """Navigation property of a lookup attribute, matched case-insensitively."""
        name_lower = attribute_name.lower()
        for attr, nav in self.lookup_nav_map.items():
            if attr.lower() == name_lower:
                return nav
        return None

    def default_select(self) -> List[str]:
        fields = [self.primary_id_attribute] if self.primary_id_attribute else []
        if self.primary_name_attribute:
            fields.append(self.primary_name_attribute)
        return fields


class SolutionContext(BaseModel):
    solution_unique_name: str
    solution_display_name: Optional[str] = None
    publisher_unique_name: Optional[str] = None
    publisher_display_name: Optional[str] = None
    customization_prefix: Optional[str] = None
    last_updated: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.last_updated:
            self.last_updated = datetime.now(timezone.utc).isoformat()


class DataverseConfig(BaseModel):
    dataverse_url: str
    access_token: Optional[str] = None
    api_version: str = DEFAULT_API_VERSION
    timeout: int = 30
    solution_context: Optional[SolutionContext] = None

    def model_post_init(self, __context: Any) -> None:
        self.dataverse_url = self.dataverse_url.rstrip('/')

    @property
    def api_path(self) -> str:
        return API_PATH_TEMPLATE.format(version=self.api_version)

    @property
    def api_base_url(self) -> str:
        return f"{self.dataverse_url}{self.api_path}"


class WebAPIRequest(BaseModel):
    operation: str
    method: str = "GET"
    endpoint: str = ""  # path and query relative to the API root
    headers: Dict[str, str] = {}
    body: Optional[Dict[str, Any]] = None
    base_url: str
    api_path: str

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.api_path}/{self.endpoint}"

    @property
    def host(self) -> str:
        return self.base_url.split('://', 1)[-1].split('/', 1)[0]
