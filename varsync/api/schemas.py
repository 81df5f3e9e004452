"""
Request and response models for the HTTP surface.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional

from ..core.schema import DeclarationClass, InstanceKind, InstanceStatus


class ProjectConfigRequest(BaseModel):
    variables: Dict[str, str] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict)


class ClassResult(BaseModel):
    changed_keys: List[str]
    failed_keys: List[str]


class ProjectSyncResponse(BaseModel):
    status: InstanceStatus
    description: Optional[str] = None
    variables: ClassResult
    secrets: ClassResult


class MessageResponse(BaseModel):
    accepted: bool


class InstanceCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    instance_id: str
    kind: InstanceKind
    var_type: DeclarationClass = Field(alias="varType")
    name: Optional[str] = None
    value: Optional[str] = None

    @field_validator('instance_id')
    @classmethod
    def instance_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('instance_id cannot be empty')
        return v


class InstanceConfigRequest(BaseModel):
    value: str


class InstanceResponse(BaseModel):
    instance_id: str
    kind: InstanceKind
    var_type: DeclarationClass
    name: Optional[str] = None
    status: Optional[InstanceStatus] = None
    description: Optional[str] = None
    signal: Optional[str] = None
    owner: Optional[str] = None


class LifecycleResponse(BaseModel):
    instance_id: str
    status: InstanceStatus
    description: Optional[str] = None
    event: Optional[Dict[str, Any]] = None


class EventListResponse(BaseModel):
    instance_id: str
    events: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    kv_count: int
    keys_by_class: Dict[str, int]
    instance_count: int
