"""Pydantic schemas for the access ledger API."""

# purpose: aggregate request and response schemas for FastAPI surfaces and services
# status: active

from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID

from .bulk_upload import (
    BulkErrorRowOut,
    BulkRowData,
    BulkUploadRequest,
    BulkUploadResponse,
    BulkUploadRow,
    BulkUploadSummary,
    BulkValidRowOut,
)


class UserOut(BaseModel):
    id: UUID
    email: str
    name: str
    is_admin: bool = False
    model_config = ConfigDict(from_attributes=True)


class SystemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)


class SystemOut(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class TierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class TierOut(BaseModel):
    id: UUID
    system_id: UUID
    name: str
    model_config = ConfigDict(from_attributes=True)


class InstanceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class InstanceOut(BaseModel):
    id: UUID
    system_id: UUID
    name: str
    model_config = ConfigDict(from_attributes=True)


class SystemDetailOut(SystemOut):
    tiers: list[TierOut] = []
    instances: list[InstanceOut] = []


class SystemOwnersAdd(BaseModel):
    user_ids: list[UUID] = Field(..., min_length=1)


class AccessGrantCreate(BaseModel):
    user_id: UUID
    system_id: UUID
    tier_id: UUID
    instance_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class AccessGrantUpdate(BaseModel):
    status: Literal["removed"]
    notes: Optional[str] = Field(default=None, max_length=1000)


class GrantUserOut(BaseModel):
    id: UUID
    name: str
    email: str
    model_config = ConfigDict(from_attributes=True)


class GrantNamedOut(BaseModel):
    id: UUID
    name: str
    model_config = ConfigDict(from_attributes=True)


class AccessGrantOut(BaseModel):
    id: UUID
    user_id: UUID
    system_id: UUID
    instance_id: Optional[UUID] = None
    tier_id: UUID
    status: Literal["active", "removed"]
    granted_by: UUID
    granted_at: datetime
    removed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user: GrantUserOut
    system: GrantNamedOut
    instance: Optional[GrantNamedOut] = None
    tier: GrantNamedOut
    model_config = ConfigDict(from_attributes=True)


class AccessGrantListOut(BaseModel):
    data: list[AccessGrantOut]
    total: int
    limit: int
    offset: int


class AccessGrantFilters(BaseModel):
    user_id: Optional[UUID] = None
    system_id: Optional[UUID] = None
    instance_id: Optional[UUID] = None
    tier_id: Optional[UUID] = None
    status: Optional[Literal["active", "removed"]] = None
    search: Optional[str] = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class ErrorOut(BaseModel):
    error: str
    message: str


class ErrorResponse(BaseModel):
    detail: ErrorOut


ERROR_RESPONSES = {
    code: {"model": ErrorResponse}
    for code in (400, 401, 403, 404, 409, 503)
}
