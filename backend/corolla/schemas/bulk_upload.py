from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BulkUploadRow(BaseModel):
    # required columns default to None so a missing value is reported per row
    user_email: Optional[str] = None
    system_name: Optional[str] = None
    instance_name: Optional[str] = None
    access_tier_name: Optional[str] = None
    notes: Optional[str] = None


class BulkUploadRequest(BaseModel):
    rows: list[BulkUploadRow] = Field(default_factory=list)


class BulkRowData(BaseModel):
    user_email: str
    system_name: str
    instance_name: Optional[str] = None
    access_tier_name: str
    notes: Optional[str] = None


class BulkValidRowOut(BaseModel):
    row_number: int
    row_data: BulkRowData
    user_id: UUID
    system_id: UUID
    instance_id: Optional[UUID] = None
    tier_id: UUID
    notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class BulkErrorRowOut(BaseModel):
    row_number: int
    row_data: BulkRowData
    errors: list[str]
    model_config = ConfigDict(from_attributes=True)


class BulkUploadSummary(BaseModel):
    total_rows: int
    valid_rows: int
    error_rows: int
    inserted_count: int = 0


class BulkUploadResponse(BaseModel):
    success: bool
    message: str
    summary: BulkUploadSummary
    valid_rows: list[BulkValidRowOut] = Field(default_factory=list)
    error_rows: list[BulkErrorRowOut] = Field(default_factory=list)
    parse_errors: list[str] = Field(default_factory=list)
    parse_warnings: list[str] = Field(default_factory=list)
