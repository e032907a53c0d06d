from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from handoff.document_types import DocumentType, EntityType


class UploadTokenCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_type: EntityType = Field(alias="entityType")
    entity_id: str = Field(alias="entityId", min_length=1, max_length=64)
    document_type: DocumentType = Field(alias="documentType")

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_entity_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value


class UploadTokenOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hash: str
    expires_at: datetime = Field(alias="expiresAt")


class UploadTokenInfoOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_type: str = Field(alias="entityType")
    document_type: str = Field(alias="documentType")
    subscriber_name: str = Field(alias="subscriberName")


class UploadTokenStatusOut(BaseModel):
    used: bool
    expired: bool


class UploadConsumeOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    document_id: str = Field(alias="documentId")


class UploadErrorOut(BaseModel):
    error: str
    reason: str
    used: bool = False
    expired: bool = False
