"""Pydantic schemas for the documents API and the document store."""
from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

LOCAL_ID_PREFIX = "local_"


class DocumentCreate(BaseModel):
    project_id: UUID
    user_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field("", max_length=512)
    type: str = Field(..., min_length=1, max_length=64)
    content: str = ""
    is_auto_generated: bool = False
    file_path: str | None = None
    file_type: str | None = Field(None, max_length=32)
    file_size: int | None = None


class DocumentCreateBody(BaseModel):
    """Тело запроса на создание документа: project_id из пути, user_id из заголовка."""
    title: str = Field("", max_length=512)
    type: str = Field(..., min_length=1, max_length=64)
    content: str = ""
    is_auto_generated: bool = False


class DocumentUpdate(BaseModel):
    title: str | None = Field(None, max_length=512)
    type: str | None = Field(None, min_length=1, max_length=64)
    content: str | None = None
    is_auto_generated: bool | None = None


class DocumentRecord(BaseModel):
    """A document as handed to callers: a database row or a locally kept fallback copy."""
    id: str
    project_id: str
    user_id: str
    title: str
    type: str
    content: str
    is_auto_generated: bool = False
    file_path: str | None = None
    file_type: str | None = None
    file_size: int | None = None
    schema_version: int | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator("id", "project_id", mode="before")
    @classmethod
    def _uuid_to_str(cls, v):
        return str(v) if isinstance(v, UUID) else v

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        # SQLite hands back naive values; everything is stored in UTC
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)

    @property
    def is_local(self) -> bool:
        return self.id.startswith(LOCAL_ID_PREFIX)


class SectionSaveBody(BaseModel):
    content: str


class SectionResponse(BaseModel):
    section_key: str
    title: str
    category: str
    content: str
    document: DocumentRecord


class CombinedViewResponse(BaseModel):
    category: str
    content: str


class MigrationRequest(BaseModel):
    project_title: str | None = Field(None, max_length=512)
    project_description: str | None = None


class MigrationReport(BaseModel):
    project_id: str
    synced: int = 0
    deleted_legacy: list[str] = Field(default_factory=list)
    deleted_invalid: list[str] = Field(default_factory=list)
    deleted_duplicates: list[str] = Field(default_factory=list)
    created: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    converged: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.deleted_legacy or self.deleted_invalid or self.deleted_duplicates or self.created
        )
