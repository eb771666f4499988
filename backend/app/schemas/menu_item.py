from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.core.enums import MenuItemType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _empty_to_none(v: object) -> object:
    if isinstance(v, str) and v == "":
        return None
    return v


class MenuItemCreate(CamelModel):
    name: str = Field(max_length=100)
    slug: str = Field(max_length=100)
    description: str | None = Field(default=None, max_length=500)
    type: MenuItemType

    # Conventionally category | collection | page | external. categoryId is
    # required for category targets, collectionId for collection targets and
    # signaturePieceId for signature targets; the menu service enforces this.
    target_type: str | None = Field(default=None)
    category_id: str | None = Field(default=None)
    collection_id: str | None = Field(default=None)
    signature_piece_id: str | None = Field(default=None)

    parent_id: str | None = Field(default=None)
    level: int | None = Field(default=None, ge=0)

    country: list[str] | None = Field(default=None)
    language: list[str] | None = Field(default=None)
    tags: list[str] | None = Field(default=None)

    is_active: bool = Field(default=True)
    order: int = Field(default=0, ge=0)
    icon: str | None = Field(default=None, max_length=100)
    # Relative path returned by the image upload endpoint.
    image: str | None = Field(default=None, max_length=255)

    @field_validator("parent_id", mode="before")
    @classmethod
    def _normalize_parent_id(cls, v: object) -> object:
        return _empty_to_none(v)


class MenuItemUpdate(CamelModel):
    name: str | None = Field(default=None, max_length=100)
    slug: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    type: MenuItemType | None = Field(default=None)

    target_type: str | None = Field(default=None)
    category_id: str | None = Field(default=None)
    collection_id: str | None = Field(default=None)
    signature_piece_id: str | None = Field(default=None)

    parent_id: str | None = Field(default=None)
    level: int | None = Field(default=None, ge=0)

    country: list[str] | None = Field(default=None)
    language: list[str] | None = Field(default=None)
    tags: list[str] | None = Field(default=None)

    is_active: bool | None = Field(default=None)
    order: int | None = Field(default=None, ge=0)
    icon: str | None = Field(default=None, max_length=100)
    image: str | None = Field(default=None, max_length=255)

    @field_validator("parent_id", mode="before")
    @classmethod
    def _normalize_parent_id(cls, v: object) -> object:
        return _empty_to_none(v)


class MenuItemOut(CamelModel):
    id: UUID
    name: str
    slug: str
    description: str | None
    type: MenuItemType
    target_type: str | None

    # Carries the linked entity id for the item's target type, whatever that is.
    category_id: UUID | None
    collection_id: UUID | None
    signature_piece_id: UUID | None

    parent_id: UUID | None
    level: int
    country: list[str]
    language: list[str]
    tags: list[str]
    is_active: bool
    order: int
    icon: str | None
    image: str | None
    image_url: str | None

    is_deleted: bool
    deleted_by: str | None
    deleted_date_time: datetime | None
    updated_by: str | None
    updated_date_time: datetime | None
    created_at: datetime
    updated_at: datetime


class MenuItemTreeOut(MenuItemOut):
    children: list[MenuItemTreeOut] = Field(default_factory=list)


class MenuImageOut(CamelModel):
    image: str = Field(..., description="Relative path to store as a menu item's image")
    image_url: str | None
