from __future__ import annotations

from enum import StrEnum


class MenuItemType(StrEnum):
    PAGE = "page"
    SECTION = "section"
    LINK = "link"
    CATEGORY = "category"


class MenuTargetKind(StrEnum):
    CATEGORY = "category"
    COLLECTION = "collection"
    SIGNATURE_PIECE = "signature"
    OTHER = "other"
