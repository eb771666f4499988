from __future__ import annotations

from sqlalchemy import Enum

from app.core.enums import MenuItemType


menu_item_type_enum = Enum(
    MenuItemType,
    name="menu_item_type",
    values_callable=lambda enum: [member.value for member in enum],
)
