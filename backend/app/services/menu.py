from __future__ import annotations

import re
import uuid
from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import MenuItemType, MenuTargetKind
from app.core.logging import get_logger
from app.models.base import utcnow
from app.models.catalog import Category, Collection, SignaturePiece
from app.models.menu_item import MenuItem
from app.schemas.menu_item import MenuItemCreate, MenuItemOut, MenuItemTreeOut, MenuItemUpdate
from app.services.uploads import IncomingImage, MenuImageStorage


logger = get_logger(__name__)

_COLLECTION_TARGETS = {"collection", "collections", "Collection"}
_SIGNATURE_TARGETS = {"signature", "signature-pieces", "Signature Pieces"}
_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)

# Columns that cannot be cleared through an update; an explicit null is ignored.
_NON_NULLABLE_FIELDS = {"name", "slug", "type", "is_active", "order"}
_LIST_FIELDS = {"country", "language", "tags"}
_PLAIN_FIELDS = ("name", "slug", "description", "type", "country", "language", "tags", "order", "icon", "image")


class MenuItemNotFound(LookupError):
    pass


class MenuItemConflict(ValueError):
    pass


def target_kind(target_type: str | None) -> MenuTargetKind | None:
    if target_type is None:
        return None
    if target_type == "category":
        return MenuTargetKind.CATEGORY
    if target_type in _COLLECTION_TARGETS:
        return MenuTargetKind.COLLECTION
    if target_type in _SIGNATURE_TARGETS:
        return MenuTargetKind.SIGNATURE_PIECE
    return MenuTargetKind.OTHER


def _parse_id(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValueError(f"{field} must be a valid UUID") from None


async def _find_active(session: AsyncSession, item_id: uuid.UUID) -> MenuItem | None:
    return await session.scalar(
        select(MenuItem).where(MenuItem.id == item_id, MenuItem.is_deleted.is_(False))
    )


async def _resolve_links(
    session: AsyncSession,
    kind: MenuTargetKind | None,
    *,
    category_id: str | None,
    collection_id: str | None,
    signature_piece_id: str | None,
) -> dict[str, uuid.UUID | None]:
    links: dict[str, uuid.UUID | None] = {
        "category_id": None,
        "collection_id": None,
        "signature_piece_id": None,
    }

    if kind is MenuTargetKind.CATEGORY:
        if not category_id:
            raise ValueError("categoryId is required when targetType is category")
        target = _parse_id(category_id, "categoryId")
        if await session.get(Category, target) is None:
            raise MenuItemNotFound("Linked category not found")
        links["category_id"] = target

    elif kind is MenuTargetKind.COLLECTION:
        # categoryId is still accepted here for older admin clients.
        raw = collection_id or category_id
        if not raw:
            raise ValueError("collectionId or categoryId is required when targetType is collection")
        target = _parse_id(raw, "collectionId")
        if await session.get(Collection, target) is None:
            raise MenuItemNotFound("Linked collection not found")
        links["collection_id"] = target

    elif kind is MenuTargetKind.SIGNATURE_PIECE:
        raw = signature_piece_id or category_id
        if not raw:
            raise ValueError("signaturePieceId or categoryId is required when targetType is signature")
        target = _parse_id(raw, "signaturePieceId")
        if await session.get(SignaturePiece, target) is None:
            raise MenuItemNotFound("Linked signature piece not found")
        links["signature_piece_id"] = target

    return links


async def _descendants(
    session: AsyncSession,
    root_id: uuid.UUID,
    *,
    include_deleted: bool = False,
) -> list[MenuItem]:
    found: list[MenuItem] = []
    seen = {root_id}
    frontier = [root_id]
    while frontier:
        stmt = select(MenuItem).where(MenuItem.parent_id.in_(frontier))
        if not include_deleted:
            stmt = stmt.where(MenuItem.is_deleted.is_(False))
        children = [c for c in (await session.execute(stmt)).scalars().all() if c.id not in seen]
        seen.update(c.id for c in children)
        found.extend(children)
        frontier = [c.id for c in children]
    return found


async def _relevel_descendants(session: AsyncSession, item: MenuItem) -> None:
    levels = {item.id: item.level}
    for child in await _descendants(session, item.id, include_deleted=True):
        if child.parent_id in levels:
            child.level = levels[child.parent_id] + 1
            levels[child.id] = child.level


async def _cascade_active(session: AsyncSession, item_id: uuid.UUID, is_active: bool) -> None:
    for child in await _descendants(session, item_id):
        child.is_active = is_active


async def get_menu_item(session: AsyncSession, item_id: uuid.UUID) -> MenuItem:
    item = await _find_active(session, item_id)
    if item is None:
        raise MenuItemNotFound("Menu item not found")
    return item


async def create_menu_item(session: AsyncSession, *, actor: str, data: MenuItemCreate) -> MenuItem:
    if not data.name.strip():
        raise ValueError("Menu item name is required")
    if not data.slug.strip():
        raise ValueError("Menu item slug is required")

    existing = await session.scalar(select(MenuItem.id).where(MenuItem.slug == data.slug))
    if existing is not None:
        raise MenuItemConflict("Slug already exists")

    parent_id: uuid.UUID | None = None
    level = 0
    if data.parent_id:
        parent = await _find_active(session, _parse_id(data.parent_id, "parentId"))
        if parent is None:
            raise MenuItemNotFound(
                f"Parent menu item with ID '{data.parent_id}' not found or has been deleted. "
                "Please create the parent menu item first or use a valid parent ID."
            )
        parent_id = parent.id
        level = parent.level + 1

    links = await _resolve_links(
        session,
        target_kind(data.target_type),
        category_id=data.category_id,
        collection_id=data.collection_id,
        signature_piece_id=data.signature_piece_id,
    )

    item = MenuItem(
        name=data.name,
        slug=data.slug,
        description=data.description,
        type=data.type,
        target_type=data.target_type,
        parent_id=parent_id,
        level=level,
        country=list(data.country or []),
        language=list(data.language or []),
        tags=list(data.tags or []),
        is_active=data.is_active,
        order=data.order,
        icon=data.icon,
        image=data.image,
        created_by=actor,
        **links,
    )
    session.add(item)
    await session.flush()
    logger.log(f"Menu item created: {item.slug} ({item.id})", context="MenuService")
    return item


async def list_menu_items(
    session: AsyncSession,
    *,
    is_active: bool | None = None,
    parent_id: str | None = None,
    item_type: MenuItemType | None = None,
    country: str | None = None,
    language: str | None = None,
) -> list[MenuItem]:
    stmt = select(MenuItem).where(MenuItem.is_deleted.is_(False))
    if is_active is not None:
        stmt = stmt.where(MenuItem.is_active.is_(is_active))
    if parent_id:
        stmt = stmt.where(MenuItem.parent_id == _parse_id(parent_id, "parentId"))
    if item_type is not None:
        stmt = stmt.where(MenuItem.type == item_type)
    stmt = stmt.order_by(MenuItem.order, MenuItem.name)

    rows = list((await session.execute(stmt)).scalars().all())
    # Array membership is filtered here so the query stays portable between SQLite and PostgreSQL JSON.
    if country:
        rows = [r for r in rows if country in (r.country or [])]
    if language:
        rows = [r for r in rows if language in (r.language or [])]
    logger.debug("Menu items listed", context="MenuService", count=len(rows))
    return rows


async def list_children(session: AsyncSession, item_id: uuid.UUID) -> list[MenuItem]:
    stmt = (
        select(MenuItem)
        .where(MenuItem.parent_id == item_id, MenuItem.is_deleted.is_(False))
        .order_by(MenuItem.order, MenuItem.name)
    )
    return list((await session.execute(stmt)).scalars().all())


async def update_menu_item(
    session: AsyncSession,
    *,
    actor: str,
    item_id: uuid.UUID,
    data: MenuItemUpdate,
) -> MenuItem:
    item = await get_menu_item(session, item_id)
    changes = data.model_dump(exclude_unset=True)

    new_slug = changes.get("slug")
    if new_slug is not None and new_slug != item.slug:
        if not new_slug.strip():
            raise ValueError("Menu item slug is required")
        conflict = await session.scalar(select(MenuItem.id).where(MenuItem.slug == new_slug, MenuItem.id != item.id))
        if conflict is not None:
            raise MenuItemConflict("Slug already exists")
    if changes.get("name") is not None and not changes["name"].strip():
        raise ValueError("Menu item name is required")

    if "parent_id" in changes:
        raw_parent = changes["parent_id"]
        if raw_parent is None:
            item.parent_id = None
            item.level = 0
        else:
            new_parent_id = _parse_id(raw_parent, "parentId")
            if new_parent_id == item.id:
                raise ValueError("Menu item cannot be its own parent")
            parent = await _find_active(session, new_parent_id)
            if parent is None:
                raise MenuItemNotFound("Parent menu item not found")
            if new_parent_id in {d.id for d in await _descendants(session, item.id, include_deleted=True)}:
                raise ValueError("Menu item cannot be moved below one of its own descendants")
            item.parent_id = parent.id
            item.level = parent.level + 1
        await _relevel_descendants(session, item)

    link_fields = {"target_type", "category_id", "collection_id", "signature_piece_id"}
    if link_fields & changes.keys():
        if "target_type" in changes:
            item.target_type = changes["target_type"]

        def _current(field: str) -> str | None:
            value = changes.get(field)
            if value:
                return value
            existing = getattr(item, field)
            return str(existing) if existing else None

        links = await _resolve_links(
            session,
            target_kind(item.target_type),
            category_id=_current("category_id"),
            collection_id=_current("collection_id"),
            signature_piece_id=_current("signature_piece_id"),
        )
        for field, value in links.items():
            setattr(item, field, value)

    for field in _PLAIN_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if value is None and field in _NON_NULLABLE_FIELDS:
            continue
        if field in _LIST_FIELDS:
            value = list(value or [])
        setattr(item, field, value)

    new_active = changes.get("is_active")
    if new_active is not None and new_active != item.is_active:
        item.is_active = new_active
        await _cascade_active(session, item.id, new_active)

    item.updated_by = actor
    await session.flush()
    logger.log(f"Menu item updated: {item.slug} ({item.id})", context="MenuService")
    return item


async def soft_delete_menu_item(session: AsyncSession, *, actor: str, item_id: uuid.UUID) -> None:
    item = await get_menu_item(session, item_id)
    now = utcnow()
    for node in [*await _descendants(session, item.id), item]:
        node.is_deleted = True
        node.deleted_by = actor
        node.deleted_at = now
    await session.flush()
    logger.log(f"Menu item soft-deleted with its children: {item.id}", context="MenuService")


async def restore_menu_item(session: AsyncSession, *, actor: str, item_id: uuid.UUID) -> MenuItem:
    item = await session.get(MenuItem, item_id)
    if item is None:
        raise MenuItemNotFound("Menu item not found")

    for node in [*await _descendants(session, item.id, include_deleted=True), item]:
        node.is_deleted = False
        node.deleted_by = None
        node.deleted_at = None
        node.updated_by = actor
    await session.flush()
    return item


async def toggle_menu_item_status(session: AsyncSession, *, actor: str, item_id: uuid.UUID) -> MenuItem:
    item = await get_menu_item(session, item_id)
    item.is_active = not item.is_active
    item.updated_by = actor
    await _cascade_active(session, item.id, item.is_active)
    await session.flush()
    return item


async def replace_menu_item_image(
    session: AsyncSession,
    *,
    actor: str,
    item_id: uuid.UUID,
    storage: MenuImageStorage,
    file: IncomingImage | None,
) -> tuple[MenuItem, str | None]:
    """
    Store `file` and point the item at it.

    Returns the item and its previous image path. The caller removes the old
    file once the transaction has committed.
    """
    item = await get_menu_item(session, item_id)
    previous = item.image
    stored = storage.store_menu_image(file)
    item.image = stored
    item.updated_by = actor
    try:
        await session.flush()
    except Exception:
        storage.delete_menu_image(stored)
        raise
    return item, previous if previous != stored else None


async def hard_delete_menu_item(session: AsyncSession, *, item_id: uuid.UUID) -> str | None:
    """
    Remove a leaf menu item's row.

    Items with child rows (soft-deleted ones included) are refused. Returns the
    item's image path so the caller can remove the file after commit.
    """
    item = await get_menu_item(session, item_id)
    child = await session.scalar(select(MenuItem.id).where(MenuItem.parent_id == item.id).limit(1))
    if child is not None:
        raise ValueError("Cannot hard delete menu item with children. Delete children first.")

    image, slug = item.image, item.slug
    await session.delete(item)
    await session.flush()
    logger.log(f"Menu item hard-deleted: {slug} ({item_id})", context="MenuService")
    return image


def image_url_for(image: str | None, storage: MenuImageStorage) -> str | None:
    if image and _ABSOLUTE_URL.match(image.strip()):
        return image.strip()
    return storage.image_url(image)


def _linked_id(item: MenuItem) -> uuid.UUID | None:
    kind = target_kind(item.target_type)
    if kind is MenuTargetKind.CATEGORY:
        return item.category_id
    if kind is MenuTargetKind.COLLECTION:
        return item.collection_id
    if kind is MenuTargetKind.SIGNATURE_PIECE:
        return item.signature_piece_id
    return None


def menu_item_out(item: MenuItem, storage: MenuImageStorage) -> MenuItemOut:
    return MenuItemOut(
        id=item.id,
        name=item.name,
        slug=item.slug,
        description=item.description,
        type=item.type,
        target_type=item.target_type,
        category_id=_linked_id(item),
        collection_id=item.collection_id,
        signature_piece_id=item.signature_piece_id,
        parent_id=item.parent_id,
        level=item.level,
        country=list(item.country or []),
        language=list(item.language or []),
        tags=list(item.tags or []),
        is_active=item.is_active,
        order=item.order,
        icon=item.icon,
        image=item.image,
        image_url=image_url_for(item.image, storage),
        is_deleted=item.is_deleted,
        deleted_by=item.deleted_by,
        deleted_date_time=item.deleted_at,
        updated_by=item.updated_by,
        updated_date_time=item.updated_at,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def build_tree(root: MenuItem, items: Iterable[MenuItem], storage: MenuImageStorage) -> MenuItemTreeOut:
    by_parent: dict[uuid.UUID, list[MenuItem]] = defaultdict(list)
    for candidate in items:
        if candidate.parent_id is not None:
            by_parent[candidate.parent_id].append(candidate)
    for siblings in by_parent.values():
        siblings.sort(key=lambda i: (i.order, i.name))

    seen: set[uuid.UUID] = set()

    def _node(item: MenuItem) -> MenuItemTreeOut:
        seen.add(item.id)
        base = menu_item_out(item, storage)
        children = [_node(child) for child in by_parent.get(item.id, []) if child.id not in seen]
        return MenuItemTreeOut(**base.model_dump(), children=children)

    return _node(root)


async def get_menu_tree(session: AsyncSession, item_id: uuid.UUID, *, storage: MenuImageStorage) -> MenuItemTreeOut:
    root = await get_menu_item(session, item_id)
    descendants = await _descendants(session, root.id)
    return build_tree(root, descendants, storage)
