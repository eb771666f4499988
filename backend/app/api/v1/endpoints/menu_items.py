from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_image_storage, read_incoming_image
from app.core.db import get_session
from app.core.enums import MenuItemType
from app.core.security import require_basic_auth
from app.schemas.menu_item import MenuImageOut, MenuItemCreate, MenuItemOut, MenuItemTreeOut, MenuItemUpdate
from app.services.menu import (
    MenuItemConflict,
    MenuItemNotFound,
    create_menu_item,
    get_menu_item,
    get_menu_tree,
    hard_delete_menu_item,
    list_children,
    list_menu_items,
    menu_item_out,
    replace_menu_item_image,
    restore_menu_item,
    soft_delete_menu_item,
    toggle_menu_item_status,
    update_menu_item,
)
from app.services.uploads import MenuImageStorage, UploadRejected


router = APIRouter()


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, MenuItemNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, MenuItemConflict):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@router.post("", response_model=MenuItemOut, status_code=201)
async def create_menu_item_endpoint(
    data: MenuItemCreate,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
    actor: str = Depends(require_basic_auth),
) -> MenuItemOut:
    try:
        async with session.begin():
            item = await create_menu_item(session, actor=actor, data=data)
    except (MenuItemNotFound, ValueError) as e:
        raise _http_error(e) from e
    return menu_item_out(item, storage)


@router.post("/images", response_model=MenuImageOut, status_code=201)
async def upload_menu_image(
    file: UploadFile | None = File(None),
    storage: MenuImageStorage = Depends(get_image_storage),
    actor: str = Depends(require_basic_auth),
) -> MenuImageOut:
    incoming = await read_incoming_image(file)
    try:
        path = storage.store_menu_image(incoming)
    except UploadRejected as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return MenuImageOut(image=path, image_url=storage.image_url(path))


@router.get("", response_model=list[MenuItemOut])
async def list_menu_items_endpoint(
    is_active: Annotated[bool | None, Query(alias="isActive")] = None,
    parent_id: Annotated[str | None, Query(alias="parentId")] = None,
    item_type: Annotated[MenuItemType | None, Query(alias="type")] = None,
    country: Annotated[str | None, Query()] = None,
    language: Annotated[str | None, Query()] = None,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
) -> list[MenuItemOut]:
    try:
        rows = await list_menu_items(
            session,
            is_active=is_active,
            parent_id=parent_id,
            item_type=item_type,
            country=country,
            language=language,
        )
    except ValueError as e:
        raise _http_error(e) from e
    return [menu_item_out(r, storage) for r in rows]


@router.get("/{item_id}", response_model=MenuItemOut)
async def get_menu_item_endpoint(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
) -> MenuItemOut:
    try:
        item = await get_menu_item(session, item_id)
    except MenuItemNotFound as e:
        raise _http_error(e) from e
    return menu_item_out(item, storage)


@router.get("/{item_id}/children", response_model=list[MenuItemOut])
async def list_menu_item_children(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
) -> list[MenuItemOut]:
    rows = await list_children(session, item_id)
    return [menu_item_out(r, storage) for r in rows]


@router.get("/{item_id}/tree", response_model=MenuItemTreeOut)
async def get_menu_item_tree(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
) -> MenuItemTreeOut:
    try:
        return await get_menu_tree(session, item_id, storage=storage)
    except MenuItemNotFound as e:
        raise _http_error(e) from e


@router.patch("/{item_id}", response_model=MenuItemOut)
async def update_menu_item_endpoint(
    item_id: uuid.UUID,
    data: MenuItemUpdate,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
    actor: str = Depends(require_basic_auth),
) -> MenuItemOut:
    try:
        async with session.begin():
            item = await update_menu_item(session, actor=actor, item_id=item_id, data=data)
    except (MenuItemNotFound, ValueError) as e:
        raise _http_error(e) from e
    return menu_item_out(item, storage)


@router.post("/{item_id}/image", response_model=MenuItemOut)
async def replace_menu_item_image_endpoint(
    item_id: uuid.UUID,
    file: UploadFile | None = File(None),
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
    actor: str = Depends(require_basic_auth),
) -> MenuItemOut:
    incoming = await read_incoming_image(file)
    stored: str | None = None
    try:
        async with session.begin():
            item, previous = await replace_menu_item_image(
                session,
                actor=actor,
                item_id=item_id,
                storage=storage,
                file=incoming,
            )
            stored = item.image
    except (MenuItemNotFound, ValueError) as e:
        raise _http_error(e) from e
    except Exception:
        # Commit failed, so no row points at the new file.
        storage.delete_menu_image(stored)
        raise

    storage.delete_menu_image(previous)
    return menu_item_out(item, storage)


@router.delete("/{item_id}", status_code=204)
async def delete_menu_item_endpoint(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> None:
    try:
        async with session.begin():
            await soft_delete_menu_item(session, actor=actor, item_id=item_id)
    except MenuItemNotFound as e:
        raise _http_error(e) from e


@router.delete("/{item_id}/hard", status_code=204)
async def hard_delete_menu_item_endpoint(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
    actor: str = Depends(require_basic_auth),
) -> None:
    try:
        async with session.begin():
            image = await hard_delete_menu_item(session, item_id=item_id)
    except (MenuItemNotFound, ValueError) as e:
        raise _http_error(e) from e
    storage.delete_menu_image(image)


@router.patch("/{item_id}/restore", response_model=MenuItemOut)
async def restore_menu_item_endpoint(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
    actor: str = Depends(require_basic_auth),
) -> MenuItemOut:
    try:
        async with session.begin():
            item = await restore_menu_item(session, actor=actor, item_id=item_id)
    except MenuItemNotFound as e:
        raise _http_error(e) from e
    return menu_item_out(item, storage)


@router.patch("/{item_id}/toggle-status", response_model=MenuItemOut)
async def toggle_menu_item_status_endpoint(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    storage: MenuImageStorage = Depends(get_image_storage),
    actor: str = Depends(require_basic_auth),
) -> MenuItemOut:
    try:
        async with session.begin():
            item = await toggle_menu_item_status(session, actor=actor, item_id=item_id)
    except MenuItemNotFound as e:
        raise _http_error(e) from e
    return menu_item_out(item, storage)
