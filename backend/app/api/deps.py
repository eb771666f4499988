from __future__ import annotations

from fastapi import Request, UploadFile

from app.services.uploads import IncomingImage, MenuImageStorage


def get_image_storage(request: Request) -> MenuImageStorage:
    return request.app.state.image_storage


async def read_incoming_image(file: UploadFile | None) -> IncomingImage | None:
    if file is None:
        return None
    content = await file.read()
    return IncomingImage(
        content=content,
        content_type=file.content_type,
        filename=file.filename or "",
        size=file.size,
    )
