from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from app.api.deps import get_image_storage
from app.services.uploads import MenuImageStorage


router = APIRouter()


@router.get("/{file_path:path}", include_in_schema=False)
async def download_upload(
    file_path: str,
    storage: MenuImageStorage = Depends(get_image_storage),
) -> FileResponse:
    """
    Serve stored images publicly.
    `<BASE_URL>/uploads/<path>` maps onto `<UPLOAD_PATH>/<path>`.
    """
    rel = file_path.lstrip("/")
    if not rel:
        raise HTTPException(status_code=404, detail="Not found")

    base_dir = storage.root.resolve()
    abs_path = (storage.root / rel).resolve()
    try:
        abs_path.relative_to(base_dir)
    except ValueError as e:
        raise HTTPException(status_code=403, detail="Forbidden path") from e

    if not abs_path.is_file():
        raise HTTPException(status_code=404, detail="Not found")

    return FileResponse(
        path=str(abs_path),
        filename=Path(rel).name,
        content_disposition_type="inline",
        headers={
            "Cache-Control": "public, max-age=86400",
        },
    )
