"""Asset upload endpoint.

POST /api/upload-assets accepts multipart fields modelImage, garmentImage,
optional fabricImage and up to three styleRefs. Each file becomes an Asset row
in two phases: the row is created with a placeholder storage key to obtain its
id, the binary is uploaded under a key embedding that id, then the real key is
written back.

Requests are rate limited per client IP.
"""

import hashlib
import os
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status

from composit.api.dependencies import get_services, require_session_id, upload_rate_limit
from composit.api.schemas import CamelModel
from composit.models.asset import Asset, AssetRole
from composit.services.container import Services
from composit.services.exceptions import StorageError
from composit.services.images import image_dimensions
from composit.services.metrics import storage_uploads_total

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["uploads"])

ACCEPTED_MIME = {"image/jpeg", "image/png", "image/webp", "image/heic", "image/heif"}
HEIC_EXTENSIONS = (".heic", ".heif")
MAX_SIZE_BYTES = 25 * 1024 * 1024
MAX_STYLE_REFS = 3


class UploadedAsset(CamelModel):
    id: UUID
    role: AssetRole
    filename: str
    width: int | None
    height: int | None
    storage_key: str


class UploadAssetsResponse(CamelModel):
    session_id: str
    assets: list[UploadedAsset]


def asset_storage_key(session_id: str, asset_id: UUID, filename: str) -> str:
    return f"sessions/{session_id}/assets/{asset_id}/{filename}"


def _check_file(file: UploadFile, data: bytes) -> str:
    """Validate type and size; returns the effective MIME type."""
    filename = (file.filename or "").lower()
    mime = file.content_type or "application/octet-stream"
    if mime not in ACCEPTED_MIME and not filename.endswith(HEIC_EXTENSIONS):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported file type: {mime}",
        )
    if len(data) > MAX_SIZE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File {file.filename} exceeds {MAX_SIZE_BYTES // (1024 * 1024)} MB",
        )
    return mime


@router.post(
    "/upload-assets",
    status_code=status.HTTP_201_CREATED,
    response_model=UploadAssetsResponse,
    dependencies=[Depends(upload_rate_limit)],
)
async def upload_assets(
    request: Request,
    modelImage: UploadFile = File(...),
    garmentImage: UploadFile = File(...),
    fabricImage: UploadFile | None = File(None),
    styleRefs: list[UploadFile] | None = File(None),
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
) -> UploadAssetsResponse:
    """Upload the input images of a future generation.

    Raises:
        HTTPException: 400 too many style references, 413 file too large,
            415 unsupported type, 429 rate limited, 502 storage failure
    """
    style_refs = styleRefs or []
    if len(style_refs) > MAX_STYLE_REFS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {MAX_STYLE_REFS} style references are allowed",
        )

    entries: list[tuple[UploadFile, AssetRole]] = [
        (modelImage, AssetRole.MODEL),
        (garmentImage, AssetRole.GARMENT),
    ]
    if fabricImage is not None:
        entries.append((fabricImage, AssetRole.FABRIC))
    entries.extend((ref, AssetRole.STYLE_REF) for ref in style_refs)

    files: list[tuple[UploadFile, AssetRole, bytes, str]] = []
    for file, role in entries:
        data = await file.read()
        files.append((file, role, data, _check_file(file, data)))

    client_host = request.client.host if request.client else None
    ip_hash = hashlib.sha256(client_host.encode()).hexdigest()[:32] if client_host else None

    async with await services.uow_factory() as uow:
        await uow.sessions.touch_or_create(
            session_id, user_agent=request.headers.get("user-agent"), ip_hash=ip_hash
        )

    uploaded: list[UploadedAsset] = []
    for file, role, data, mime in files:
        filename = os.path.basename(file.filename or f"{role.value}.bin")
        width, height = image_dimensions(data)

        async with await services.uow_factory() as uow:
            asset = await uow.assets.add(
                Asset(
                    session_id=session_id,
                    role=role,
                    filename=filename,
                    mime=mime,
                    size_bytes=len(data),
                    width=width,
                    height=height,
                )
            )

        storage_key = asset_storage_key(session_id, asset.id, filename)
        try:
            await services.storage.upload(storage_key, data, mime)
        except StorageError as e:
            logger.error(
                "upload.storage_failed",
                asset_id=str(asset.id),
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to upload assets"
            )
        storage_uploads_total.labels(kind="asset").inc()

        async with await services.uow_factory() as uow:
            await uow.assets.set_storage_key(asset, storage_key)

        logger.info("asset.uploaded", asset_id=str(asset.id), role=role.value, storage_key=storage_key)
        uploaded.append(
            UploadedAsset(
                id=asset.id,
                role=role,
                filename=filename,
                width=width,
                height=height,
                storage_key=storage_key,
            )
        )

    return UploadAssetsResponse(session_id=session_id, assets=uploaded)
