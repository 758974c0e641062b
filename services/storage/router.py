"""
services/storage/router.py
Upload endpoint. Files land in the vault as staged objects and are
attached later by the ad / verification endpoints that reference them.
"""

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.storage.objects import release_upload, stage_upload
from services.storage.vault import BUCKETS, public_url
from shared.middleware.auth import AuthContext, get_auth_context
from shared.schemas.schemas import UploadResponse

router = APIRouter(prefix="/uploads", tags=["Uploads"])


@router.post("/{bucket}", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    bucket: str,
    file: UploadFile = File(...),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Upload one image into a bucket. The returned key is referenced by
    ad create/edit (advertisements) or verification submission
    (verification-documents). Unreferenced uploads are purged after
    STAGED_UPLOAD_TTL_HOURS.
    """
    if bucket not in BUCKETS:
        raise HTTPException(status_code=404, detail="Unknown bucket")

    content = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.MAX_UPLOAD_BYTES} bytes",
        )

    obj = await stage_upload(db, ctx.user_id, bucket, content, file.content_type or "")
    response = UploadResponse(
        bucket=obj.bucket,
        key=obj.key,
        url=public_url(obj.bucket, obj.key),
        size_bytes=obj.size_bytes,
        content_type=obj.content_type,
    )
    try:
        await db.commit()
    except Exception:
        await release_upload(response.bucket, response.key)
        raise
    return response
