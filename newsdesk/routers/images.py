import logging
from typing import List

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import FileResponse, Response
from sqlalchemy.orm import Session

from ..auth import require_editor
from ..database import get_db
from ..errors import ImageValidationError
from ..schemas import (
    ApiResponse,
    ImageInfoOut,
    ImageListOut,
    MetadataOut,
    MetadataUpdate,
    OptimizationOut,
    ReferenceCheckOut,
    UploadedImageOut,
)
from ..service import ImageService
from ..variants import OUTPUT_FORMATS, negotiate_format

logger = logging.getLogger(__name__)


router = APIRouter()

CACHE_CONTROL = "public, max-age=31536000"


def get_image_service(request: Request) -> ImageService:
    return request.app.state.image_service


@router.post(
    "/upload",
    response_model=ApiResponse[UploadedImageOut],
    response_model_exclude_none=True,
    dependencies=[Depends(require_editor)],
)
async def upload_image(
    request: Request,
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
):
    """Upload one image under ``image``, ``featuredImage`` or ``avatar``.

    The field name picks the directory. An optional ``altText`` form field
    seeds the image metadata.
    """
    form = await request.form()
    image = await service.upload_single(db, form)
    return ApiResponse(message="Image uploaded and processed successfully", data=image)


@router.post(
    "/upload-multiple",
    response_model=ApiResponse[List[UploadedImageOut]],
    response_model_exclude_none=True,
    dependencies=[Depends(require_editor)],
)
async def upload_multiple_images(
    request: Request,
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
):
    form = await request.form()
    images, errors = await service.upload_batch(db, form)
    total = len(images) + len(errors)
    message = f"{len(images)} of {total} images processed successfully"
    error = "; ".join(f"{e['filename']}: {e['error']}" for e in errors) or None
    logger.info("Batch upload finished: %s", message)
    if not images:
        raise ImageValidationError(message, code=error)
    return ApiResponse(message=message, data=images, error=error)


@router.get(
    "",
    response_model=ApiResponse[ImageListOut],
    response_model_exclude_none=True,
    dependencies=[Depends(require_editor)],
)
def list_images(
    *,
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    search: str = Query(""),
    sort_by: str = Query("date", alias="sortBy", pattern="^(date|name|size)$"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    filter_by: str = Query("all", alias="filter", pattern="^(all|optimized|images)$"),
):
    listing = service.list_images(
        db,
        page=page,
        limit=limit,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        filter_by=filter_by,
    )
    return ApiResponse(data=listing)


@router.get("/{filename}/info", response_model=ApiResponse[ImageInfoOut], response_model_exclude_none=True)
def get_image_info(
    filename: str,
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
):
    return ApiResponse(data=service.image_info(db, filename))


@router.get(
    "/{filename}/optimization",
    response_model=ApiResponse[OptimizationOut],
    response_model_exclude_none=True,
)
def get_optimization_info(
    filename: str,
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
):
    return ApiResponse(data=service.optimization_info(db, filename))


@router.get("/{filename}/optimized", response_class=Response)
@router.get("/{filename}/optimized/{variant}", response_class=Response)
def serve_optimized_image(
    filename: str,
    variant: str = "medium",
    accept: str = Header(""),
    if_none_match: str = Header(""),
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
):
    fmt = negotiate_format(accept)
    path = service.variant_path(db, filename, variant, fmt)
    stats = path.stat()
    etag = f'"{int(stats.st_mtime * 1000)}-{stats.st_size}"'
    headers = {
        "Cache-Control": CACHE_CONTROL,
        "ETag": etag,
        "Vary": "Accept",
    }
    if if_none_match == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)
    return FileResponse(path, media_type=OUTPUT_FORMATS[fmt][2], headers=headers)


@router.put(
    "/{image_id}/metadata",
    response_model=ApiResponse[MetadataOut],
    response_model_exclude_none=True,
    dependencies=[Depends(require_editor)],
)
def update_image_metadata(
    image_id: str,
    payload: MetadataUpdate,
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
):
    changes = payload.model_dump(exclude_unset=True)
    record = service.update_metadata(db, image_id, changes)
    return ApiResponse(message="Image metadata updated successfully", data=record)


@router.get(
    "/{image_id}/references",
    response_model=ApiResponse[ReferenceCheckOut],
    response_model_exclude_none=True,
    dependencies=[Depends(require_editor)],
)
def check_image_references(
    image_id: str,
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
):
    return ApiResponse(data=service.check_references(db, image_id))


@router.delete(
    "/{filename}",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
    dependencies=[Depends(require_editor)],
)
async def delete_image(
    filename: str,
    db: Session = Depends(get_db),
    service: ImageService = Depends(get_image_service),
):
    await service.delete(db, filename)
    return ApiResponse(message="Image deleted successfully")
