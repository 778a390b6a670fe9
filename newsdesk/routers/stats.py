from datetime import datetime, timedelta
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import require_editor
from ..database import get_db
from ..models import ImageAsset, ImageVariant
from ..schemas import ApiResponse, StatsResponse


router = APIRouter()


@router.get("", response_model=ApiResponse[StatsResponse], dependencies=[Depends(require_editor)])
def stats(db: Session = Depends(get_db)):
    total_images = db.query(func.count(ImageAsset.id)).scalar() or 0
    total_size = db.query(func.coalesce(func.sum(ImageAsset.size_bytes), 0)).scalar() or 0
    variant_size = db.query(func.coalesce(func.sum(ImageVariant.size_bytes), 0)).scalar() or 0

    # by format
    fmt_rows = db.query(ImageAsset.format, func.count(ImageAsset.id)).group_by(ImageAsset.format).all()
    by_format = {fmt or "unknown": cnt for fmt, cnt in fmt_rows}

    # by upload directory
    dir_rows = db.query(ImageAsset.directory, func.count(ImageAsset.id)).group_by(ImageAsset.directory).all()
    by_directory = {d: cnt for d, cnt in dir_rows}

    status_rows = db.query(ImageAsset.status, func.count(ImageAsset.id)).group_by(ImageAsset.status).all()
    by_status = {s.value: cnt for s, cnt in status_rows}

    # daily uploads over the last 30 days
    start_day = (datetime.utcnow().date() - timedelta(days=29))
    day_col = func.date(ImageAsset.uploaded_at)
    day_rows = (
        db.query(day_col.label("day"), func.count(ImageAsset.id))
        .filter(ImageAsset.uploaded_at >= start_day)
        .group_by(day_col)
        .order_by(day_col)
        .all()
    )
    day_map = {str(d): cnt for d, cnt in day_rows}
    uploads_by_day: List[dict] = []
    for i in range(30):
        d = start_day + timedelta(days=i)
        key = str(d)
        uploads_by_day.append({"date": key, "count": int(day_map.get(key, 0))})

    return ApiResponse(
        data=StatsResponse(
            total_images=int(total_images),
            total_size_bytes=int(total_size),
            total_variant_bytes=int(variant_size),
            by_format={k: int(v) for k, v in by_format.items()},
            by_directory={k: int(v) for k, v in by_directory.items()},
            by_status={k: int(v) for k, v in by_status.items()},
            uploads_by_day=uploads_by_day,
        )
    )
