"""Image asset lifecycle: intake, variant generation, lookup and guarded deletion."""

import asyncio
import logging
import math
import weakref
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import asc, desc, or_
from sqlalchemy.orm import Session
from starlette.datastructures import FormData

from .errors import ImageInUseError, ImageNotFoundError, ImageServiceError, ImageValidationError
from .intake import (
    BATCH_UPLOAD_FIELDS,
    SINGLE_UPLOAD_FIELDS,
    StoredFile,
    collect_files,
    discard_on_error,
    store_upload,
)
from .metadata import apply_update, seed_alt_text
from .models import AssetStatus, ImageAsset, ImageMetadata, ImageVariant
from .references import ReferenceReport, find_references
from .schemas import (
    FileSizeOut,
    ImageInfoOut,
    ImageListItem,
    ImageListOut,
    MetadataOut,
    OptimizationOut,
    OptimizationStatsOut,
    Pagination,
    ProcessingOut,
    ReferenceCheckOut,
    ReferenceOut,
    UploadedImageOut,
    VariantFileOut,
    VariantOut,
)
from .storage import UploadStorage, image_id_for, validate_filename, variant_filename
from .variants import (
    DECODE_ERRORS,
    IMAGE_VARIANTS,
    OUTPUT_FORMATS,
    GeneratedVariant,
    SourceInfo,
    compression_ratio,
    load_source,
    read_source_info,
    render_variants,
)

logger = logging.getLogger(__name__)


SORT_COLUMNS = {
    "date": ImageAsset.uploaded_at,
    "name": ImageAsset.filename,
    "size": ImageAsset.size_bytes,
}


@dataclass
class _Rendered:
    info: SourceInfo
    variants: List[GeneratedVariant]


@dataclass
class _Job:
    stored: StoredFile
    alt_text: str
    paths: List[Path] = field(default_factory=list)
    asset: Optional[ImageAsset] = None


class ImageService:
    def __init__(
        self,
        storage: UploadStorage,
        *,
        max_file_size: int,
        max_files: int,
        workers: int,
    ) -> None:
        self.storage = storage
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="variants")
        # one lock per image id while a delete is in flight
        self._delete_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)

    # ---- upload ----

    async def upload_single(self, db: Session, form: FormData) -> UploadedImageOut:
        files = collect_files(
            form,
            allowed_fields=SINGLE_UPLOAD_FIELDS,
            max_count=1,
            max_files=self.max_files,
        )
        if not files:
            raise ImageValidationError("No image file provided")
        alt_texts = _alt_texts(form, 1)
        images, errors = await self._ingest(db, files, alt_texts)
        if errors:
            failure = errors[0]
            if failure["invalid"]:
                raise ImageValidationError(failure["error"])
            raise ImageServiceError("Error processing image")
        return images[0]

    async def upload_batch(self, db: Session, form: FormData) -> Tuple[List[UploadedImageOut], List[dict]]:
        files = collect_files(
            form,
            allowed_fields=BATCH_UPLOAD_FIELDS,
            max_count=self.max_files,
            max_files=self.max_files,
        )
        if not files:
            raise ImageValidationError("No image files provided")
        alt_texts = _alt_texts(form, len(files))
        return await self._ingest(db, files, alt_texts)

    async def _ingest(self, db: Session, files, alt_texts: Sequence[str]):
        """Store, register and render a set of uploads.

        Limit violations while storing abort the whole request and remove
        every file written so far. After that, files succeed or fail one by
        one: a failed file loses its original, its variants and its row, the
        others are kept.
        """
        jobs: List[_Job] = []
        written: List[Path] = []
        with discard_on_error(self.storage, written):
            for (fieldname, upload), alt_text in zip(files, alt_texts):
                stored = await store_upload(self.storage, fieldname, upload, max_size=self.max_file_size)
                written.append(stored.path)
                jobs.append(_Job(stored=stored, alt_text=alt_text, paths=[stored.path]))

            for job in jobs:
                job.asset = ImageAsset(
                    image_id=image_id_for(job.stored.filename),
                    filename=job.stored.filename,
                    original_name=job.stored.original_name,
                    mimetype=job.stored.mimetype,
                    size_bytes=job.stored.size,
                    directory=job.stored.directory,
                    status=AssetStatus.uploaded,
                )
                db.add(job.asset)
            db.commit()

        for job in jobs:
            job.asset.status = AssetStatus.pending
        db.commit()

        loop = asyncio.get_running_loop()
        results = await asyncio.gather(
            *(loop.run_in_executor(self.executor, self._render, job.stored, job.paths) for job in jobs),
            return_exceptions=True,
        )

        images: List[UploadedImageOut] = []
        errors: List[dict] = []
        for job, result in zip(jobs, results):
            if isinstance(result, BaseException):
                errors.append(self._discard(db, job, result))
                continue
            try:
                images.append(self._finish(db, job, result))
            except Exception as exc:
                db.rollback()
                errors.append(self._discard(db, job, exc))
        return images, errors

    def _render(self, stored: StoredFile, paths: List[Path]) -> _Rendered:
        try:
            info = read_source_info(stored.path)
            source = load_source(stored.path)
        except DECODE_ERRORS as exc:
            raise ImageValidationError("Uploaded file is not a valid image") from exc
        variants = render_variants(
            source,
            stored.filename,
            self.storage.variants_dir(stored.directory),
            written=paths,
        )
        return _Rendered(info=info, variants=variants)

    def _finish(self, db: Session, job: _Job, rendered: _Rendered) -> UploadedImageOut:
        asset = job.asset
        asset.width = rendered.info.width
        asset.height = rendered.info.height
        asset.format = rendered.info.format
        for variant in rendered.variants:
            asset.variants.append(
                ImageVariant(
                    name=variant.name,
                    format=variant.format,
                    filename=variant.filename,
                    width=variant.width,
                    height=variant.height,
                    quality=variant.quality,
                    size_bytes=variant.size_bytes,
                )
            )
        asset.status = AssetStatus.ready if rendered.variants else AssetStatus.failed
        if job.alt_text:
            seed_alt_text(db, asset.image_id, job.alt_text)
        db.commit()
        db.refresh(asset)
        if asset.status is AssetStatus.failed:
            logger.warning("No variants could be generated for %s", asset.filename)
        logger.info(
            "Processed %s: %d variant file(s), status %s",
            asset.filename,
            len(rendered.variants),
            asset.status.value,
        )
        return self._uploaded_out(asset, job.alt_text.strip())

    def _discard(self, db: Session, job: _Job, exc: BaseException) -> dict:
        invalid = isinstance(exc, ImageValidationError)
        if invalid:
            logger.info("Rejected %s: %s", job.stored.original_name, exc.__cause__ or exc)
        else:
            logger.error(
                "Error processing %s", job.stored.original_name, exc_info=(type(exc), exc, exc.__traceback__)
            )
        self.storage.remove(job.paths)
        if job.asset is not None and job.asset.id is not None:
            db.query(ImageAsset).filter(ImageAsset.id == job.asset.id).delete()
            db.commit()
        return {
            "filename": job.stored.original_name,
            "error": exc.message if invalid else "Error processing image",
            "invalid": invalid,
        }

    def _uploaded_out(self, asset: ImageAsset, alt_text: str) -> UploadedImageOut:
        variants = self._variants_out(asset)
        original_url = self.storage.url_for(asset.directory, asset.filename)
        webp_total = sum(v.size_bytes for v in asset.variants if v.format == "webp")
        urls = {}
        for name in IMAGE_VARIANTS:
            entry = variants.get(name)
            if name == "original":
                urls[name] = original_url
            elif entry is not None:
                urls[name] = (entry.webp or entry.jpeg).url
        return UploadedImageOut(
            id=asset.image_id,
            filename=asset.filename,
            original_name=asset.original_name,
            url=original_url,
            size=asset.size_bytes,
            mimetype=asset.mimetype,
            alt_text=alt_text,
            width=asset.width,
            height=asset.height,
            format=asset.format,
            status=asset.status.value,
            urls=urls,
            variants=variants,
            processing=ProcessingOut(
                variants_created=len(asset.variants),
                compression_ratio=compression_ratio(asset.size_bytes, webp_total),
                total_size=webp_total,
                original_size=asset.size_bytes,
            ),
            uploaded_at=asset.uploaded_at,
        )

    def _variants_out(self, asset: ImageAsset) -> Dict[str, VariantOut]:
        out: Dict[str, VariantOut] = {}
        for variant in asset.variants:
            entry = out.setdefault(variant.name, VariantOut())
            setattr(
                entry,
                variant.format,
                VariantFileOut(
                    filename=variant.filename,
                    url=self.storage.variant_url(asset.directory, variant.filename),
                    size=variant.size_bytes,
                    width=variant.width,
                    height=variant.height,
                ),
            )
        return out

    # ---- lookup ----

    def _find_asset(self, db: Session, name: str) -> Optional[ImageAsset]:
        return (
            db.query(ImageAsset)
            .filter(or_(ImageAsset.filename == name, ImageAsset.image_id == name))
            .one_or_none()
        )

    def _locate(self, db: Session, filename: str) -> Tuple[Optional[ImageAsset], Optional[str]]:
        asset = self._find_asset(db, filename)
        if asset is not None:
            return asset, asset.directory
        # files that predate the asset table are found by probing
        return None, self.storage.probe(filename)

    def image_info(self, db: Session, filename: str) -> ImageInfoOut:
        validate_filename(filename)
        asset, directory = self._locate(db, filename)
        if directory is None:
            raise ImageNotFoundError("Image not found")
        name = asset.filename if asset else filename
        path = self.storage.path_for(directory, name)
        if not path.is_file():
            raise ImageNotFoundError("Image not found")
        stats = path.stat()

        if asset is not None and asset.width is not None:
            width, height, fmt = asset.width, asset.height, asset.format
        else:
            try:
                info = read_source_info(path)
                width, height, fmt = info.width, info.height, info.format
            except DECODE_ERRORS:
                width = height = fmt = None

        metadata = None
        record = (
            db.query(ImageMetadata).filter(ImageMetadata.image_id == image_id_for(name)).one_or_none()
        )
        if record is not None:
            metadata = MetadataOut.model_validate(record)

        return ImageInfoOut(
            filename=name,
            url=self.storage.url_for(directory, name),
            size=stats.st_size,
            width=width,
            height=height,
            format=fmt,
            status=asset.status.value if asset else None,
            created=datetime.fromtimestamp(stats.st_ctime),
            modified=datetime.fromtimestamp(stats.st_mtime),
            metadata=metadata,
        )

    def optimization_info(self, db: Session, filename: str) -> OptimizationOut:
        validate_filename(filename)
        asset, directory = self._locate(db, filename)
        name = asset.filename if asset else filename
        if directory is None or not self.storage.variants_dir(directory).is_dir():
            raise ImageNotFoundError("Image optimization info not found")
        original = self.storage.path_for(directory, name)
        if not original.is_file():
            raise ImageNotFoundError("Image optimization info not found")
        original_size = original.stat().st_size

        variants: Dict[str, Dict[str, FileSizeOut]] = {}
        totals = {"webp": 0, "jpeg": 0}
        for variant in IMAGE_VARIANTS:
            found = {}
            for fmt, (ext, _, _) in OUTPUT_FORMATS.items():
                vname = variant_filename(name, variant, ext)
                path = self.storage.variant_path(directory, vname)
                if path.is_file():
                    found[fmt] = FileSizeOut(
                        size=path.stat().st_size, url=self.storage.variant_url(directory, vname)
                    )
            if len(found) == len(OUTPUT_FORMATS):
                variants[variant] = found
                for fmt, entry in found.items():
                    totals[fmt] += entry.size

        return OptimizationOut(
            filename=name,
            original=FileSizeOut(size=original_size, url=self.storage.url_for(directory, name)),
            variants=variants,
            stats=OptimizationStatsOut(
                original_size=original_size,
                total_webp_size=totals["webp"],
                total_jpeg_size=totals["jpeg"],
                webp_compression_ratio=compression_ratio(original_size, totals["webp"]),
                jpeg_compression_ratio=compression_ratio(original_size, totals["jpeg"]),
                variants_count=len(variants),
                space_saved_webp=original_size - totals["webp"],
                space_saved_jpeg=original_size - totals["jpeg"],
            ),
        )

    def variant_path(self, db: Session, filename: str, variant: str, fmt: str) -> Path:
        validate_filename(filename)
        if variant not in IMAGE_VARIANTS:
            raise ImageValidationError(f"Unknown image variant: {variant}")
        asset = self._find_asset(db, filename)
        base = asset.filename if asset else filename
        vname = variant_filename(base, variant, OUTPUT_FORMATS[fmt][0])
        directory = asset.directory if asset else self.storage.probe_variant(vname)
        if directory is not None:
            path = self.storage.variant_path(directory, vname)
            if path.is_file():
                return path
        raise ImageNotFoundError("Image variant not found")

    def list_images(
        self,
        db: Session,
        *,
        page: int,
        limit: int,
        search: str = "",
        sort_by: str = "date",
        sort_order: str = "desc",
        filter_by: str = "all",
    ) -> ImageListOut:
        q = db.query(ImageAsset, ImageMetadata.alt_text).outerjoin(
            ImageMetadata, ImageMetadata.image_id == ImageAsset.image_id
        )
        if search:
            q = q.filter(
                or_(
                    ImageAsset.filename.icontains(search, autoescape=True),
                    ImageAsset.original_name.icontains(search, autoescape=True),
                    ImageMetadata.alt_text.icontains(search, autoescape=True),
                )
            )
        if filter_by == "optimized":
            q = q.filter(ImageAsset.status == AssetStatus.ready)
        elif filter_by == "images":
            q = q.filter(ImageAsset.status != AssetStatus.ready)

        total = q.count()
        column = SORT_COLUMNS.get(sort_by, ImageAsset.uploaded_at)
        ordering = asc if sort_order == "asc" else desc
        rows = (
            q.order_by(ordering(column), ordering(ImageAsset.id))
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        items = []
        for asset, alt_text in rows:
            original_url = self.storage.url_for(asset.directory, asset.filename)
            variants = self._variants_out(asset)
            urls = None
            if variants:
                urls = {"original": original_url}
                for name, entry in variants.items():
                    if name != "original":
                        urls[name] = (entry.webp or entry.jpeg).url
            thumb = variants.get("thumbnail")
            items.append(
                ImageListItem(
                    id=asset.image_id,
                    filename=asset.filename,
                    original_name=asset.original_name,
                    url=original_url,
                    thumbnail_url=(thumb.webp or thumb.jpeg).url if thumb else original_url,
                    file_size=asset.size_bytes,
                    mime_type=asset.mimetype,
                    width=asset.width,
                    height=asset.height,
                    alt_text=alt_text or "",
                    status=asset.status.value,
                    created_at=asset.uploaded_at,
                    urls=urls,
                )
            )

        total_pages = math.ceil(total / limit) if total else 0
        return ImageListOut(
            images=items,
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_images=total,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
                limit=limit,
            ),
        )

    # ---- metadata & references ----

    def update_metadata(self, db: Session, image_id: str, changes: dict) -> MetadataOut:
        validate_filename(image_id)
        if self._find_asset(db, image_id) is None:
            raise ImageNotFoundError("Image not found")
        record = apply_update(db, image_id_for(image_id), changes)
        return MetadataOut.model_validate(record)

    def check_references(self, db: Session, image_id: str) -> ReferenceCheckOut:
        validate_filename(image_id)
        report = find_references(db, image_id_for(image_id))
        return _reference_out(report)

    async def delete(self, db: Session, filename: str) -> None:
        validate_filename(filename)
        image_id = image_id_for(filename)
        lock = self._delete_locks.get(image_id)
        if lock is None:
            lock = asyncio.Lock()
            self._delete_locks[image_id] = lock

        # Serializes deletes of one image only. A reference created between
        # the check and the delete is not detected.
        async with lock:
            asset, directory = self._locate(db, filename)
            if directory is None:
                raise ImageNotFoundError("Image not found")
            name = asset.filename if asset else filename

            report = find_references(db, image_id)
            if not report.can_delete:
                logger.warning("Refused to delete %s: %s", name, report.message)
                raise ImageInUseError(
                    report.message,
                    code="IMAGE_IN_USE",
                    data=_reference_out(report).model_dump(by_alias=True),
                )

            paths = [self.storage.path_for(directory, name), *self.storage.variant_files(directory, name)]
            if asset is not None:
                db.delete(asset)
            db.query(ImageMetadata).filter(ImageMetadata.image_id == image_id).delete()
            db.commit()
            self.storage.remove(paths)
            logger.info("Deleted %s and %d variant file(s)", name, len(paths) - 1)


def _alt_texts(form: FormData, count: int) -> List[str]:
    values = [v for v in form.getlist("altText") if isinstance(v, str)]
    if len(values) == count:
        return values
    single = values[0] if values else ""
    return [single] * count


def _reference_out(report: ReferenceReport) -> ReferenceCheckOut:
    return ReferenceCheckOut(
        references=[ReferenceOut.model_validate(ref) for ref in report.references],
        can_delete=report.can_delete,
        message=report.message,
    )
