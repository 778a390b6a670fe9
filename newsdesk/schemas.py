from datetime import datetime
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


T = TypeVar("T")


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    error: Optional[str] = None


class VariantFileOut(CamelModel):
    filename: str
    url: str
    size: int
    width: Optional[int] = None
    height: Optional[int] = None


class VariantOut(CamelModel):
    webp: Optional[VariantFileOut] = None
    jpeg: Optional[VariantFileOut] = None


class ProcessingOut(CamelModel):
    variants_created: int
    compression_ratio: str
    total_size: int
    original_size: int


class UploadedImageOut(CamelModel):
    id: str
    filename: str
    original_name: str
    url: str
    size: int
    mimetype: str
    alt_text: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    status: str
    urls: Dict[str, str] = Field(default_factory=dict)
    variants: Dict[str, VariantOut] = Field(default_factory=dict)
    processing: ProcessingOut
    uploaded_at: datetime


class MetadataUpdate(CamelModel):
    alt_text: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    caption: Optional[str] = None
    credit: Optional[str] = None
    copyright: Optional[str] = None
    tags: Optional[List[str]] = None


class MetadataOut(CamelModel):
    image_id: str
    alt_text: str = ""
    title: str = ""
    description: str = ""
    caption: str = ""
    credit: str = ""
    copyright: str = ""
    tags: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class ReferenceOut(CamelModel):
    type: str
    id: str
    title: str
    url: str


class ReferenceCheckOut(CamelModel):
    references: List[ReferenceOut]
    can_delete: bool
    message: str


class ImageInfoOut(CamelModel):
    filename: str
    url: str
    size: int
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    status: Optional[str] = None
    created: datetime
    modified: datetime
    metadata: Optional[MetadataOut] = None


class FileSizeOut(CamelModel):
    size: int
    url: str


class OptimizationStatsOut(CamelModel):
    original_size: int
    total_webp_size: int
    total_jpeg_size: int
    webp_compression_ratio: str
    jpeg_compression_ratio: str
    variants_count: int
    space_saved_webp: int
    space_saved_jpeg: int


class OptimizationOut(CamelModel):
    filename: str
    original: FileSizeOut
    variants: Dict[str, Dict[str, FileSizeOut]]
    stats: OptimizationStatsOut


class ImageListItem(CamelModel):
    id: str
    filename: str
    original_name: str
    url: str
    thumbnail_url: str
    file_size: int
    mime_type: str
    width: Optional[int] = None
    height: Optional[int] = None
    alt_text: str = ""
    status: str
    created_at: datetime
    urls: Optional[Dict[str, str]] = None


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_images: int
    has_next_page: bool
    has_prev_page: bool
    limit: int


class ImageListOut(CamelModel):
    images: List[ImageListItem]
    pagination: Pagination


class StatsResponse(CamelModel):
    total_images: int
    total_size_bytes: int
    total_variant_bytes: int
    by_format: dict
    by_directory: dict
    by_status: dict
    uploads_by_day: List[dict]
