import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


class AssetStatus(str, enum.Enum):
    uploaded = "uploaded"
    pending = "pending"
    ready = "ready"
    failed = "failed"


class ImageAsset(Base):
    __tablename__ = "image_assets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # filename without extension, used by metadata and reference lookups
    image_id = Column(String(255), nullable=False, unique=True)
    filename = Column(String(255), nullable=False, unique=True)
    original_name = Column(String(255), nullable=False)
    mimetype = Column(String(128), nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    directory = Column(String(32), nullable=False, index=True)

    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    format = Column(String(16), nullable=True, index=True)
    status = Column(Enum(AssetStatus), nullable=False, default=AssetStatus.uploaded)

    uploaded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    variants = relationship(
        "ImageVariant",
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by="ImageVariant.id",
    )


class ImageVariant(Base):
    __tablename__ = "image_variants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(Integer, ForeignKey("image_assets.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(32), nullable=False)
    format = Column(String(8), nullable=False)
    filename = Column(String(255), nullable=False)
    width = Column(Integer, nullable=False)
    height = Column(Integer, nullable=False)
    quality = Column(Integer, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)

    asset = relationship("ImageAsset", back_populates="variants")

    __table_args__ = (
        UniqueConstraint("asset_id", "name", "format", name="uq_image_variants_asset_name_format"),
    )


class ImageMetadata(Base):
    __tablename__ = "image_metadata"

    id = Column(Integer, primary_key=True, autoincrement=True)
    image_id = Column(String(255), nullable=False, unique=True)
    alt_text = Column(String(255), nullable=False, default="")
    title = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    caption = Column(String(512), nullable=False, default="")
    credit = Column(String(255), nullable=False, default="")
    copyright = Column(String(255), nullable=False, default="")
    # callable default so instances never share one list
    tags = Column(JSON, nullable=False, default=list)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# Content entities. Only the columns the reference checker reads are mapped.


class Article(Base):
    __tablename__ = "articles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    content = Column(Text, nullable=False, default="")
    featured_image = Column(String(512), nullable=True)
    gallery = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_articles_featured_image", "featured_image"),)


class Author(Base):
    __tablename__ = "authors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    avatar = Column(String(512), nullable=True)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    image = Column(String(512), nullable=True)


class StaticPage(Base):
    __tablename__ = "static_pages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    content = Column(Text, nullable=False, default="")
