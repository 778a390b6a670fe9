"""Live scan of content entities for usages of an image.

References are computed on every call; nothing is indexed or stored.
"""

from collections import Counter
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, List, Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

from .models import Article, Author, Category, StaticPage
from .variants import IMAGE_VARIANTS


_PLURALS = {"category": "categories"}


@dataclass
class Reference:
    type: str
    id: str
    title: str
    url: str


@dataclass
class ReferenceReport:
    image_id: str
    references: List[Reference]

    @property
    def can_delete(self) -> bool:
        return not self.references

    @property
    def message(self) -> str:
        return format_reference_message(self.references)


def format_reference_message(references: Iterable[Reference]) -> str:
    counts = Counter(ref.type for ref in references)
    if not counts:
        return "Image can be safely deleted"
    parts = []
    for ref_type, count in counts.items():
        label = ref_type if count == 1 else _PLURALS.get(ref_type, f"{ref_type}s")
        parts.append(f"{count} {label}")
    return f"Image is used in {', '.join(parts)}"


def points_to(value: Optional[str], image_id: str) -> bool:
    """True when ``value`` is the id, its filename, or a path/URL ending in that file or one of its variants."""
    if not value:
        return False
    if value == image_id:
        return True
    name = PurePosixPath(value.split("?", 1)[0].replace("\\", "/")).name
    stem = PurePosixPath(name).stem
    return stem == image_id or stem in {f"{image_id}-{variant}" for variant in IMAGE_VARIANTS}


def _column_mentions(column, image_id: str):
    return column.contains(image_id, autoescape=True)


def find_references(db: Session, image_id: str) -> ReferenceReport:
    references: List[Reference] = []

    # SQL narrows the candidates, the exact rules run in Python
    articles = (
        db.query(Article)
        .filter(
            or_(
                _column_mentions(Article.featured_image, image_id),
                _column_mentions(Article.content, image_id),
                _column_mentions(cast(Article.gallery, String), image_id),
            )
        )
        .order_by(Article.id)
        .all()
    )
    for article in articles:
        if (
            points_to(article.featured_image, image_id)
            or image_id in (article.content or "")
            or any(points_to(item, image_id) for item in (article.gallery or []))
        ):
            references.append(
                Reference("article", str(article.id), article.title, f"/articles/{article.slug}")
            )

    authors = (
        db.query(Author)
        .filter(_column_mentions(Author.avatar, image_id))
        .order_by(Author.id)
        .all()
    )
    for author in authors:
        if points_to(author.avatar, image_id):
            references.append(Reference("author", str(author.id), author.name, f"/authors/{author.slug}"))

    categories = (
        db.query(Category)
        .filter(_column_mentions(Category.image, image_id))
        .order_by(Category.id)
        .all()
    )
    for category in categories:
        if points_to(category.image, image_id):
            references.append(
                Reference("category", str(category.id), category.name, f"/categories/{category.slug}")
            )

    pages = (
        db.query(StaticPage)
        .filter(_column_mentions(StaticPage.content, image_id))
        .order_by(StaticPage.id)
        .all()
    )
    for page in pages:
        if image_id not in (page.content or ""):
            continue
        references.append(Reference("static-page", str(page.id), page.title, f"/pages/{page.slug}"))

    return ReferenceReport(image_id=image_id, references=references)
