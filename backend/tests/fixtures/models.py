"""Mapped classes used only by the test suite."""

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crudadmin.db import Base


class Category(Base):
    __tablename__ = "test_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    def __str__(self) -> str:
        return self.name or ""


class Article(Base):
    __tablename__ = "test_articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("test_categories.id"), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    category = relationship("Category")

    __mapper_args__ = {"version_id_col": version}

    def __str__(self) -> str:
        return self.title or ""


class Media(Base):
    __tablename__ = "test_media"
    __admin_abstract__ = True

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)

    __mapper_args__ = {"polymorphic_on": kind, "polymorphic_identity": "media"}


class Image(Media):
    __mapper_args__ = {"polymorphic_identity": "image"}


class Video(Media):
    __mapper_args__ = {"polymorphic_identity": "video"}
