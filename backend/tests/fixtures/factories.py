"""
Test factories.

Rules:
- NEVER create own sessions
- Accept db session as first parameter
- Commit, so that requests served by the TestClient (own sessions) see the rows
"""

from sqlalchemy.orm import Session

from crudadmin.auth import hash_password
from crudadmin.config import settings
from crudadmin.models import User

from .models import Article, Category


class UserFactory:
    """User factory."""

    _counter = 0

    @classmethod
    def create(
        cls,
        db: Session,
        *,
        email: str | None = None,
        password: str = "TestPass123!",
        roles: list[str] | None = None,
        is_active: bool = True,
        hashed_password: str | None = None,
    ) -> User:
        cls._counter += 1
        email = email or f"test-user-{cls._counter}@example.com"

        user = User(
            email=email.lower(),
            hashed_password=hashed_password if hashed_password is not None else hash_password(password),
            roles=list(roles or []),
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    @classmethod
    def create_admin(cls, db: Session, roles: list[str] | None = None, **kwargs) -> User:
        """User allowed into the admin area, plus the given admin roles."""
        return cls.create(db, roles=[settings.ADMIN_ACCESS_ROLE, *(roles or [])], **kwargs)

    @classmethod
    def create_super_admin(cls, db: Session, **kwargs) -> User:
        return cls.create(db, roles=[settings.SUPER_ADMIN_ROLE], **kwargs)


class ArticleFactory:
    """Article factory."""

    _counter = 0

    @classmethod
    def create(
        cls,
        db: Session,
        *,
        title: str | None = None,
        body: str | None = None,
        published: bool = False,
        views: int = 0,
        category: Category | None = None,
    ) -> Article:
        cls._counter += 1
        article = Article(
            title=title or f"Article {cls._counter}",
            body=body,
            published=published,
            views=views,
            category=category,
        )
        db.add(article)
        db.commit()
        db.refresh(article)
        return article

    @classmethod
    def create_batch(cls, db: Session, size: int, **kwargs) -> list[Article]:
        return [cls.create(db, **kwargs) for _ in range(size)]


class CategoryFactory:
    _counter = 0

    @classmethod
    def create(cls, db: Session, *, name: str | None = None) -> Category:
        cls._counter += 1
        category = Category(name=name or f"Category {cls._counter}")
        db.add(category)
        db.commit()
        db.refresh(category)
        return category
