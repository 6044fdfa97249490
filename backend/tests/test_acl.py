import pytest

from crudadmin.admin.context import default_uniqid
from crudadmin.admin.model_manager import class_path
from crudadmin.controller import CRUDController
from crudadmin.exceptions import AccessDeniedError, NotFoundError
from crudadmin.models import AclEntry
from crudadmin.security.acl import MaskBuilder
from crudadmin.security.handlers import Permission
from tests.fixtures.admins import ARTICLE_GUEST_ROLE
from tests.fixtures.context import make_context
from tests.fixtures.factories import ArticleFactory, CategoryFactory, UserFactory
from tests.fixtures.models import Article

ADMIN = "admin.article"


def _acl_ctx(services, db, user, article, **kwargs):
    return make_context(services, db, ADMIN, user=user, attributes={"id": str(article.id)}, **kwargs)


def test_mask_builder():
    builder = MaskBuilder().add("VIEW").add("EDIT")
    assert builder.get() == MaskBuilder.MASK_VIEW | MaskBuilder.MASK_EDIT
    assert builder.remove("VIEW").permissions() == ["EDIT"]
    with pytest.raises(ValueError):
        MaskBuilder.get_code("FLY")


def test_acl_disabled_admin_is_not_found(services, db_session, super_admin):
    category = CategoryFactory.create(db_session)
    ctx = make_context(services, db_session, "admin.category", user=super_admin, attributes={"id": str(category.id)})
    with pytest.raises(NotFoundError, match="ACL are not enabled"):
        CRUDController().acl_action(ctx)


def test_acl_requires_master(services, db_session):
    article = ArticleFactory.create(db_session)
    user = UserFactory.create_admin(db_session, roles=[ARTICLE_GUEST_ROLE])
    with pytest.raises(AccessDeniedError):
        CRUDController().acl_action(_acl_ctx(services, db_session, user, article))


def test_acl_page_hides_owner_permissions_from_non_owner(services, db_session, super_admin):
    article = ArticleFactory.create(db_session)
    UserFactory.create_admin(db_session, email="editor@example.com")

    resp = CRUDController().acl_action(_acl_ctx(services, db_session, super_admin, article))

    assert resp.template.name == "crudadmin/acl.html"
    assert "MASTER" not in resp.context["permissions"]
    assert "OWNER" not in resp.context["permissions"]
    users_form = resp.context["aclUsersForm"]
    assert "editor@example.com" in users_form.identities
    assert "ROLE_ADMIN_ARTICLE_EDITOR" in resp.context["roles"]


def test_creator_becomes_owner(services, db_session, super_admin):
    ctx = make_context(
        services,
        db_session,
        ADMIN,
        user=super_admin,
        method="POST",
        body={default_uniqid(ADMIN): {"title": "Mine"}},
    )
    CRUDController().create_action(ctx)
    article = db_session.query(Article).filter(Article.title == "Mine").one()

    entry = db_session.query(AclEntry).filter(AclEntry.object_id == str(article.id)).one()
    assert entry.identity == super_admin.email
    assert entry.mask == MaskBuilder.MASK_OWNER

    resp = CRUDController().acl_action(_acl_ctx(services, db_session, super_admin, article))
    assert "OWNER" in resp.context["permissions"]


def test_posting_user_matrix_grants_object_permission(services, db_session, super_admin):
    article = ArticleFactory.create(db_session)
    other_article = ArticleFactory.create(db_session)
    editor = UserFactory.create_admin(db_session, email="editor@example.com")
    session: dict = {}
    ctx = _acl_ctx(
        services,
        db_session,
        super_admin,
        article,
        method="POST",
        body={"acl_users_form": {"editor@example.com": {"EDIT": "1"}}},
        session=session,
    )

    resp = CRUDController().acl_action(ctx)

    assert resp.status_code == 302
    assert resp.headers["location"] == f"/admin/articles/{article.id}/acl"
    assert session["_flashes"]["success"] == ["ACL has been successfully updated."]
    entry = (
        db_session.query(AclEntry)
        .filter(AclEntry.object_class == class_path(Article), AclEntry.identity == "editor@example.com")
        .one()
    )
    assert entry.mask == MaskBuilder.MASK_EDIT

    admin = services.pool.get_admin_by_admin_code(ADMIN)
    editor_ctx = make_context(services, db_session, ADMIN, user=editor)
    assert admin.is_granted(editor_ctx, Permission.EDIT, article)
    assert admin.is_granted(editor_ctx, Permission.VIEW, article)
    assert not admin.is_granted(editor_ctx, Permission.DELETE, article)
    assert not admin.is_granted(editor_ctx, Permission.EDIT, other_article)
    assert not admin.is_granted(editor_ctx, Permission.EDIT)


def test_role_matrix_update_keeps_hidden_bits(services, db_session, super_admin):
    article = ArticleFactory.create(db_session)
    db_session.add(
        AclEntry(
            object_class=class_path(Article),
            object_id=str(article.id),
            identity_type="role",
            identity="ROLE_ADMIN",
            mask=MaskBuilder.MASK_MASTER | MaskBuilder.MASK_VIEW,
        )
    )
    db_session.commit()
    ctx = _acl_ctx(
        services,
        db_session,
        super_admin,
        article,
        method="POST",
        body={"acl_roles_form": {"ROLE_ADMIN": {"EDIT": "on"}}},
    )

    CRUDController().acl_action(ctx)

    entry = db_session.query(AclEntry).filter(AclEntry.identity == "ROLE_ADMIN").one()
    db_session.refresh(entry)
    assert entry.mask == MaskBuilder.MASK_MASTER | MaskBuilder.MASK_EDIT


def test_unknown_identity_renders_form_again(services, db_session, super_admin):
    article = ArticleFactory.create(db_session)
    ctx = _acl_ctx(
        services,
        db_session,
        super_admin,
        article,
        method="POST",
        body={"acl_users_form": {"ghost@example.com": {"EDIT": "1"}}},
    )
    resp = CRUDController().acl_action(ctx)
    assert resp.status_code == 200
    assert resp.context["aclUsersForm"].errors == ["Unknown identity `ghost@example.com`"]
    assert db_session.query(AclEntry).count() == 0


def test_deleting_object_drops_its_acl(services, db_session, super_admin):
    article = ArticleFactory.create(db_session)
    db_session.add(
        AclEntry(
            object_class=class_path(Article),
            object_id=str(article.id),
            identity_type="user",
            identity=super_admin.email,
            mask=MaskBuilder.MASK_OWNER,
        )
    )
    db_session.commit()
    ctx = _acl_ctx(services, db_session, super_admin, article, method="DELETE")
    CRUDController().delete_action(ctx)
    assert db_session.query(AclEntry).count() == 0
