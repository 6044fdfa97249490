from crudadmin.admin.context import default_uniqid
from crudadmin.controller import CRUDController
from tests.fixtures.context import make_context
from tests.fixtures.factories import ArticleFactory
from tests.fixtures.models import Article

ADMIN = "admin.article"
FORM = default_uniqid(ADMIN)


def _edit_ctx(services, db, user, article, body):
    return make_context(
        services, db, ADMIN, user=user, method="POST", attributes={"id": str(article.id)}, body=body
    )


def test_preview_renders_without_saving(services, db_session, super_admin):
    article = ArticleFactory.create(db_session, title="Saved")

    resp = CRUDController().edit_action(
        _edit_ctx(services, db_session, super_admin, article, {FORM: {"title": "Draft"}, "btn_preview": ""})
    )

    assert resp.template.name == "crudadmin/preview.html"
    assert resp.context["preview"].title == "Draft"
    assert {e.name: e.value for e in resp.context["elements"]}["title"] == "Draft"
    db_session.expire_all()
    assert db_session.get(Article, article.id).title == "Saved"


def test_preview_approve_saves(services, db_session, super_admin):
    article = ArticleFactory.create(db_session, title="Saved")

    resp = CRUDController().edit_action(
        _edit_ctx(services, db_session, super_admin, article, {FORM: {"title": "Approved"}, "btn_preview_approve": ""})
    )

    assert resp.status_code == 302
    db_session.expire_all()
    assert db_session.get(Article, article.id).title == "Approved"


def test_preview_decline_returns_to_form(services, db_session, super_admin):
    article = ArticleFactory.create(db_session, title="Saved")

    resp = CRUDController().edit_action(
        _edit_ctx(services, db_session, super_admin, article, {FORM: {"title": "Declined"}, "btn_preview_decline": ""})
    )

    assert resp.template.name == "crudadmin/edit.html"
    assert {f.name: f.value for f in resp.context["form"].fields}["title"] == "Declined"
    db_session.expire_all()
    assert db_session.get(Article, article.id).title == "Saved"


def test_preview_on_create(services, db_session, super_admin):
    ctx = make_context(
        services,
        db_session,
        ADMIN,
        user=super_admin,
        method="POST",
        body={FORM: {"title": "Fresh", "views": "4"}, "btn_preview": ""},
    )

    resp = CRUDController().create_action(ctx)

    assert resp.template.name == "crudadmin/preview.html"
    assert resp.context["preview"].views == 4
    assert db_session.query(Article).count() == 0


def test_preview_buttons_ignored_without_preview_support(services, db_session, super_admin):
    ctx = make_context(
        services,
        db_session,
        "admin.category",
        user=super_admin,
        method="POST",
        body={default_uniqid("admin.category"): {"name": "Direct"}, "btn_preview": ""},
    )

    resp = CRUDController().create_action(ctx)

    assert resp.status_code == 302


def test_subclass_preview_keeps_subclass_through_approval(services, pool, db_session, super_admin):
    import re

    from tests.fixtures.admins import MediaAdmin
    from tests.fixtures.models import Image, Media

    class PreviewMediaAdmin(MediaAdmin):
        code = "admin.media_preview"
        base_route_pattern = "media-preview"
        supports_preview_mode = True

    admin = pool.register(PreviewMediaAdmin())
    form = default_uniqid(admin.code)

    preview = CRUDController().create_action(
        make_context(
            services,
            db_session,
            admin.code,
            user=super_admin,
            method="POST",
            query={"subclass": "image"},
            body={form: {"title": "Sunset"}, "btn_preview": ""},
        )
    )

    assert preview.template.name == "crudadmin/preview.html"
    action = re.search(r'<form method="post" action="([^"]+)"', preview.body.decode()).group(1)
    assert action.startswith("/admin/media-preview/create?")
    assert "subclass=image" in action

    approved = CRUDController().create_action(
        make_context(
            services,
            db_session,
            admin.code,
            user=super_admin,
            method="POST",
            query={"subclass": "image"},
            body={form: {"title": "Sunset"}, "btn_preview_approve": ""},
        )
    )

    assert approved.status_code == 302
    saved = db_session.query(Media).filter(Media.title == "Sunset").one()
    assert isinstance(saved, Image)
