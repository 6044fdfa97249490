import pytest
from prometheus_client import REGISTRY

from crudadmin.admin.context import default_uniqid
from crudadmin.auth import create_access_token
from crudadmin.config import settings
from crudadmin.models import AdminAuditLog
from tests.fixtures.factories import ArticleFactory, UserFactory
from tests.fixtures.models import Article

FORM = default_uniqid("admin.article")


def _auth_headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user.id)}"}


@pytest.fixture
def headers(super_admin):
    return _auth_headers(super_admin)


def test_admin_requires_authentication(client):
    resp = client.get("/admin/articles/list")
    assert resp.status_code == 401


def test_admin_requires_admin_role(client, db_session):
    user = UserFactory.create(db_session, roles=["ROLE_USER"])
    resp = client.get("/admin/articles/list", headers=_auth_headers(user))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Admin access required"


def test_admin_role_without_admin_permissions_is_denied(client, db_session):
    user = UserFactory.create_admin(db_session)
    resp = client.get("/admin/articles/list", headers=_auth_headers(user))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Access Denied."


def test_list_page(client, db_session, headers):
    ArticleFactory.create(db_session, title="Listed article")
    resp = client.get("/admin/articles/list", headers=headers)

    assert resp.status_code == 200, resp.text
    assert resp.template.name == "crudadmin/list.html"
    assert "Listed article" in resp.text
    assert 'name="idx[]"' in resp.text
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers.get("X-Request-ID")


def test_list_filters_from_query_string(client, db_session, headers):
    ArticleFactory.create(db_session, title="Alpha")
    ArticleFactory.create(db_session, title="Beta")
    resp = client.get("/admin/articles/list", params={"filter[title][value]": "alp"}, headers=headers)
    titles = [a.title for a in resp.context["datagrid"].get_results()]
    assert titles == ["Alpha"]


def test_create_flow_with_flash(client, db_session, headers):
    resp = client.post(
        "/admin/articles/create",
        data={f"{FORM}[title]": "Posted", f"{FORM}[views]": "2", "btn_create_and_list": ""},
        headers=headers,
        follow_redirects=False,
    )
    assert resp.status_code == 302, resp.text
    assert resp.headers["location"] == "/admin/articles/list"
    assert db_session.query(Article).filter(Article.title == "Posted").one().views == 2

    listing = client.get("/admin/articles/list", headers=headers)
    assert listing.context["flashes"] == {"success": ['Item "Posted" has been successfully created.']}

    again = client.get("/admin/articles/list", headers=headers)
    assert again.context["flashes"] == {}


def test_edit_and_show_routes(client, db_session, headers):
    article = ArticleFactory.create(db_session, title="Route")
    edit = client.get(f"/admin/articles/{article.id}/edit", headers=headers)
    assert edit.status_code == 200
    assert f'name="{FORM}[_lock_version]" value="1"' in edit.text

    show = client.get(f"/admin/articles/{article.id}/show", headers=headers)
    assert show.status_code == 200
    assert show.template.name == "crudadmin/show.html"


def test_unknown_object_is_404(client, headers):
    resp = client.get("/admin/articles/999/edit", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "unable to find the object with id : 999"


def test_delete_via_method_override(client, db_session, headers):
    article = ArticleFactory.create(db_session)
    article_id = article.id
    resp = client.post(
        f"/admin/articles/{article_id}/delete",
        data={"_method": "DELETE"},
        headers=headers,
        follow_redirects=False,
    )
    assert resp.status_code == 302
    db_session.expire_all()
    assert db_session.get(Article, article_id) is None


def test_batch_with_json_body(client, db_session, headers):
    articles = ArticleFactory.create_batch(db_session, 2)
    resp = client.post(
        "/admin/articles/batch",
        json={"action": "publish", "idx": [str(a.id) for a in articles]},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.text == "published 2"
    assert db_session.query(AdminAuditLog).filter(AdminAuditLog.action == "batch_publish").count() == 1


def test_configuration_error_is_a_500_with_detail(client, headers):
    resp = client.post("/admin/articles/batch", data={"action": "nope", "idx[]": ["1"]}, headers=headers)
    assert resp.status_code == 500
    assert resp.json() == {"detail": "The `nope` batch action is not defined"}


def test_excluded_routes_are_not_mounted(client, db_session, headers):
    from tests.fixtures.factories import CategoryFactory

    category = CategoryFactory.create(db_session)
    assert client.get(f"/admin/categories/{category.id}/history", headers=headers).status_code == 404
    assert client.get(f"/admin/categories/{category.id}/edit", headers=headers).status_code == 200


def test_export_streams_csv(client, db_session, headers):
    ArticleFactory.create(db_session, title="Exported", published=True)
    resp = client.get("/admin/articles/export", params={"format": "csv"}, headers=headers)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.headers["content-disposition"].startswith('attachment; filename="export_article_')
    lines = resp.text.splitlines()
    assert lines[0] == "id,title,published"
    assert lines[1].endswith(",Exported,1")


def test_export_json(client, db_session, headers):
    article = ArticleFactory.create(db_session, title="Json")
    resp = client.get("/admin/articles/export", params={"format": "json"}, headers=headers)
    assert resp.json() == [{"id": article.id, "title": "Json", "published": False}]


def test_admin_write_actions_are_rate_limited(client, headers, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_RATE_LIMIT_PER_MINUTE", 1)
    first = client.post("/admin/articles/create", data={f"{FORM}[views]": "x"}, headers=headers)
    assert first.status_code == 200
    second = client.post("/admin/articles/create", data={f"{FORM}[views]": "x"}, headers=headers)
    assert second.status_code == 429
    assert second.headers["Retry-After"] == "60"


def test_reads_are_not_rate_limited(client, headers, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_RATE_LIMIT_PER_MINUTE", 1)
    for _ in range(3):
        assert client.get("/admin/articles/list", headers=headers).status_code == 200


def test_admin_action_metrics(client, headers):
    labels = {"admin": "admin.article", "action": "list", "status": "200"}
    before = REGISTRY.get_sample_value("admin_actions_total", labels) or 0.0
    client.get("/admin/articles/list", headers=headers)
    assert REGISTRY.get_sample_value("admin_actions_total", labels) == before + 1


def test_subclass_selection_page(client, headers):
    resp = client.get("/admin/media/create", headers=headers)
    assert resp.template.name == "crudadmin/select_subclass.html"
    assert "/admin/media/create?subclass=image" in resp.text


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_metrics_endpoint_allows_when_enabled(client, monkeypatch):
    monkeypatch.setattr(settings, "METRICS_ALLOW_ALL", True)
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"# HELP" in resp.content


def test_metrics_endpoint_is_local_only_by_default(client):
    # the test client connects as "testclient", not loopback
    assert client.get("/metrics").status_code == 403
