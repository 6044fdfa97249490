import pytest

from crudadmin.security.handlers import (
    AclSecurityHandler,
    NoopSecurityHandler,
    Permission,
    RoleSecurityHandler,
    expand_permissions,
    reachable_roles,
)
from tests.fixtures.admins import ARTICLE_ADMIN_ROLE, ARTICLE_GUEST_ROLE, ARTICLE_PERMISSION_ROLES, ARTICLE_STAFF_ROLE
from tests.fixtures.context import make_context
from tests.fixtures.factories import ArticleFactory, UserFactory

ADMIN = "admin.article"


@pytest.fixture
def admin(services):
    return services.pool.get_admin_by_admin_code(ADMIN)


def _ctx(services, db, roles):
    user = UserFactory.create_admin(db, roles=roles)
    return make_context(services, db, ADMIN, user=user)


def test_reachable_roles_follow_hierarchy():
    hierarchy = {"A": ["B"], "B": ["C"], "C": ["A"]}
    assert reachable_roles(["A"], hierarchy) == {"A", "B", "C"}
    assert reachable_roles([], hierarchy) == set()


def test_expand_permissions():
    assert expand_permissions(["MASTER"]) == set(Permission.ALL)
    assert "DELETE" in expand_permissions(["OPERATOR"])
    assert "MASTER" not in expand_permissions(["OPERATOR"])


def test_base_role_is_derived_from_code(admin):
    assert RoleSecurityHandler().get_base_role(admin) == "ROLE_ADMIN_ARTICLE_%s"


@pytest.mark.parametrize(
    "role,granted,denied",
    [
        (ARTICLE_GUEST_ROLE, ["VIEW", "LIST"], ["EDIT", "CREATE", "DELETE", "EXPORT"]),
        (ARTICLE_STAFF_ROLE, ["EDIT", "LIST", "CREATE"], ["DELETE", "EXPORT", "MASTER"]),
        ("ROLE_ADMIN_ARTICLE_EDITOR", ["DELETE", "EXPORT", "VIEW"], ["MASTER"]),
        (ARTICLE_ADMIN_ROLE, list(Permission.ALL), []),
    ],
)
def test_security_information_groups(services, db_session, admin, role, granted, denied):
    ctx = _ctx(services, db_session, [role])
    for permission in granted:
        assert admin.is_granted(ctx, permission), permission
    for permission in denied:
        assert not admin.is_granted(ctx, permission), permission


def test_single_permission_role(services, db_session, admin):
    ctx = _ctx(services, db_session, [ARTICLE_PERMISSION_ROLES["EXPORT"]])
    assert admin.is_granted(ctx, Permission.EXPORT)
    assert not admin.is_granted(ctx, Permission.LIST)


def test_any_of_several_attributes(services, db_session, admin):
    ctx = _ctx(services, db_session, [ARTICLE_GUEST_ROLE])
    assert admin.is_granted(ctx, [Permission.EDIT, Permission.VIEW])


def test_roles_of_other_admins_do_not_leak(services, db_session, admin):
    ctx = _ctx(services, db_session, ["ROLE_ADMIN_CATEGORY_ADMIN"])
    assert not admin.is_granted(ctx, Permission.LIST)


def test_super_admin_and_hierarchy(services, db_session, admin):
    handler = RoleSecurityHandler(role_hierarchy={"ROLE_MANAGER": [ARTICLE_ADMIN_ROLE]})
    ctx = _ctx(services, db_session, ["ROLE_MANAGER"])
    assert handler.is_granted(ctx, admin, Permission.DELETE)

    super_ctx = _ctx(services, db_session, ["ROLE_SUPER_ADMIN"])
    assert handler.is_granted(super_ctx, admin, Permission.MASTER)


def test_anonymous_is_denied(services, db_session, admin):
    ctx = make_context(services, db_session, ADMIN)
    assert not admin.is_granted(ctx, Permission.LIST)


def test_acl_enabled_admins_get_acl_handler(admin, services):
    assert isinstance(admin.security_handler, AclSecurityHandler)
    assert type(services.pool.get_admin_by_admin_code("admin.category").security_handler) is RoleSecurityHandler


def test_acl_handler_without_entries_falls_back_to_roles(services, db_session, admin):
    article = ArticleFactory.create(db_session)
    ctx = _ctx(services, db_session, [ARTICLE_GUEST_ROLE])
    assert admin.is_granted(ctx, Permission.VIEW, article)
    assert not admin.is_granted(ctx, Permission.EDIT, article)


def test_noop_handler_grants_everything(services, db_session, admin):
    assert NoopSecurityHandler().is_granted(make_context(services, db_session, ADMIN), admin, Permission.DELETE)
