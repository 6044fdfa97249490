"""Admins shipped with the package."""

from .admin.base import Admin
from .admin.pool import AdminPool
from .models import User


class UserAdmin(Admin):
    model = User
    code = "admin.users"
    label = "Users"
    form_fields = ("email", "is_active")
    list_fields = ("id", "email", "is_active", "created_at")
    show_fields = ("id", "email", "is_active", "roles", "created_at")
    export_fields = ("id", "email", "is_active", "created_at")
    filter_fields = {
        "email": {"type": "string"},
        "is_active": {"type": "boolean"},
    }
    # Accounts are created through scripts/create_first_admin.py or the auth flow.
    excluded_routes = ("create", "history", "history_view_revision", "history_compare_revisions", "acl")


def build_default_pool() -> AdminPool:
    pool = AdminPool()
    pool.register(UserAdmin())
    return pool
