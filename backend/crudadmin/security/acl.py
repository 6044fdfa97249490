# SPDX-License-Identifier: Apache-2.0

"""Object ACL masks and the editing of per-object permissions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..admin.model_manager import class_path, normalized_identifier
from ..admin.request import AdminRequest, is_truthy
from ..models import AclEntry, AclIdentityType, User
from ..telemetry import log_json
from .csrf import CsrfTokenManager

if TYPE_CHECKING:
    from ..admin.base import Admin
    from ..admin.context import AdminContext


class MaskBuilder:
    MASK_VIEW = 1
    MASK_CREATE = 2
    MASK_EDIT = 4
    MASK_DELETE = 8
    MASK_UNDELETE = 16
    MASK_OPERATOR = 32
    MASK_MASTER = 64
    MASK_OWNER = 128
    MASK_LIST = 256
    MASK_EXPORT = 512

    CODES = {
        "VIEW": MASK_VIEW,
        "CREATE": MASK_CREATE,
        "EDIT": MASK_EDIT,
        "DELETE": MASK_DELETE,
        "UNDELETE": MASK_UNDELETE,
        "OPERATOR": MASK_OPERATOR,
        "MASTER": MASK_MASTER,
        "OWNER": MASK_OWNER,
        "LIST": MASK_LIST,
        "EXPORT": MASK_EXPORT,
    }

    def __init__(self, mask: int = 0):
        self.mask = mask

    @classmethod
    def get_code(cls, permission: str) -> int:
        try:
            return cls.CODES[permission]
        except KeyError as exc:
            raise ValueError(f"Unknown permission `{permission}`") from exc

    def add(self, permission: str) -> "MaskBuilder":
        self.mask |= self.get_code(permission)
        return self

    def remove(self, permission: str) -> "MaskBuilder":
        self.mask &= ~self.get_code(permission)
        return self

    def get(self) -> int:
        return self.mask

    def permissions(self) -> list[str]:
        return [name for name, code in self.CODES.items() if self.mask & code]


# Masks that satisfy a requested permission on an object.
PERMISSION_MAP: dict[str, tuple[str, ...]] = {
    "VIEW": ("VIEW", "EDIT", "OPERATOR", "MASTER", "OWNER"),
    "EDIT": ("EDIT", "OPERATOR", "MASTER", "OWNER"),
    "CREATE": ("CREATE", "OPERATOR", "MASTER", "OWNER"),
    "DELETE": ("DELETE", "OPERATOR", "MASTER", "OWNER"),
    "UNDELETE": ("UNDELETE", "OPERATOR", "MASTER", "OWNER"),
    "LIST": ("LIST", "OPERATOR", "MASTER", "OWNER"),
    "EXPORT": ("EXPORT", "OPERATOR", "MASTER", "OWNER"),
    "OPERATOR": ("OPERATOR", "MASTER", "OWNER"),
    "MASTER": ("MASTER", "OWNER"),
    "OWNER": ("OWNER",),
}

ACL_PERMISSIONS = ("VIEW", "EDIT", "CREATE", "DELETE", "UNDELETE", "LIST", "EXPORT", "OPERATOR", "MASTER", "OWNER")
OWNER_PERMISSIONS = ("MASTER", "OWNER")

USERS_FORM = "acl_users_form"
ROLES_FORM = "acl_roles_form"


def load_masks(db: Session, object_class: str, object_id: str, identity_type: str) -> dict[str, int]:
    stmt = select(AclEntry).where(
        AclEntry.object_class == object_class,
        AclEntry.object_id == object_id,
        AclEntry.identity_type == identity_type,
    )
    return {entry.identity: entry.mask for entry in db.scalars(stmt)}


@dataclass
class AdminObjectAclData:
    admin: "Admin"
    obj: Any
    acl_users: list[User]
    acl_roles: list[str]
    current_user: Optional[User]
    user_masks: dict[str, int] = field(default_factory=dict)
    role_masks: dict[str, int] = field(default_factory=dict)

    @property
    def object_class(self) -> str:
        return class_path(type(self.obj))

    @property
    def object_id(self) -> str:
        return normalized_identifier(self.obj) or ""

    def is_owner(self) -> bool:
        if self.current_user is None:
            return False
        return bool(self.user_masks.get(self.current_user.email, 0) & MaskBuilder.MASK_OWNER)

    @property
    def permissions(self) -> list[str]:
        return list(ACL_PERMISSIONS)

    @property
    def user_permissions(self) -> list[str]:
        if self.is_owner():
            return self.permissions
        return [p for p in self.permissions if p not in OWNER_PERMISSIONS]

    @property
    def role_permissions(self) -> list[str]:
        return self.user_permissions


class AclMatrixForm:
    """Grid of identities by permissions, posted as ``<form>[<identity>][<PERMISSION>]``."""

    def __init__(
        self,
        name: str,
        identities: Sequence[str],
        permissions: Sequence[str],
        masks: Mapping[str, int],
        *,
        csrf: Optional[CsrfTokenManager] = None,
        session: Optional[dict[str, Any]] = None,
    ):
        self.name = name
        self.identities = list(identities)
        self.permissions = list(permissions)
        self.masks = dict(masks)
        self.csrf = csrf
        self.session = session if session is not None else {}
        self.submitted = False
        self.errors: list[str] = []
        self.data: dict[str, list[str]] = {}

    def handle_request(self, request: AdminRequest) -> None:
        if request.get_rest_method() != "POST":
            return
        submitted = request.body.get(self.name)
        if not isinstance(submitted, Mapping):
            return
        self.submitted = True
        if self.csrf is not None and not self.csrf.is_token_valid(self.session, self.name, submitted.get("_token")):
            self.errors.append("The CSRF token is invalid. Please try to resubmit the form.")
        for identity, row in submitted.items():
            if identity == "_token":
                continue
            if identity not in self.identities:
                self.errors.append(f"Unknown identity `{identity}`")
                continue
            if not isinstance(row, Mapping):
                continue
            self.data[identity] = [p for p in self.permissions if is_truthy(row.get(p))]
        for identity in self.identities:
            self.data.setdefault(identity, [])

    def is_valid(self) -> bool:
        return self.submitted and not self.errors

    def is_checked(self, identity: str, permission: str) -> bool:
        if self.submitted and identity in self.data:
            return permission in self.data[identity]
        return bool(self.masks.get(identity, 0) & MaskBuilder.get_code(permission))

    def rows(self) -> list[dict[str, Any]]:
        return [
            {
                "identity": identity,
                "cells": [
                    {
                        "permission": permission,
                        "name": f"{self.name}[{identity}][{permission}]",
                        "checked": self.is_checked(identity, permission),
                    }
                    for permission in self.permissions
                ],
            }
            for identity in self.identities
        ]

    def csrf_token(self) -> Optional[str]:
        return self.csrf.get_token(self.session, self.name) if self.csrf is not None else None


class AdminObjectAclManipulator:
    def __init__(self, csrf: Optional[CsrfTokenManager] = None):
        self.csrf = csrf

    def build_acl_data(
        self, ctx: "AdminContext", obj: Any, acl_users: Iterable[User], acl_roles: Iterable[str]
    ) -> AdminObjectAclData:
        data = AdminObjectAclData(
            admin=ctx.admin,
            obj=obj,
            acl_users=list(acl_users),
            acl_roles=list(acl_roles),
            current_user=ctx.user,
        )
        data.user_masks = load_masks(ctx.db, data.object_class, data.object_id, AclIdentityType.USER.value)
        data.role_masks = load_masks(ctx.db, data.object_class, data.object_id, AclIdentityType.ROLE.value)
        return data

    def create_acl_users_form(self, ctx: "AdminContext", data: AdminObjectAclData) -> AclMatrixForm:
        return AclMatrixForm(
            USERS_FORM,
            [user.email for user in data.acl_users],
            data.user_permissions,
            data.user_masks,
            csrf=self.csrf,
            session=ctx.request.session,
        )

    def create_acl_roles_form(self, ctx: "AdminContext", data: AdminObjectAclData) -> AclMatrixForm:
        return AclMatrixForm(
            ROLES_FORM,
            data.acl_roles,
            data.role_permissions,
            data.role_masks,
            csrf=self.csrf,
            session=ctx.request.session,
        )

    def update_acl_users(self, ctx: "AdminContext", data: AdminObjectAclData, form: AclMatrixForm) -> None:
        self._update(ctx, data, form, AclIdentityType.USER.value, data.user_masks)

    def update_acl_roles(self, ctx: "AdminContext", data: AdminObjectAclData, form: AclMatrixForm) -> None:
        self._update(ctx, data, form, AclIdentityType.ROLE.value, data.role_masks)

    def _update(
        self,
        ctx: "AdminContext",
        data: AdminObjectAclData,
        form: AclMatrixForm,
        identity_type: str,
        current: dict[str, int],
    ) -> None:
        editable = 0
        for permission in form.permissions:
            editable |= MaskBuilder.get_code(permission)
        for identity, permissions in form.data.items():
            builder = MaskBuilder(current.get(identity, 0) & ~editable)
            for permission in permissions:
                builder.add(permission)
            self._set_mask(ctx.db, data.object_class, data.object_id, identity_type, identity, builder.get())
            current[identity] = builder.get()
        ctx.db.commit()
        log_json(
            20,
            "acl_updated",
            object_class=data.object_class,
            object_id=data.object_id,
            identity_type=identity_type,
        )

    def _set_mask(self, db: Session, object_class: str, object_id: str, identity_type: str, identity: str, mask: int) -> None:
        stmt = select(AclEntry).where(
            AclEntry.object_class == object_class,
            AclEntry.object_id == object_id,
            AclEntry.identity_type == identity_type,
            AclEntry.identity == identity,
        )
        entry = db.scalars(stmt).first()
        if mask == 0:
            if entry is not None:
                db.delete(entry)
            return
        if entry is None:
            db.add(
                AclEntry(
                    object_class=object_class,
                    object_id=object_id,
                    identity_type=identity_type,
                    identity=identity,
                    mask=mask,
                )
            )
        else:
            entry.mask = mask

    def create_object_security(self, ctx: "AdminContext", obj: Any) -> None:
        """Grant OWNER on a freshly created object to the user who created it."""
        object_id = normalized_identifier(obj)
        if ctx.user is None or object_id is None:
            return
        self._set_mask(
            ctx.db,
            class_path(type(obj)),
            object_id,
            AclIdentityType.USER.value,
            ctx.user.email,
            MaskBuilder.MASK_OWNER,
        )
        ctx.db.commit()

    def delete_object_security(self, ctx: "AdminContext", object_class: str, object_id: Optional[str]) -> None:
        if object_id is None:
            return
        ctx.db.execute(
            delete(AclEntry).where(AclEntry.object_class == object_class, AclEntry.object_id == object_id)
        )
        ctx.db.commit()
