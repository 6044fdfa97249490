"""Per-request admin context.

Every action receives an :class:`AdminContext` instead of reading an ambient
request from the admin descriptor. The context is built once per request from
the ``_admin_code`` route attribute.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.orm import Session

from ..exceptions import ConfigurationError
from ..models import User
from ..telemetry import bind_admin_context
from .model_manager import SQLAlchemyModelManager
from .request import AdminRequest

if TYPE_CHECKING:
    from fastapi.templating import Jinja2Templates

    from ..config import Settings
    from ..security.acl import AdminObjectAclManipulator
    from ..security.csrf import CsrfTokenManager
    from ..services.exporter import Exporter
    from ..services.revisions import AuditManager
    from ..translation import Translator
    from .base import Admin
    from .pool import AdminPool

ADMIN_CODE_ATTRIBUTE = "_admin_code"
_UNIQID_RE = re.compile(r"[A-Za-z0-9_]{1,64}")


@dataclass
class AdminServices:
    """Collaborators shared by all admins, stored on ``app.state.admin_services``."""

    pool: "AdminPool"
    templates: "Jinja2Templates"
    csrf: "CsrfTokenManager"
    exporter: "Exporter"
    audit_manager: "AuditManager"
    acl_manipulator: "AdminObjectAclManipulator"
    translator: "Translator"
    settings: "Settings"


def default_uniqid(code: str) -> str:
    return "s" + hashlib.sha1(code.encode("utf-8")).hexdigest()[:12]


@dataclass
class AdminContext:
    admin: "Admin"
    request: AdminRequest
    db: Session
    services: AdminServices
    user: Optional[User] = None
    uniqid: str = ""
    list_mode: Optional[str] = None
    subject: Any = None
    _model_manager: Optional[SQLAlchemyModelManager] = field(default=None, repr=False)

    @property
    def model_manager(self) -> SQLAlchemyModelManager:
        if self._model_manager is None:
            self._model_manager = self.admin.model_manager_class(self.db)
        return self._model_manager


def resolve_admin_context(
    services: AdminServices,
    request: AdminRequest,
    db: Session,
    user: Optional[User] = None,
) -> AdminContext:
    """Build the context for the admin named by the request's ``_admin_code`` attribute."""
    code = request.attributes.get(ADMIN_CODE_ATTRIBUTE)
    if not code:
        raise ConfigurationError(
            f"There is no `{ADMIN_CODE_ATTRIBUTE}` defined for the current route `{request.raw.url.path}`"
        )
    admin = services.pool.get_admin_by_admin_code(code)
    if admin is None:
        raise ConfigurationError(f"Unable to find the admin class related to the current controller ({code})")

    uniqid = request.get("uniqid")
    if not isinstance(uniqid, str) or not _UNIQID_RE.fullmatch(uniqid):
        uniqid = default_uniqid(admin.code)

    if user is not None:
        db.info["audit_user"] = user.email
    bind_admin_context(admin.code)
    return AdminContext(
        admin=admin,
        request=request,
        db=db,
        services=services,
        user=user,
        uniqid=uniqid,
    )
