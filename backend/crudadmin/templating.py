from __future__ import annotations

from pathlib import Path
from typing import Sequence

from fastapi.templating import Jinja2Templates
from jinja2 import ChoiceLoader, Environment, FileSystemLoader, select_autoescape

from .config import settings

PACKAGE_TEMPLATES = Path(__file__).resolve().parent / "templates"

DEFAULT_TEMPLATES: dict[str, str] = {
    "layout": "crudadmin/layout.html",
    "ajax": "crudadmin/ajax_layout.html",
    "list": "crudadmin/list.html",
    "show": "crudadmin/show.html",
    "show_compare": "crudadmin/show_compare.html",
    "edit": "crudadmin/edit.html",
    "preview": "crudadmin/preview.html",
    "history": "crudadmin/history.html",
    "acl": "crudadmin/acl.html",
    "delete": "crudadmin/delete.html",
    "batch_confirmation": "crudadmin/batch_confirmation.html",
    "select_subclass": "crudadmin/select_subclass.html",
}


def build_templates(extra_dirs: Sequence[str] | None = None) -> Jinja2Templates:
    """Jinja2 environment where configured directories override the packaged templates."""
    dirs = list(extra_dirs if extra_dirs is not None else settings.TEMPLATE_DIRS)
    loaders = [FileSystemLoader(d) for d in dirs]
    loaders.append(FileSystemLoader(str(PACKAGE_TEMPLATES)))
    env = Environment(loader=ChoiceLoader(loaders), autoescape=select_autoescape(["html", "xml"]))
    env.globals["admin_title"] = settings.ADMIN_TITLE
    return Jinja2Templates(env=env)
