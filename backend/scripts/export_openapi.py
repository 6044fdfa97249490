from pathlib import Path

from fastapi.openapi.utils import get_openapi
from crudadmin.main import create_app
import yaml

app = create_app()
spec = get_openapi(title=app.title, version=app.version, routes=app.routes)
Path("openapi.yaml").write_text(yaml.safe_dump(spec, sort_keys=False), encoding="utf-8")
print("Wrote openapi.yaml")
