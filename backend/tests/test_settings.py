from __future__ import annotations

from typing import Any

import pytest

from crudadmin.config import DEV_DEFAULT_JWT_SECRET, DEV_DEFAULT_SECRET_KEY, Settings
from crudadmin.security_gate import run_security_gate


def _base_prod_kwargs(**overrides: Any) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "ENVIRONMENT": "production",
        "DATABASE_URL": "postgresql+psycopg2://admin:s3cure-pass@db:5432/crudadmin",
        "SECRET_KEY": "k" * 64,
        "JWT_SECRET": "x" * 64,
        "REQUIRE_CSRF_TOKEN": True,
        "ALLOW_DEV_LOGIN": False,
        "SESSION_HTTPS_ONLY": True,
        "DEBUG": False,
    }
    kwargs.update(overrides)
    return kwargs


def _base_kwargs(**overrides: Any) -> dict[str, Any]:
    base: dict[str, Any] = {
        "ENVIRONMENT": "development",
        "SECRET_KEY": "k" * 64,
        "JWT_SECRET": "x" * 64,
        "DATABASE_URL": "sqlite:///./test.db",
    }
    base.update(overrides)
    return base


def test_production_happy_path_accepts_postgres_and_real_secrets() -> None:
    Settings(**_base_prod_kwargs())


def test_production_disallows_sqlite_urls() -> None:
    with pytest.raises(ValueError, match="SQLite"):
        Settings(**_base_prod_kwargs(DATABASE_URL="sqlite:///./crudadmin.db"))


def test_production_disallows_dev_secrets() -> None:
    with pytest.raises(ValueError, match="Default JWT_SECRET"):
        Settings(**_base_prod_kwargs(JWT_SECRET=DEV_DEFAULT_JWT_SECRET))
    with pytest.raises(ValueError, match="Default SECRET_KEY"):
        Settings(**_base_prod_kwargs(SECRET_KEY=DEV_DEFAULT_SECRET_KEY))


def test_production_disallows_dev_login_flag() -> None:
    with pytest.raises(ValueError, match="ALLOW_DEV_LOGIN must be false"):
        Settings(**_base_prod_kwargs(ALLOW_DEV_LOGIN=True))


def test_production_requires_csrf_and_secure_sessions() -> None:
    with pytest.raises(ValueError, match="REQUIRE_CSRF_TOKEN"):
        Settings(**_base_prod_kwargs(REQUIRE_CSRF_TOKEN=False))
    with pytest.raises(ValueError, match="SESSION_HTTPS_ONLY"):
        Settings(**_base_prod_kwargs(SESSION_HTTPS_ONLY=False))


def test_production_disallows_debug() -> None:
    with pytest.raises(ValueError, match="DEBUG must be false"):
        Settings(**_base_prod_kwargs(DEBUG=True))


def test_production_disallows_default_db_passwords() -> None:
    url = "postgresql+psycopg2://admin:postgres@db:5432/crudadmin"
    with pytest.raises(ValueError, match="Default/blank database password"):
        Settings(**_base_prod_kwargs(DATABASE_URL=url))


def test_short_secrets_are_rejected() -> None:
    with pytest.raises(ValueError, match="at least 32 characters"):
        Settings(**_base_kwargs(SECRET_KEY="short"))


def test_unknown_environment_is_rejected() -> None:
    with pytest.raises(ValueError, match="ENVIRONMENT must be one of"):
        Settings(**_base_kwargs(ENVIRONMENT="qa"))


@pytest.mark.parametrize(
    "value,expected",
    [
        ("admin", "/admin"),
        ("/backoffice/", "/backoffice"),
        ("/", ""),
    ],
)
def test_route_prefix_normalization(value: str, expected: str) -> None:
    assert Settings(**_base_kwargs(ADMIN_ROUTE_PREFIX=value)).ADMIN_ROUTE_PREFIX == expected


@pytest.mark.parametrize(
    "value,expected",
    [
        ("csv", ["csv"]),
        ("CSV, json,csv", ["csv", "json"]),
        ('["xml","xls"]', ["xml", "xls"]),
    ],
)
def test_export_formats_parsing(value: str, expected: list[str]) -> None:
    assert Settings(**_base_kwargs(EXPORT_FORMATS=value)).EXPORT_FORMATS == expected


def test_unsupported_export_format() -> None:
    with pytest.raises(ValueError, match="Unsupported export format 'pdf'"):
        Settings(**_base_kwargs(EXPORT_FORMATS="pdf"))


def test_role_hierarchy_from_json() -> None:
    cfg = Settings(**_base_kwargs(ROLE_HIERARCHY='{"ROLE_BOSS": ["ROLE_ADMIN"]}'))
    assert cfg.ROLE_HIERARCHY == {"ROLE_BOSS": ["ROLE_ADMIN"]}


def test_default_per_page_cannot_exceed_max() -> None:
    with pytest.raises(ValueError, match="DEFAULT_PER_PAGE cannot exceed MAX_PER_PAGE"):
        Settings(**_base_kwargs(DEFAULT_PER_PAGE=500, MAX_PER_PAGE=100))


def test_secret_files_override_environment(tmp_path, monkeypatch) -> None:
    secret = tmp_path / "jwt"
    secret.write_text("f" * 48 + "\n")
    monkeypatch.setenv("JWT_SECRET_FILE", str(secret))
    kwargs = _base_kwargs()
    kwargs.pop("JWT_SECRET")
    assert Settings(**kwargs).JWT_SECRET == "f" * 48


# ----- security gate ---------------------------------------------------------


def test_security_gate_passes_for_hardened_production() -> None:
    run_security_gate(Settings(**_base_prod_kwargs()))


def test_security_gate_rejects_weak_staging_secret() -> None:
    cfg = Settings(**_base_kwargs(ENVIRONMENT="staging", ALLOW_DEV_LOGIN=False, JWT_SECRET="dev_secret" + "z" * 40))
    with pytest.raises(RuntimeError, match="Weak JWT_SECRET"):
        run_security_gate(cfg)


def test_security_gate_rejects_dev_login_in_staging() -> None:
    cfg = Settings(**_base_kwargs(ENVIRONMENT="staging", ALLOW_DEV_LOGIN=True))
    with pytest.raises(RuntimeError, match="ALLOW_DEV_LOGIN"):
        run_security_gate(cfg)


def test_security_gate_rejects_strict_mode_off_in_staging() -> None:
    cfg = Settings(**_base_kwargs(ENVIRONMENT="staging", STRICT_MODE=False, ALLOW_DEV_LOGIN=False))
    with pytest.raises(RuntimeError, match="STRICT_MODE"):
        run_security_gate(cfg)


def test_security_gate_rejects_csrf_off_in_staging() -> None:
    cfg = Settings(**_base_kwargs(ENVIRONMENT="staging", ALLOW_DEV_LOGIN=False, REQUIRE_CSRF_TOKEN=False))
    with pytest.raises(RuntimeError, match="CSRF protection is disabled"):
        run_security_gate(cfg)


def test_security_gate_only_warns_in_development(caplog) -> None:
    cfg = Settings(**_base_kwargs(REQUIRE_CSRF_TOKEN=False, ALLOW_DEV_LOGIN=True, DEBUG=True))
    run_security_gate(cfg)
    assert "CSRF protection is disabled" in caplog.text
