# SPDX-License-Identifier: Apache-2.0

"""
Security gate module: Validates critical security settings at startup.
Fails fast if the application is misconfigured in production.
"""

import logging
from .config import Settings, settings as default_settings, DEV_DEFAULT_JWT_SECRET, DEV_DEFAULT_SECRET_KEY

logger = logging.getLogger(__name__)


def run_security_gate(current_settings: Settings | None = None) -> None:
    """
    Run security checks at startup. Raises RuntimeError if critical security
    requirements are not met.

    This function enforces:
    - ALLOW_DEV_LOGIN must be false outside development/test
    - SECRET_KEY and JWT_SECRET must be strong and not the shipped defaults
    - DEBUG must be off outside development/test
    - form CSRF tokens must be required outside development/test
    """
    cfg = current_settings or default_settings
    logger.info("Running security gate checks...")
    env = cfg.ENVIRONMENT.lower()
    prod_like = env in {"staging", "production"}

    if prod_like and not cfg.STRICT_MODE:
        raise RuntimeError("STRICT_MODE cannot be disabled in staging/production environments.")

    if cfg.ALLOW_DEV_LOGIN and prod_like:
        raise RuntimeError(
            "CRITICAL SECURITY ERROR: ALLOW_DEV_LOGIN must be false outside development/test. "
            "This setting bypasses authentication and MUST NOT be enabled in staging or production environments."
        )

    for name, value, default in (
        ("JWT_SECRET", cfg.JWT_SECRET, DEV_DEFAULT_JWT_SECRET),
        ("SECRET_KEY", cfg.SECRET_KEY, DEV_DEFAULT_SECRET_KEY),
    ):
        if not value:
            raise RuntimeError(f"CRITICAL SECURITY ERROR: {name} is not set")
        if prod_like and (len(value) < 32 or value == default or "dev_secret" in value):
            raise RuntimeError(f"CRITICAL SECURITY ERROR: Weak {name} detected; set a unique 32+ character secret.")

    if cfg.DEBUG and prod_like:
        raise RuntimeError("CRITICAL SECURITY ERROR: DEBUG re-raises persistence errors and must be off in staging/production.")

    if not cfg.REQUIRE_CSRF_TOKEN:
        if prod_like:
            raise RuntimeError(
                "CRITICAL SECURITY ERROR: CSRF protection is disabled (REQUIRE_CSRF_TOKEN=false). "
                "Enable it for all staging/production environments."
            )
        logger.warning(
            "CSRF protection is disabled (REQUIRE_CSRF_TOKEN=false). "
            "This should only be used in development environments."
        )

    if prod_like and not cfg.SESSION_HTTPS_ONLY:
        logger.warning("SESSION_HTTPS_ONLY is false in %s; session cookies may travel over plain HTTP.", env)

    if cfg.METRICS_ALLOW_ALL and prod_like:
        logger.warning("METRICS_ALLOW_ALL=true exposes /metrics to every client in %s.", env)
