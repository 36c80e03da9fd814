"""Production configuration guard.

Validates storage and signing settings once, before the orchestrator is
built, and fails hard with every violation listed at once.
"""

from __future__ import annotations

import logging

from contractforge.config import ForgeConfig

logger = logging.getLogger(__name__)

DEV_SIGNING_SECRET = "contractforge-dev-secret"


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The process should exit; the pipeline cannot run safely.
    """


def enforce_production_constraints(config: ForgeConfig) -> None:
    """Validate production-critical configuration.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. The local URL signing secret must not be the development default.
    3. The S3 backend needs a bucket name.
    4. Retry and batch settings must be positive.

    Raises
    ------
    ProductionConfigError
        If any constraint is violated.
    """
    violations: list[str] = []

    if config.storage_backend == "s3" and not config.s3_bucket:
        violations.append(
            "storage_backend='s3' requires a bucket. Set CONTRACTFORGE_S3_BUCKET."
        )
    if config.batch_size < 1:
        violations.append("batch_size must be at least 1.")
    if config.retry_max_attempts < 1:
        violations.append("retry_max_attempts must be at least 1.")

    if config.is_production:
        if config.debug:
            violations.append(
                "debug=True is not allowed in production. "
                "Set CONTRACTFORGE_DEBUG=false."
            )
        if config.storage_backend == "local" and config.signing_secret == DEV_SIGNING_SECRET:
            violations.append(
                "The development signing secret is not allowed in production. "
                "Set CONTRACTFORGE_SIGNING_SECRET."
            )

    if violations:
        msg = (
            "Configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.debug("Configuration guard passed (environment=%s).", config.environment)
