"""JSON Schemas for per-method verification configuration.

Configurations are validated when a project is created and again before every
oracle call, so a malformed repository reference or a missing credential is
rejected before anything is asked of an upstream service.
"""

from __future__ import annotations

import jsonschema
from jsonschema import Draft7Validator

from milestone_escrow.config import get_settings
from milestone_escrow.domain.enums import VerificationMethod
from milestone_escrow.domain.exceptions import VerificationConfigError
from milestone_escrow.logging_config import get_logger

logger = get_logger(__name__)

_NAME_PATTERN = r"^[A-Za-z0-9_.-]+$"

REPOSITORY_ACTIVITY_SCHEMA: dict = {
    "type": "object",
    "required": ["owner", "repo"],
    "properties": {
        "owner": {"type": "string", "minLength": 1, "maxLength": 100, "pattern": _NAME_PATTERN},
        "repo": {"type": "string", "minLength": 1, "maxLength": 100, "pattern": _NAME_PATTERN},
        "branch": {"type": "string", "minLength": 1, "maxLength": 255},
        # One page of the commits API holds at most 100 entries.
        "min_commits": {"type": "integer", "minimum": 1, "maximum": 100},
        "access_token": {"type": "string", "minLength": 1},
    },
}

DESIGN_VERSION_SCHEMA: dict = {
    "type": "object",
    "required": ["file_key"],
    "properties": {
        "file_key": {"type": "string", "minLength": 1, "maxLength": 128, "pattern": r"^[A-Za-z0-9]+$"},
        "min_versions": {"type": "integer", "minimum": 1},
        "access_token": {"type": "string", "minLength": 1},
    },
}

MANUAL_SCHEMA: dict = {"type": "object"}

CONFIG_SCHEMAS: dict[str, dict] = {
    VerificationMethod.REPOSITORY_ACTIVITY.value: REPOSITORY_ACTIVITY_SCHEMA,
    VerificationMethod.DESIGN_VERSION.value: DESIGN_VERSION_SCHEMA,
    VerificationMethod.MANUAL.value: MANUAL_SCHEMA,
}


def validate_verification_config(method: str, config: dict | None) -> dict:
    """Validate ``config`` against the schema for ``method`` and return it.

    Raises:
        VerificationConfigError: unknown method or schema violations.
    """
    schema = CONFIG_SCHEMAS.get(str(method))
    if schema is None:
        raise VerificationConfigError(
            f"Unknown verification method: '{method}'. "
            f"Valid methods: {list(CONFIG_SCHEMAS.keys())}"
        )

    config = config if config is not None else {}
    try:
        validator = Draft7Validator(schema)
        errors = sorted(validator.iter_errors(config), key=lambda e: list(e.path))
    except jsonschema.SchemaError as exc:
        raise VerificationConfigError(f"Invalid schema for {method}: {exc.message}") from exc

    if errors:
        error_details = [
            {"path": list(err.path), "message": err.message}
            for err in errors
        ]
        logger.info(
            "oracle.config.invalid",
            method=str(method),
            error_count=len(errors),
        )
        raise VerificationConfigError(
            f"Verification config for {method} failed validation with {len(errors)} error(s): "
            + "; ".join(detail["message"] for detail in error_details),
            errors=error_details,
        )
    return config


def require_credentials(method: str, config: dict) -> None:
    """Ensure an external-signal method has an access token available."""
    settings = get_settings()
    if method == VerificationMethod.REPOSITORY_ACTIVITY:
        if not (config.get("access_token") or settings.github_token):
            raise VerificationConfigError(
                "Repository activity verification requires an access token "
                "(milestone config 'access_token' or GITHUB_TOKEN)"
            )
    elif method == VerificationMethod.DESIGN_VERSION:
        if not (config.get("access_token") or settings.figma_token):
            raise VerificationConfigError(
                "Design version verification requires an access token "
                "(milestone config 'access_token' or FIGMA_TOKEN)"
            )
