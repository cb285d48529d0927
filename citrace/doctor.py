"""Config validation and diagnostic reporting for citrace."""

from __future__ import annotations

from typing import Any

from citrace.config import Config, Protocol

# Settings whose absence disables a telemetry channel
_EXPORT_SETTINGS = {
    "otlp.endpoint": "spans will not be exported",
    "log_ingest.url": "step log records will not be sent",
}

# CI metadata passed through to spans and log records
_CI_SETTINGS = {
    "ci.repository": "GITHUB_REPOSITORY",
    "ci.commit": "GITHUB_SHA",
    "ci.run_id": "GITHUB_RUN_ID",
    "ci.workflow": "GITHUB_WORKFLOW",
}


def _lookup(config: Config, dotted: str) -> Any:
    value: Any = config
    for part in dotted.split("."):
        value = getattr(value, part)
    return value


def check_config(config: Config) -> dict[str, Any]:
    """Validate config and return a diagnostic report.

    Returns a dict with:
        protocol: The configured OTLP protocol
        errors: List of critical errors (settings that cannot work)
        warnings: List of warnings (disabled channels, missing metadata)
        configured_fields: List of setting names that are configured
        unconfigured_fields: List of setting names not configured
    """
    errors: list[dict[str, str]] = []
    warnings: list[dict[str, str]] = []
    configured: list[str] = []
    unconfigured: list[str] = []

    for name, consequence in _EXPORT_SETTINGS.items():
        if _lookup(config, name):
            configured.append(name)
        else:
            unconfigured.append(name)
            warnings.append({"field": name, "message": consequence})

    if config.api_token:
        configured.append("api_token")
    else:
        unconfigured.append("api_token")
        if config.otlp.endpoint or config.log_ingest.url:
            warnings.append(
                {
                    "field": "api_token",
                    "message": "requests will be sent without authorization",
                }
            )

    for name, env_name in _CI_SETTINGS.items():
        if _lookup(config, name):
            configured.append(name)
        else:
            unconfigured.append(name)
            warnings.append(
                {"field": name, "message": f"{env_name} is not set"}
            )

    for name in ("otlp.endpoint", "log_ingest.url"):
        value = _lookup(config, name)
        if not value:
            continue
        if name == "otlp.endpoint" and config.otlp.protocol == Protocol.GRPC:
            continue
        if not value.startswith(("http://", "https://")):
            errors.append(
                {
                    "field": name,
                    "message": f"'{value}' is not an http(s) URL",
                }
            )

    return {
        "protocol": config.otlp.protocol.value,
        "errors": errors,
        "warnings": warnings,
        "configured_fields": configured,
        "unconfigured_fields": unconfigured,
    }
