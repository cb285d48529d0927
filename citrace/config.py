import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

import yaml

from citrace.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = "citrace.yaml"
DEFAULT_HANDOFF_PATH = ".citrace/handoff.json"

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# environment variable -> (section, key); section None means top level
ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "CITRACE_OTLP_ENDPOINT": ("otlp", "endpoint"),
    "CITRACE_OTLP_PROTOCOL": ("otlp", "protocol"),
    "CITRACE_API_TOKEN": (None, "api_token"),
    "CITRACE_LOG_INGEST_URL": ("log_ingest", "url"),
    "CITRACE_SERVICE_NAME": (None, "service_name"),
    "CITRACE_LOG_LEVEL": (None, "log_level"),
    "CITRACE_HANDOFF_PATH": (None, "handoff_path"),
    "GITHUB_REPOSITORY": ("ci", "repository"),
    "GITHUB_SHA": ("ci", "commit"),
    "GITHUB_RUN_ID": ("ci", "run_id"),
    "GITHUB_WORKFLOW": ("ci", "workflow"),
}

# names read by earlier versions of the CI workflow; the CITRACE_ names win
ENV_ALIASES: dict[str, str] = {
    "CITRACE_OTLP_ENDPOINT": "DYNATRACE_OTLP_URL",
    "CITRACE_API_TOKEN": "DYNATRACE_API_TOKEN",
    "CITRACE_LOG_INGEST_URL": "DYNATRACE_LOG_INGEST_URL",
}


class Protocol(Enum):
    HTTP = "http"
    GRPC = "grpc"


@dataclass
class OtlpConfig:
    endpoint: str = ""
    protocol: Protocol = Protocol.HTTP
    insecure: bool = False
    timeout: int = 10

    def __post_init__(self):
        if isinstance(self.protocol, str):
            if self.protocol not in [protocol.value for protocol in Protocol]:
                raise ValueError(f"Invalid OTLP protocol: {self.protocol}")
            self.protocol = Protocol(self.protocol)


@dataclass
class LogIngestConfig:
    url: str = ""
    timeout: int = 10


@dataclass
class CIMetadata:
    """Job-level metadata passed through opaquely from the CI environment."""

    repository: str = ""
    commit: str = ""
    run_id: str = ""
    workflow: str = ""

    def as_attributes(self) -> dict[str, str]:
        attributes = {
            "ci.repository": self.repository,
            "ci.commit": self.commit,
            "ci.run_id": self.run_id,
            "ci.workflow": self.workflow,
        }
        return {key: value for key, value in attributes.items() if value}


@dataclass
class PipelineStep:
    name: str = ""
    command: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Pipeline step name must be provided")


@dataclass
class Config:
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: str = ""
    service_name: str = "github-ci-pipeline"
    service_version: str = "1.0.0"
    api_token: str = ""
    auth_scheme: str = "Api-Token"
    handoff_path: str = DEFAULT_HANDOFF_PATH
    github_output: bool = True
    otlp: OtlpConfig = field(default_factory=OtlpConfig)
    log_ingest: LogIngestConfig = field(default_factory=LogIngestConfig)
    ci: CIMetadata = field(default_factory=CIMetadata)
    pipelines: dict[str, list[PipelineStep]] = field(default_factory=dict)

    def __post_init__(self):
        # value checking
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}")
        if not self.service_name:
            raise ValueError("Service name must not be empty")
        # type checking
        if isinstance(self.otlp, dict):
            self.otlp = OtlpConfig(**self.otlp)
        if isinstance(self.log_ingest, dict):
            self.log_ingest = LogIngestConfig(**self.log_ingest)
        if isinstance(self.ci, dict):
            self.ci = CIMetadata(**self.ci)
        if self.pipelines is None:
            self.pipelines = {}
        if not isinstance(self.pipelines, dict):
            raise ValueError("pipelines must be a mapping of job name to steps")
        for job, steps in self.pipelines.items():
            if not isinstance(steps, list):
                raise ValueError(f"Steps of pipeline '{job}' must be a list")
            if any(not isinstance(step, (dict, PipelineStep)) for step in steps):
                raise ValueError(f"Steps of pipeline '{job}' must be mappings")
            self.pipelines[job] = [
                PipelineStep(**step) if isinstance(step, dict) else step
                for step in steps
            ]

    def auth_headers(self) -> dict[str, str]:
        if not self.api_token:
            return {}
        return {"Authorization": f"{self.auth_scheme} {self.api_token}"}


def apply_env_overrides(config_data: dict, environ=None) -> dict:
    """Overlay environment variables on top of file-based config data."""
    environ = os.environ if environ is None else environ
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value and env_name in ENV_ALIASES:
            value = environ.get(ENV_ALIASES[env_name])
        if not value:
            continue
        if section is None:
            config_data[key] = value
        else:
            target = config_data.setdefault(section, {})
            if not isinstance(target, dict):
                raise ConfigurationError(
                    f"Config section '{section}' must be a mapping"
                )
            target[key] = value
    return config_data


def load_config(config_path: str | None = None) -> Config:
    explicit = config_path is not None or "CITRACE_CONFIG" in os.environ
    config_path = config_path or os.getenv("CITRACE_CONFIG", DEFAULT_CONFIG_PATH)
    config_data: dict = {}
    if os.path.exists(config_path):
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in config file {config_path}: {e}"
            ) from e
        if not isinstance(config_data, dict):
            raise ConfigurationError(
                f"Config file {config_path} must contain a mapping"
            )
    elif explicit:
        raise ConfigurationError(
            f"Config file not found: {config_path}",
            "Check the --config-path option or the CITRACE_CONFIG variable.",
        )
    config_data = apply_env_overrides(config_data)
    try:
        return Config(**config_data)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Error loading config: {e}") from e


def load_env_file(env_file: str | None = None) -> bool:
    """Load environment variables from a .env file without overriding existing ones.

    Args:
        env_file: Explicit path to the .env file. If None, searches the
            current directory and its parents.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    from dotenv import find_dotenv, load_dotenv

    if env_file is not None:
        if not os.path.exists(env_file):
            raise ConfigurationError(f".env file not found: {env_file}")
        return load_dotenv(env_file, override=False)
    return load_dotenv(find_dotenv(usecwd=True), override=False)
