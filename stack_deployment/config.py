import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from stack_deployment.environments import Environment, stack_name
from stack_deployment.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path("config/deployment.yml")
CONFIG_PATH_ENV_VAR = "STACK_DEPLOYMENT_CONFIG"
DEFAULTS_SECTION = "defaults"

DEFAULT_POLL_INTERVAL_SECONDS = 20
DEFAULT_POLL_MAX_ATTEMPTS = 20
DEFAULT_CHANGE_SET_PREFIX = "deploy"


@dataclass(frozen=True)
class DeploymentConfig:
    """
    Everything a deployment needs to know about its target environment.

    Built once per invocation and passed to each component by value.
    """

    environment: Environment
    region: str
    stack_identifier: str
    template_location: str
    role_arn: Optional[str] = None
    parameters_file: Optional[str] = None
    tags_file: Optional[str] = None
    capabilities: Tuple[str, ...] = ()
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    change_set_prefix: str = DEFAULT_CHANGE_SET_PREFIX
    validate_template: bool = True

    @property
    def stack_name(self) -> str:
        return stack_name(self.environment, self.stack_identifier)

    @property
    def polling_window_seconds(self) -> int:
        return self.poll_interval_seconds * self.poll_max_attempts

    def with_overrides(self, **overrides) -> "DeploymentConfig":
        """Return a copy with every non None override applied"""
        overrides = {k: o for k, o in overrides.items() if o is not None}
        if not overrides:
            return self
        return _validated(replace(self, **overrides))


def default_config_path() -> Path:
    return Path(os.getenv(CONFIG_PATH_ENV_VAR, DEFAULT_CONFIG_PATH))


def read_config_file(config_path: Path) -> Dict:
    try:
        with config_path.open() as f:
            conf = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(conf, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")
    return conf


def load_config(
    environment: Environment,
    config_path: Optional[Path] = None,
) -> DeploymentConfig:
    """
    Build the configuration of one environment.

    The `defaults` section of the YAML file is merged with the section named
    after the environment value (dev, test, prod); the environment section wins.

    Args:
        environment: the target environment
        config_path: path of the YAML file, defaults to config/deployment.yml

    Returns:
        A validated DeploymentConfig
    """
    config_path = Path(config_path) if config_path else default_config_path()
    conf = read_config_file(config_path)

    if environment.value not in conf:
        raise ConfigurationError(
            f"No section for environment {environment.value} in {config_path}"
        )
    merged = {**(conf.get(DEFAULTS_SECTION) or {}), **(conf[environment.value] or {})}
    return from_mapping(environment, merged)


def from_mapping(environment: Environment, values: Dict) -> DeploymentConfig:
    missing = [k for k in ("region", "stack_identifier", "template") if not values.get(k)]
    capabilities = values.get("capabilities") or ()
    if isinstance(capabilities, str):
        capabilities = [capabilities]
    if missing:
        raise ConfigurationError(
            f"Missing configuration keys for {environment.value}: {', '.join(missing)}"
        )
    try:
        config = DeploymentConfig(
            environment=environment,
            region=str(values["region"]),
            stack_identifier=str(values["stack_identifier"]),
            template_location=str(values["template"]),
            role_arn=values.get("role_arn"),
            parameters_file=values.get("parameters_file"),
            tags_file=values.get("tags_file"),
            capabilities=tuple(capabilities),
            poll_interval_seconds=int(
                values.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS)
            ),
            poll_max_attempts=int(
                values.get("poll_max_attempts", DEFAULT_POLL_MAX_ATTEMPTS)
            ),
            change_set_prefix=str(
                values.get("change_set_prefix", DEFAULT_CHANGE_SET_PREFIX)
            ),
            validate_template=values.get("validate_template", True),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid configuration for {environment.value}: {e}"
        ) from e
    return _validated(config)


def _validated(config: DeploymentConfig) -> DeploymentConfig:
    if config.poll_interval_seconds < 0:
        raise ConfigurationError(
            f"poll_interval_seconds must not be negative, got {config.poll_interval_seconds}"
        )
    if config.poll_max_attempts < 1:
        raise ConfigurationError(
            f"poll_max_attempts must be at least 1, got {config.poll_max_attempts}"
        )
    if not isinstance(config.validate_template, bool):
        raise ConfigurationError(
            f"validate_template must be true or false, got {config.validate_template!r}"
        )
    if not config.change_set_prefix[:1].isalpha():
        raise ConfigurationError(
            f"change_set_prefix must start with a letter, got {config.change_set_prefix}"
        )
    return config
