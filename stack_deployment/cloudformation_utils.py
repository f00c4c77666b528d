import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from botocore.exceptions import BotoCoreError, ClientError

from stack_deployment.exceptions import ConfigurationError, PlanError

# CloudFormation rejects inline template bodies above this size
MAX_TEMPLATE_BODY_BYTES = 51200

# service rejections as well as transport and credential failures
AWS_ERRORS = (ClientError, BotoCoreError)


def _load_document(path: Path):
    try:
        with path.open() as f:
            if path.suffix in (".yml", ".yaml"):
                return yaml.safe_load(f)
            return json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e


def _as_mapping(document, key_field: str, value_field: str, path: Path) -> Dict[str, str]:
    if document is None:
        return {}
    if isinstance(document, dict):
        return {str(k): str(o) for k, o in document.items()}
    if isinstance(document, list):
        try:
            return {str(k[key_field]): str(k[value_field]) for k in document}
        except (KeyError, TypeError) as e:
            raise ConfigurationError(
                f"Every entry of {path} needs {key_field} and {value_field}"
            ) from e
    raise ConfigurationError(f"{path} must be a mapping or a list")


def load_parameters(path: Optional[str]) -> Dict[str, str]:
    """
    Load stack parameters from a JSON or YAML file.

    Both a flat mapping and the CloudFormation CLI format
    `[{"ParameterKey": "...", "ParameterValue": "..."}]` are accepted.
    """
    if not path:
        return {}
    path = Path(path)
    return _as_mapping(_load_document(path), "ParameterKey", "ParameterValue", path)


def load_tags(path: Optional[str]) -> Dict[str, str]:
    """
    Load stack tags from a JSON or YAML file, either a flat mapping or
    `[{"Key": "...", "Value": "..."}]`
    """
    if not path:
        return {}
    path = Path(path)
    return _as_mapping(_load_document(path), "Key", "Value", path)


def to_cfn_parameters(parameters: Dict[str, str]) -> List[Dict[str, str]]:
    return [
        {"ParameterKey": k, "ParameterValue": o} for k, o in sorted(parameters.items())
    ]


def to_cfn_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"Key": k, "Value": o} for k, o in sorted(tags.items())]


def s3_uri_to_url(s3_uri: str) -> str:
    bucket, _, key = s3_uri[len("s3://") :].partition("/")
    if not bucket or not key:
        raise PlanError(f"Invalid S3 template location {s3_uri}")
    return f"https://{bucket}.s3.amazonaws.com/{key}"


def template_arguments(template_location: str) -> Dict[str, str]:
    """
    Build the template argument of CreateChangeSet / ValidateTemplate.

    Args:
        template_location: local path, https:// URL or s3://bucket/key URI

    Returns:
        Either {"TemplateURL": ...} or {"TemplateBody": ...}
    """
    if template_location.startswith("s3://"):
        return {"TemplateURL": s3_uri_to_url(template_location)}
    if template_location.startswith("https://"):
        return {"TemplateURL": template_location}

    path = Path(template_location)
    try:
        body = path.read_text()
    except OSError as e:
        raise PlanError(f"Cannot read template {template_location}: {e}") from e
    if len(body.encode("utf-8")) > MAX_TEMPLATE_BODY_BYTES:
        raise PlanError(
            f"Template {template_location} exceeds {MAX_TEMPLATE_BODY_BYTES} bytes, "
            "upload it to S3 and use an s3:// location"
        )
    return {"TemplateBody": body}


def change_set_name(prefix: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{now:%Y%m%d%H%M%S}"


def error_message(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response["Error"].get("Message", str(error))
    return str(error)
