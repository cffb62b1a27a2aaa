"""Configuration loading and validation, with AWS SSM Parameter Store support."""
import json
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple

import boto3
from botocore.exceptions import ClientError
from pydantic import ValidationError

from .exceptions import ConfigurationError
from .logger import setup_logger
from .models import DiscoveryOptions, DiscoverySettings, ValidationFailure

logger = setup_logger(__name__)

LIST_SEPARATOR = ";"
PAIR_SEPARATOR = "="
MIN_PREFIX_LENGTH = 3

# Setting alias -> environment variable overriding it
ENV_VARS: Dict[str, str] = {
    "EcsClusters": "ECS_CLUSTERS",
    "EcsClusterSelectorTags": "ECS_CLUSTER_SELECTOR_TAGS",
    "EcsServiceSelectorTags": "ECS_SERVICE_SELECTOR_TAGS",
    "CloudMapNamespaces": "CLOUDMAP_NAMESPACES",
    "CloudMapNamespaceSelectorTags": "CLOUDMAP_NAMESPACE_SELECTOR_TAGS",
    "CloudMapServiceSelectorTags": "CLOUDMAP_SERVICE_SELECTOR_TAGS",
    "EcsTaskTags": "ECS_TASK_TAGS",
    "EcsServiceTags": "ECS_SERVICE_TAGS",
    "CloudMapServiceTags": "CLOUDMAP_SERVICE_TAGS",
    "CloudMapNamespaceTags": "CLOUDMAP_NAMESPACE_TAGS",
    "ExtraPrometheusLabels": "EXTRA_PROMETHEUS_LABELS",
    "CacheTtlSeconds": "CACHE_TTL_SECONDS",
    "StaleGraceSeconds": "STALE_GRACE_SECONDS",
    "MetricsPathPortTagPrefix": "METRICS_PATH_PORT_TAG_PREFIX",
    "MetricsTagSeparator": "METRICS_TAG_SEPARATOR",
    "DefaultMetricsPort": "DEFAULT_METRICS_PORT",
    "MaxConcurrency": "MAX_CONCURRENCY",
}

CONFIG_PARAM_ENV_VAR = "DISCOVERY_CONFIG_PARAM"

# Key=value settings, reported under their alias when malformed
_PAIR_SETTINGS: Tuple[Tuple[str, str], ...] = (
    ("ecs_cluster_selector_tags", "EcsClusterSelectorTags"),
    ("ecs_service_selector_tags", "EcsServiceSelectorTags"),
    ("cloudmap_namespace_selector_tags", "CloudMapNamespaceSelectorTags"),
    ("cloudmap_service_selector_tags", "CloudMapServiceSelectorTags"),
    ("extra_prometheus_labels", "ExtraPrometheusLabels"),
)


def split_names(value: str) -> Tuple[str, ...]:
    """
    Split a semicolon separated list.

    Segments are trimmed; empty segments and repeats are dropped, keeping
    the first occurrence's position.
    """
    parts = (part.strip() for part in (value or "").split(LIST_SEPARATOR))
    return tuple(dict.fromkeys(part for part in parts if part))


def parse_tag_pairs(value: str) -> Dict[str, str]:
    """
    Parse ``"k1=v1;k2=v2"`` into a dict.

    Later duplicates win. Values may contain ``=``; only the first one
    separates key from value.

    Raises:
        ValueError: If a segment has no ``=`` or an empty key
    """
    pairs: Dict[str, str] = {}
    for segment in split_names(value):
        key, sep, val = segment.partition(PAIR_SEPARATOR)
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"'{segment}' is not a key=value pair")
        pairs[key] = val.strip()
    return pairs


def validate_settings(settings: DiscoverySettings) -> List[ValidationFailure]:
    """
    Check the rules that span several settings or need parsing.

    Returns:
        Every failure found; an empty list means the settings are valid.
    """
    failures: List[ValidationFailure] = []

    if not split_names(settings.ecs_clusters) and not split_names(settings.cloudmap_namespaces):
        failures.append(ValidationFailure(
            message="At least one of 'EcsClusters' or 'CloudMapNamespaces' must be specified.",
            fields=("EcsClusters", "CloudMapNamespaces"),
        ))

    prefix = settings.metrics_path_port_tag_prefix
    if len(prefix) < MIN_PREFIX_LENGTH:
        failures.append(ValidationFailure(
            message=f"MetricsPathPortTagPrefix must be at least {MIN_PREFIX_LENGTH} characters long.",
            fields=("MetricsPathPortTagPrefix",),
        ))
    if not prefix.endswith(settings.metrics_tag_separator):
        failures.append(ValidationFailure(
            message=f"MetricsPathPortTagPrefix must end with '{settings.metrics_tag_separator}'.",
            fields=("MetricsPathPortTagPrefix",),
        ))

    for attr, alias in _PAIR_SETTINGS:
        try:
            parse_tag_pairs(getattr(settings, attr))
        except ValueError as e:
            failures.append(ValidationFailure(message=f"{alias}: {e}", fields=(alias,)))

    return failures


def build_options(settings: DiscoverySettings) -> DiscoveryOptions:
    """
    Turn raw settings into validated options.

    Raises:
        ConfigurationError: With every validation failure found
    """
    failures = validate_settings(settings)
    if failures:
        raise ConfigurationError(failures)

    return DiscoveryOptions(
        ecs_clusters=split_names(settings.ecs_clusters),
        cloudmap_namespaces=split_names(settings.cloudmap_namespaces),
        ecs_cluster_selector=parse_tag_pairs(settings.ecs_cluster_selector_tags),
        ecs_service_selector=parse_tag_pairs(settings.ecs_service_selector_tags),
        cloudmap_namespace_selector=parse_tag_pairs(settings.cloudmap_namespace_selector_tags),
        cloudmap_service_selector=parse_tag_pairs(settings.cloudmap_service_selector_tags),
        include_ecs_task_tags=bool(settings.ecs_task_tags),
        include_ecs_service_tags=bool(settings.ecs_service_tags),
        include_cloudmap_service_tags=bool(settings.cloudmap_service_tags),
        include_cloudmap_namespace_tags=bool(settings.cloudmap_namespace_tags),
        extra_labels=parse_tag_pairs(settings.extra_prometheus_labels),
        cache_ttl_seconds=settings.cache_ttl_seconds,
        stale_grace_seconds=settings.stale_grace_seconds,
        metrics_tag_prefix=settings.metrics_path_port_tag_prefix,
        metrics_tag_separator=settings.metrics_tag_separator,
        default_metrics_port=settings.default_metrics_port,
        max_concurrency=settings.max_concurrency,
    )


def parse_options(raw: Mapping[str, Any]) -> DiscoveryOptions:
    """
    Validate a mapping of settings (aliases or field names) into options.

    Field constraint errors from pydantic are folded into the same
    ConfigurationError as the cross-field rules, each naming its setting.

    Raises:
        ConfigurationError: If any setting is invalid
    """
    try:
        settings = DiscoverySettings.model_validate(dict(raw))
    except ValidationError as e:
        raise ConfigurationError(_failures_from_pydantic(e))
    return build_options(settings)


def _failures_from_pydantic(error: ValidationError) -> List[ValidationFailure]:
    failures = []
    for item in error.errors():
        loc = item.get("loc") or ("settings",)
        name = str(loc[0])
        field_info = DiscoverySettings.model_fields.get(name)
        if field_info is not None and field_info.alias:
            name = field_info.alias
        failures.append(ValidationFailure(message=f"{name}: {item['msg']}", fields=(name,)))
    return failures


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect settings present in the environment, keyed by alias."""
    environ = os.environ if environ is None else environ
    found = {}
    for alias, env_var in ENV_VARS.items():
        value = environ.get(env_var)
        # Empty numeric overrides mean "unset", not zero
        if value is None or (value == "" and alias in ("DefaultMetricsPort", "CacheTtlSeconds",
                                                        "StaleGraceSeconds", "MaxConcurrency")):
            continue
        found[alias] = value
    return found


def load_settings_from_ssm(parameter_name: str, region: Optional[str] = None) -> Dict[str, Any]:
    """
    Load a JSON settings document from AWS SSM Parameter Store.

    Args:
        parameter_name: Name of the SSM parameter
        region: AWS region (defaults to AWS_REGION env var or us-east-1)

    Returns:
        The decoded settings mapping

    Raises:
        ConfigurationError: If the parameter cannot be read or is not a JSON object
    """
    region = region or os.environ.get("AWS_REGION", "us-east-1")

    try:
        ssm = boto3.client("ssm", region_name=region)
        logger.info("Loading discovery settings from SSM", extra={"parameter": parameter_name})
        response = ssm.get_parameter(Name=parameter_name, WithDecryption=True)
        document = json.loads(response["Parameter"]["Value"])
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "Unknown")
        if code == "ParameterNotFound":
            raise ConfigurationError([ValidationFailure(
                message=f"SSM parameter not found: {parameter_name}", fields=(CONFIG_PARAM_ENV_VAR,)
            )])
        raise ConfigurationError([ValidationFailure(
            message=f"Failed to load SSM parameter: {e}", fields=(CONFIG_PARAM_ENV_VAR,)
        )])
    except json.JSONDecodeError as e:
        raise ConfigurationError([ValidationFailure(
            message=f"Invalid JSON in SSM parameter {parameter_name}: {e}", fields=(CONFIG_PARAM_ENV_VAR,)
        )])

    if not isinstance(document, dict):
        raise ConfigurationError([ValidationFailure(
            message=f"SSM parameter {parameter_name} must hold a JSON object", fields=(CONFIG_PARAM_ENV_VAR,)
        )])
    return document


def get_options(ssm_parameter: Optional[str] = None) -> DiscoveryOptions:
    """
    Build discovery options from SSM and the environment.

    The SSM document (parameter named by the argument or by
    DISCOVERY_CONFIG_PARAM) provides the base settings; environment
    variables override individual keys. A missing or unreadable SSM
    parameter is logged and the environment alone is used.

    Raises:
        ConfigurationError: If the merged settings are invalid
    """
    param_name = ssm_parameter or os.environ.get(CONFIG_PARAM_ENV_VAR)

    raw: Dict[str, Any] = {}
    if param_name:
        try:
            raw.update(load_settings_from_ssm(param_name))
        except ConfigurationError as e:
            logger.warning(
                "Failed to load settings from SSM, using environment only",
                extra={"parameter": param_name, "error": str(e)},
            )
    raw.update(settings_from_env())

    try:
        options = parse_options(raw)
    except ConfigurationError as e:
        logger.error(
            "Discovery configuration is invalid",
            extra={"failures": [{"message": f.message, "fields": list(f.fields)} for f in e.failures]},
        )
        raise

    logger.info(
        "Configuration loaded",
        extra={
            "ecs_clusters": list(options.ecs_clusters),
            "cloudmap_namespaces": list(options.cloudmap_namespaces),
            "cache_ttl_seconds": options.cache_ttl_seconds,
        },
    )
    return options
