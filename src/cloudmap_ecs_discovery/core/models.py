"""Pydantic models for discovery configuration and scrape targets."""
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_METRICS_TAG_PREFIX = "METRICS_"
DEFAULT_TAG_SEPARATOR = "_"
DEFAULT_CACHE_TTL_SECONDS = 60
MAX_CACHE_TTL_SECONDS = 65535

METRICS_PATH_LABEL = "__metrics_path__"
METRICS_NAME_LABEL = "metrics_name"


class ResourceKind(str, Enum):
    """Kinds of AWS resources taking part in discovery."""
    ECS_CLUSTER = "ecs-cluster"
    ECS_SERVICE = "ecs-service"
    ECS_TASK = "ecs-task"
    CLOUDMAP_NAMESPACE = "cloudmap-namespace"
    CLOUDMAP_SERVICE = "cloudmap-service"
    CLOUDMAP_INSTANCE = "cloudmap-instance"


class ValidationFailure(BaseModel):
    """One configuration problem and the setting(s) it concerns."""
    model_config = ConfigDict(frozen=True)

    message: str
    fields: Tuple[str, ...]

    def __str__(self) -> str:
        return f"{self.message} (fields: {', '.join(self.fields)})"


class DiscoverySettings(BaseModel):
    """Raw configuration surface, as found in SSM or the environment.

    List and map settings are semicolon separated strings; they are parsed
    exactly once into a :class:`DiscoveryOptions`.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ecs_clusters: str = Field(default="", alias="EcsClusters")
    ecs_cluster_selector_tags: str = Field(default="", alias="EcsClusterSelectorTags")
    ecs_service_selector_tags: str = Field(default="", alias="EcsServiceSelectorTags")
    cloudmap_namespaces: str = Field(default="", alias="CloudMapNamespaces")
    cloudmap_namespace_selector_tags: str = Field(default="", alias="CloudMapNamespaceSelectorTags")
    cloudmap_service_selector_tags: str = Field(default="", alias="CloudMapServiceSelectorTags")

    # Tag priority: ECS task > ECS service > Cloud Map service > Cloud Map namespace
    ecs_task_tags: str = Field(default="", alias="EcsTaskTags")
    ecs_service_tags: str = Field(default="", alias="EcsServiceTags")
    cloudmap_service_tags: str = Field(default="", alias="CloudMapServiceTags")
    cloudmap_namespace_tags: str = Field(default="", alias="CloudMapNamespaceTags")

    extra_prometheus_labels: str = Field(default="", alias="ExtraPrometheusLabels")
    cache_ttl_seconds: int = Field(
        default=DEFAULT_CACHE_TTL_SECONDS, ge=0, le=MAX_CACHE_TTL_SECONDS, alias="CacheTtlSeconds"
    )
    stale_grace_seconds: int = Field(default=0, ge=0, alias="StaleGraceSeconds")
    metrics_path_port_tag_prefix: str = Field(
        default=DEFAULT_METRICS_TAG_PREFIX, alias="MetricsPathPortTagPrefix"
    )
    metrics_tag_separator: str = Field(
        default=DEFAULT_TAG_SEPARATOR, min_length=1, max_length=1, alias="MetricsTagSeparator"
    )
    default_metrics_port: Optional[int] = Field(default=None, ge=1, le=65535, alias="DefaultMetricsPort")
    max_concurrency: int = Field(default=8, ge=1, alias="MaxConcurrency")


class DiscoveryOptions(BaseModel):
    """Validated, strongly typed discovery options."""
    model_config = ConfigDict(frozen=True)

    ecs_clusters: Tuple[str, ...] = ()
    cloudmap_namespaces: Tuple[str, ...] = ()
    ecs_cluster_selector: Dict[str, str] = Field(default_factory=dict)
    ecs_service_selector: Dict[str, str] = Field(default_factory=dict)
    cloudmap_namespace_selector: Dict[str, str] = Field(default_factory=dict)
    cloudmap_service_selector: Dict[str, str] = Field(default_factory=dict)
    include_ecs_task_tags: bool = False
    include_ecs_service_tags: bool = False
    include_cloudmap_service_tags: bool = False
    include_cloudmap_namespace_tags: bool = False
    extra_labels: Dict[str, str] = Field(default_factory=dict)
    cache_ttl_seconds: int = Field(default=DEFAULT_CACHE_TTL_SECONDS, ge=0, le=MAX_CACHE_TTL_SECONDS)
    stale_grace_seconds: int = Field(default=0, ge=0)
    metrics_tag_prefix: str = DEFAULT_METRICS_TAG_PREFIX
    metrics_tag_separator: str = DEFAULT_TAG_SEPARATOR
    default_metrics_port: Optional[int] = None
    max_concurrency: int = Field(default=8, ge=1)

    @field_validator("ecs_clusters", "cloudmap_namespaces")
    @classmethod
    def drop_repeated_names(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Each cluster or namespace is enumerated once."""
        return tuple(dict.fromkeys(v))


class ScrapeTarget(BaseModel):
    """One Prometheus target group entry: a single address and its labels."""
    model_config = ConfigDict(frozen=True)

    address: str
    labels: Dict[str, str] = Field(default_factory=dict)
    source_id: str
