"""
Tag resolution across the four tag sources of a service instance.

Priority, highest first: ECS task, ECS service, Cloud Map service,
Cloud Map namespace. Extra labels from configuration override everything.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .models import DiscoveryOptions

_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_]")

TagMap = Optional[Mapping[str, str]]


@dataclass
class ResolvedTagSet:
    """Final tags of one instance.

    ``labels`` are the Prometheus labels (metrics-convention tags removed);
    ``metrics_tags`` holds the convention tags used to build endpoints.
    """
    labels: Dict[str, str] = field(default_factory=dict)
    metrics_tags: Dict[str, str] = field(default_factory=dict)


def sanitize_label_name(name: str) -> str:
    """Coerce a tag key into a valid Prometheus label name."""
    sanitized = _INVALID_LABEL_CHARS.sub("_", name)
    if not sanitized or sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


def resolve_tags(
    options: DiscoveryOptions,
    task_tags: TagMap = None,
    service_tags: TagMap = None,
    cloudmap_service_tags: TagMap = None,
    namespace_tags: TagMap = None,
) -> ResolvedTagSet:
    """
    Merge the tag sources of one instance.

    Sources are overlaid on their raw tag keys from lowest to highest
    priority, so each key resolves to the highest source carrying it.
    Label names are sanitized only after the merge. When two raw keys
    sanitize to the same label name, a key that already is a valid label
    name wins over one that had to be rewritten; otherwise the
    lexicographically greater raw key wins.

    A source whose inclusion toggle is off adds no labels, but its
    metrics-convention tags still count: they describe how to scrape the
    instance, not how to label it.

    Args:
        options: Inclusion toggles, metrics-tag prefix and extra labels
        task_tags: ECS task tags
        service_tags: ECS service tags
        cloudmap_service_tags: Cloud Map service tags
        namespace_tags: Cloud Map namespace tags

    Returns:
        ResolvedTagSet; identical inputs always give identical output
    """
    prefix = options.metrics_tag_prefix
    sources = (
        (namespace_tags, options.include_cloudmap_namespace_tags),
        (cloudmap_service_tags, options.include_cloudmap_service_tags),
        (service_tags, options.include_ecs_service_tags),
        (task_tags, options.include_ecs_task_tags),
    )

    resolved = ResolvedTagSet()
    raw_labels: Dict[str, str] = {}
    for tags, included in sources:
        for key, value in (tags or {}).items():
            if key.startswith(prefix):
                resolved.metrics_tags[key] = value
            elif included:
                raw_labels[key] = value

    # Already valid names are written last so they win collisions
    for key in sorted(raw_labels, key=lambda k: (sanitize_label_name(k) == k, k)):
        resolved.labels[sanitize_label_name(key)] = raw_labels[key]

    for key, value in options.extra_labels.items():
        resolved.labels[sanitize_label_name(key)] = value

    return resolved
