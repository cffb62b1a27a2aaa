"""Prometheus HTTP service discovery document."""
import json
from typing import Any, Dict, Iterable, List

from .models import ScrapeTarget


def to_target_groups(targets: Iterable[ScrapeTarget]) -> List[Dict[str, Any]]:
    """
    Convert targets into Prometheus HTTP SD target groups.

    Each target becomes its own group:
    ``{"targets": ["10.0.0.1:9100"], "labels": {"env": "prod"}}``.
    Labels are emitted in sorted order so equal snapshots serialize to
    identical bytes.
    """
    return [
        {
            "targets": [target.address],
            "labels": {key: target.labels[key] for key in sorted(target.labels)},
        }
        for target in targets
    ]


def render_discovery_document(targets: Iterable[ScrapeTarget]) -> str:
    """Serialize targets as the JSON body of the discovery endpoint."""
    return json.dumps(to_target_groups(targets))
