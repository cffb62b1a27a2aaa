"""
Metrics endpoint tag convention.

With the prefix ``METRICS_`` a resource describes its scrape endpoints as::

    METRICS_PATH<suffix> = /metrics
    METRICS_PORT<suffix> = 9001
    METRICS_NAME<suffix> = application

Tags sharing the same suffix (including the empty one) form one endpoint,
so ``METRICS_PORT_2`` / ``METRICS_PATH_2`` describe a second endpoint,
e.g. a sidecar exporter next to the application.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .models import DEFAULT_METRICS_PATH

PATH_MARKER = "PATH"
PORT_MARKER = "PORT"
NAME_MARKER = "NAME"
MARKERS = (PATH_MARKER, PORT_MARKER, NAME_MARKER)

MAX_PORT = 65535


@dataclass(frozen=True)
class MetricsEndpoint:
    """One scrape endpoint of an instance. An empty name means unnamed."""
    port: int
    path: str = DEFAULT_METRICS_PATH
    name: str = ""


@dataclass
class ExtractionResult:
    endpoints: List[MetricsEndpoint] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class MetricsTagParser:
    """Parses the metrics tag convention for a given prefix."""

    def __init__(self, prefix: str):
        self.prefix = prefix

    def parse(self, tags: Mapping[str, str], resource_id: Optional[str] = None) -> ExtractionResult:
        """
        Build endpoints from tags.

        One pass groups marker tags by suffix; finalizing drops groups
        without a port and groups whose port is not a valid TCP port (the
        latter with a warning). Endpoints are ordered by suffix.

        Args:
            tags: Resolved tags of one instance
            resource_id: Used in warning messages only

        Returns:
            ExtractionResult with endpoints and parse warnings
        """
        groups: Dict[str, Dict[str, str]] = {}
        for key, value in tags.items():
            if not key.startswith(self.prefix):
                continue
            rest = key[len(self.prefix):]
            for marker in MARKERS:
                if rest.startswith(marker):
                    groups.setdefault(rest[len(marker):], {})[marker] = value
                    break

        result = ExtractionResult()
        for suffix in sorted(groups):
            group = groups[suffix]
            raw_port = group.get(PORT_MARKER)
            if raw_port is None:
                continue

            port = _parse_port(raw_port)
            if port is None:
                result.warnings.append(
                    f"Invalid {self.prefix}{PORT_MARKER}{suffix} value '{raw_port}'"
                    + (f" on {resource_id}" if resource_id else "")
                )
                continue

            path = (group.get(PATH_MARKER) or "").strip() or DEFAULT_METRICS_PATH
            if not path.startswith("/"):
                path = f"/{path}"

            result.endpoints.append(MetricsEndpoint(
                port=port,
                path=path,
                name=(group.get(NAME_MARKER) or "").strip(),
            ))
        return result


def extract_metrics_endpoints(tags: Mapping[str, str], prefix: str) -> ExtractionResult:
    """Shortcut for ``MetricsTagParser(prefix).parse(tags)``."""
    return MetricsTagParser(prefix).parse(tags)


def _parse_port(value: str) -> Optional[int]:
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    port = int(value)
    if not 1 <= port <= MAX_PORT:
        return None
    return port
