from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.models import ResourceKind

# boto3 retries throttled calls itself before a failure reaches the pipeline
AWS_CLIENT_CONFIG = Config(retries={"max_attempts": 5, "mode": "standard"})

RETRYABLE_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "ServerException",
    "InternalServerError",
})


@dataclass
class ResourceDescriptor:
    """
    One discovered ECS or Cloud Map resource.

    This is a data structure threaded through the pipeline, not an entity
    with behavior. ``tags`` is None until the tags have been read.
    """
    resource_id: str                  # ARN (ECS, Cloud Map) or instance id
    kind: ResourceKind
    name: str
    tags: Optional[Dict[str, str]] = None
    parent_id: Optional[str] = None   # task -> service, cm service -> namespace, ...
    metadata: Dict[str, Any] = field(default_factory=dict)


class ResourceEnumerator(ABC):
    """
    Lists resources of one AWS source below a set of named roots
    (ECS clusters or Cloud Map namespaces).
    """

    @abstractmethod
    def list_resources(
        self,
        names: Sequence[str],
        selectors: Mapping[str, Mapping[str, str]],
    ) -> List[ResourceDescriptor]:
        """
        Enumerate resources below the given roots.

        Args:
            names: Cluster or namespace names
            selectors: Selector tags keyed by the ResourceKind value they filter

        Returns:
            Matching descriptors, with raw tags where the listing API returns them

        Raises:
            EnumerationError: If the source cannot be listed
        """
        raise NotImplementedError


class TagFetcher(ABC):
    """Reads the tags of a single resource."""

    @abstractmethod
    def fetch_tags(self, resource_id: str, kind: ResourceKind) -> Dict[str, str]:
        """
        Raises:
            TagFetchError: If the tags cannot be read
        """
        raise NotImplementedError


def matches_selector(tags: Optional[Mapping[str, str]], selector: Optional[Mapping[str, str]]) -> bool:
    """True when every selector pair is present in ``tags``; an empty selector matches all."""
    if not selector:
        return True
    tags = tags or {}
    return all(tags.get(key) == value for key, value in selector.items())


def tags_from_aws(tag_list: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    """
    Convert an AWS tag list into a dict.

    ECS uses ``key``/``value`` and Cloud Map ``Key``/``Value``; both are
    accepted. Duplicate keys keep the last value.
    """
    tags: Dict[str, str] = {}
    for tag in tag_list or []:
        key = tag.get("key", tag.get("Key"))
        if key is None:
            continue
        tags[key] = tag.get("value", tag.get("Value", ""))
    return tags


def is_retryable(error: Exception) -> bool:
    """Whether an AWS error is worth retrying on a later run."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "") in RETRYABLE_ERROR_CODES
    return isinstance(error, BotoCoreError)
