"""Tag lookups for single ECS and Cloud Map resources."""
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..core.exceptions import TagFetchError
from ..core.models import ResourceKind
from .base import AWS_CLIENT_CONFIG, TagFetcher, is_retryable, tags_from_aws

ECS_KINDS = frozenset({ResourceKind.ECS_CLUSTER, ResourceKind.ECS_SERVICE, ResourceKind.ECS_TASK})
CLOUDMAP_KINDS = frozenset({ResourceKind.CLOUDMAP_NAMESPACE, ResourceKind.CLOUDMAP_SERVICE})


class AwsTagFetcher(TagFetcher):
    """Reads tags through the ECS and Cloud Map ListTagsForResource APIs."""

    def __init__(
        self,
        region: Optional[str] = None,
        ecs_client: Any = None,
        sd_client: Any = None,
    ):
        kwargs: Dict[str, Any] = {"config": AWS_CLIENT_CONFIG}
        if region:
            kwargs["region_name"] = region
        self.ecs_client = ecs_client if ecs_client is not None else boto3.client("ecs", **kwargs)
        self.sd_client = sd_client if sd_client is not None else boto3.client("servicediscovery", **kwargs)

    def fetch_tags(self, resource_id: str, kind: ResourceKind) -> Dict[str, str]:
        kind = ResourceKind(kind)
        try:
            if kind in ECS_KINDS:
                response = self.ecs_client.list_tags_for_resource(resourceArn=resource_id)
                return tags_from_aws(response.get("tags"))
            if kind in CLOUDMAP_KINDS:
                response = self.sd_client.list_tags_for_resource(ResourceARN=resource_id)
                return tags_from_aws(response.get("Tags"))
        except (ClientError, BotoCoreError) as e:
            raise TagFetchError(
                f"Failed to read tags of {kind.value} {resource_id}: {e}",
                resource_id=resource_id,
                retryable=is_retryable(e),
            ) from e

        # Cloud Map instances have no tags
        return {}
