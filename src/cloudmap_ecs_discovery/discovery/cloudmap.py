"""
Cloud Map enumerator.

Lists namespaces by name, their services and the registered instances of
each service.
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..core.exceptions import EnumerationError
from ..core.logger import setup_logger
from ..core.models import ResourceKind
from .base import (
    AWS_CLIENT_CONFIG,
    ResourceDescriptor,
    ResourceEnumerator,
    is_retryable,
    matches_selector,
    tags_from_aws,
)

logger = setup_logger(__name__)

# Attributes set by ECS and by RegisterInstance for IP based services
INSTANCE_IPV4_ATTRIBUTE = "AWS_INSTANCE_IPV4"
INSTANCE_PORT_ATTRIBUTE = "AWS_INSTANCE_PORT"


class CloudMapResourceLister(ResourceEnumerator):
    """
    Enumerates Cloud Map namespaces, services and instances.

    Cloud Map list calls do not return tags. They are read here only when
    a selector has to be evaluated; otherwise the descriptor is returned
    with unknown tags and the tag fetching stage reads them.
    """

    def __init__(self, region: Optional[str] = None, client: Any = None):
        if client is not None:
            self.sd_client = client
        elif region:
            self.sd_client = boto3.client("servicediscovery", region_name=region, config=AWS_CLIENT_CONFIG)
        else:
            self.sd_client = boto3.client("servicediscovery", config=AWS_CLIENT_CONFIG)

    def list_resources(
        self,
        names: Sequence[str],
        selectors: Mapping[str, Mapping[str, str]],
    ) -> List[ResourceDescriptor]:
        try:
            namespaces = self._find_namespaces(names)
        except (ClientError, BotoCoreError) as e:
            raise EnumerationError(
                f"Failed to list Cloud Map namespaces: {e}",
                resource_id=";".join(names),
                retryable=is_retryable(e),
            ) from e

        missing = [name for name in names if name not in namespaces]
        if missing:
            logger.warning("Cloud Map namespaces not found", extra={"namespaces": missing})
        if not namespaces:
            raise EnumerationError(
                f"Cloud Map namespace not found: {', '.join(names)}",
                resource_id=";".join(names),
            )

        descriptors: List[ResourceDescriptor] = []
        for name, namespace in sorted(namespaces.items()):
            try:
                descriptors.extend(self._list_namespace(namespace, selectors))
            except (ClientError, BotoCoreError) as e:
                raise EnumerationError(
                    f"Failed to enumerate Cloud Map namespace {name}: {e}",
                    resource_id=namespace.get("Arn", name),
                    retryable=is_retryable(e),
                ) from e
        return descriptors

    def _find_namespaces(self, names: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        wanted = set(names)
        found: Dict[str, Dict[str, Any]] = {}
        paginator = self.sd_client.get_paginator("list_namespaces")
        for page in paginator.paginate():
            for namespace in page.get("Namespaces", []):
                if namespace.get("Name") in wanted:
                    found[namespace["Name"]] = namespace
        return found

    def _read_tags(self, arn: str) -> Dict[str, str]:
        response = self.sd_client.list_tags_for_resource(ResourceARN=arn)
        return tags_from_aws(response.get("Tags"))

    def _list_namespace(
        self,
        namespace: Dict[str, Any],
        selectors: Mapping[str, Mapping[str, str]],
    ) -> List[ResourceDescriptor]:
        namespace_arn = namespace["Arn"]
        namespace_selector = selectors.get(ResourceKind.CLOUDMAP_NAMESPACE.value)
        namespace_tags = self._read_tags(namespace_arn) if namespace_selector else None
        if not matches_selector(namespace_tags, namespace_selector):
            logger.debug("Namespace skipped by selector", extra={"namespace": namespace["Name"]})
            return []

        descriptors = [ResourceDescriptor(
            resource_id=namespace_arn,
            kind=ResourceKind.CLOUDMAP_NAMESPACE,
            name=namespace["Name"],
            tags=namespace_tags,
            metadata={"namespace_id": namespace["Id"], "type": namespace.get("Type", "")},
        )]

        service_selector = selectors.get(ResourceKind.CLOUDMAP_SERVICE.value)
        paginator = self.sd_client.get_paginator("list_services")
        for page in paginator.paginate(
            Filters=[{"Name": "NAMESPACE_ID", "Values": [namespace["Id"]], "Condition": "EQ"}]
        ):
            for service in page.get("Services", []):
                service_tags = self._read_tags(service["Arn"]) if service_selector else None
                if not matches_selector(service_tags, service_selector):
                    continue

                service_descriptor = ResourceDescriptor(
                    resource_id=service["Arn"],
                    kind=ResourceKind.CLOUDMAP_SERVICE,
                    name=service["Name"],
                    tags=service_tags,
                    parent_id=namespace_arn,
                    metadata={"service_id": service["Id"]},
                )
                descriptors.append(service_descriptor)

                try:
                    descriptors.extend(self._list_instances(service_descriptor))
                except (ClientError, BotoCoreError) as e:
                    service_descriptor.metadata["error"] = f"Failed to list instances: {e}"
                    logger.warning(
                        "Failed to list Cloud Map instances",
                        extra={"service": service["Name"], "error": str(e)},
                    )

        logger.info(
            "Enumerated Cloud Map namespace",
            extra={"namespace": namespace["Name"], "resources": len(descriptors)},
        )
        return descriptors

    def _list_instances(self, service: ResourceDescriptor) -> List[ResourceDescriptor]:
        instances = []
        paginator = self.sd_client.get_paginator("list_instances")
        for page in paginator.paginate(ServiceId=service.metadata["service_id"]):
            for instance in page.get("Instances", []):
                attributes = instance.get("Attributes", {})
                instances.append(ResourceDescriptor(
                    resource_id=f"{service.resource_id}/instance/{instance['Id']}",
                    kind=ResourceKind.CLOUDMAP_INSTANCE,
                    name=instance["Id"],
                    # Instances cannot carry tags
                    tags={},
                    parent_id=service.resource_id,
                    metadata={
                        "instance_id": instance["Id"],
                        "ip_address": attributes.get(INSTANCE_IPV4_ATTRIBUTE),
                        "port": attributes.get(INSTANCE_PORT_ATTRIBUTE),
                    },
                ))
        return instances
