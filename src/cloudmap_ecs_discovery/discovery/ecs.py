"""
ECS enumerator.

Lists clusters, their services and the running tasks of each service,
including the Cloud Map services and namespaces an ECS service is linked
to through Service Connect or service registries.
"""
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

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


class EcsResourceLister(ResourceEnumerator):
    """
    Enumerates ECS clusters, services and running tasks.

    Tags come back with the describe calls (``include=["TAGS"]``), so the
    cluster and service selectors are applied while listing.
    """

    # API limits of DescribeServices / DescribeTasks
    DESCRIBE_SERVICES_BATCH = 10
    DESCRIBE_TASKS_BATCH = 100

    def __init__(self, region: Optional[str] = None, client: Any = None):
        if client is not None:
            self.ecs_client = client
        elif region:
            self.ecs_client = boto3.client("ecs", region_name=region, config=AWS_CLIENT_CONFIG)
        else:
            self.ecs_client = boto3.client("ecs", config=AWS_CLIENT_CONFIG)

    def list_resources(
        self,
        names: Sequence[str],
        selectors: Mapping[str, Mapping[str, str]],
    ) -> List[ResourceDescriptor]:
        descriptors: List[ResourceDescriptor] = []
        for cluster_name in names:
            try:
                descriptors.extend(self._list_cluster(cluster_name, selectors))
            except (ClientError, BotoCoreError) as e:
                raise EnumerationError(
                    f"Failed to enumerate ECS cluster {cluster_name}: {e}",
                    resource_id=cluster_name,
                    retryable=is_retryable(e),
                ) from e
        return descriptors

    def _list_cluster(
        self,
        cluster_name: str,
        selectors: Mapping[str, Mapping[str, str]],
    ) -> List[ResourceDescriptor]:
        response = self.ecs_client.describe_clusters(clusters=[cluster_name], include=["TAGS"])
        clusters = response.get("clusters", [])
        if not clusters:
            raise EnumerationError(f"ECS cluster not found: {cluster_name}", resource_id=cluster_name)

        cluster = clusters[0]
        cluster_arn = cluster["clusterArn"]
        cluster_tags = tags_from_aws(cluster.get("tags"))
        if not matches_selector(cluster_tags, selectors.get(ResourceKind.ECS_CLUSTER.value)):
            logger.debug("Cluster skipped by selector", extra={"cluster": cluster_name})
            return []

        descriptors = [ResourceDescriptor(
            resource_id=cluster_arn,
            kind=ResourceKind.ECS_CLUSTER,
            name=cluster.get("clusterName", cluster_name),
            tags=cluster_tags,
        )]

        service_selector = selectors.get(ResourceKind.ECS_SERVICE.value)
        for service in self._describe_services(cluster_arn):
            service_tags = tags_from_aws(service.get("tags"))
            if not matches_selector(service_tags, service_selector):
                continue

            service_descriptor = ResourceDescriptor(
                resource_id=service["serviceArn"],
                kind=ResourceKind.ECS_SERVICE,
                name=service["serviceName"],
                tags=service_tags,
                parent_id=cluster_arn,
                metadata={"cluster_name": cluster_name},
            )
            descriptors.append(service_descriptor)
            descriptors.extend(self._linked_cloudmap_resources(service, service_descriptor))

            try:
                descriptors.extend(self._list_running_tasks(cluster_arn, cluster_name, service))
            except (ClientError, BotoCoreError) as e:
                # Other services of the cluster are still usable
                service_descriptor.metadata["error"] = f"Failed to list tasks: {e}"
                logger.warning(
                    "Failed to list tasks for service",
                    extra={"cluster": cluster_name, "service": service["serviceName"], "error": str(e)},
                )

        logger.info(
            "Enumerated ECS cluster",
            extra={"cluster": cluster_name, "resources": len(descriptors)},
        )
        return descriptors

    def _describe_services(self, cluster_arn: str) -> Iterator[Dict[str, Any]]:
        service_arns: List[str] = []
        paginator = self.ecs_client.get_paginator("list_services")
        for page in paginator.paginate(cluster=cluster_arn):
            service_arns.extend(page.get("serviceArns", []))

        for batch in _batched(service_arns, self.DESCRIBE_SERVICES_BATCH):
            response = self.ecs_client.describe_services(
                cluster=cluster_arn, services=batch, include=["TAGS"]
            )
            for failure in response.get("failures", []):
                logger.warning(
                    "ECS service could not be described",
                    extra={"arn": failure.get("arn"), "reason": failure.get("reason")},
                )
            yield from response.get("services", [])

    def _list_running_tasks(
        self,
        cluster_arn: str,
        cluster_name: str,
        service: Dict[str, Any],
    ) -> List[ResourceDescriptor]:
        task_arns: List[str] = []
        paginator = self.ecs_client.get_paginator("list_tasks")
        for page in paginator.paginate(
            cluster=cluster_arn, serviceName=service["serviceName"], desiredStatus="RUNNING"
        ):
            task_arns.extend(page.get("taskArns", []))

        descriptors = []
        for batch in _batched(task_arns, self.DESCRIBE_TASKS_BATCH):
            response = self.ecs_client.describe_tasks(cluster=cluster_arn, tasks=batch, include=["TAGS"])
            for task in response.get("tasks", []):
                if task.get("lastStatus") != "RUNNING":
                    continue
                task_arn = task["taskArn"]
                task_id = task_arn.split("/")[-1]
                descriptors.append(ResourceDescriptor(
                    resource_id=task_arn,
                    kind=ResourceKind.ECS_TASK,
                    name=task_id,
                    tags=tags_from_aws(task.get("tags")),
                    parent_id=service["serviceArn"],
                    metadata={
                        "cluster_name": cluster_name,
                        "task_id": task_id,
                        "task_definition_arn": task.get("taskDefinitionArn", ""),
                        "ip_address": extract_task_ip(task),
                    },
                ))
        return descriptors

    @staticmethod
    def _linked_cloudmap_resources(
        service: Dict[str, Any],
        service_descriptor: ResourceDescriptor,
    ) -> List[ResourceDescriptor]:
        """
        Cloud Map services/namespaces an ECS service registers into.

        Their tags are unknown here; the tag fetching stage reads them.
        """
        linked: Dict[str, ResourceDescriptor] = {}

        for deployment in service.get("deployments", []):
            if deployment.get("status") not in (None, "PRIMARY"):
                continue
            namespace = (deployment.get("serviceConnectConfiguration") or {}).get("namespace", "")
            namespace_arn = namespace if namespace.startswith("arn:") else None
            if namespace_arn and namespace_arn not in linked:
                linked[namespace_arn] = ResourceDescriptor(
                    resource_id=namespace_arn,
                    kind=ResourceKind.CLOUDMAP_NAMESPACE,
                    name=namespace_arn.split("/")[-1],
                )
            for resource in deployment.get("serviceConnectResources", []):
                arn = resource.get("discoveryArn")
                if arn:
                    linked[arn] = ResourceDescriptor(
                        resource_id=arn,
                        kind=ResourceKind.CLOUDMAP_SERVICE,
                        name=resource.get("discoveryName", arn.split("/")[-1]),
                        parent_id=namespace_arn,
                    )

        for registry in service.get("serviceRegistries", []):
            arn = registry.get("registryArn")
            if arn and arn not in linked:
                linked[arn] = ResourceDescriptor(
                    resource_id=arn,
                    kind=ResourceKind.CLOUDMAP_SERVICE,
                    name=arn.split("/")[-1],
                )

        service_descriptor.metadata["cloudmap_service_ids"] = sorted(
            arn for arn, d in linked.items() if d.kind == ResourceKind.CLOUDMAP_SERVICE
        )
        return list(linked.values())


def extract_task_ip(task: Dict[str, Any]) -> Optional[str]:
    """
    Private IPv4 address of an ECS task.

    awsvpc tasks expose it on the ENI attachment; the container network
    interfaces are checked as a fallback.
    """
    for attachment in task.get("attachments", []):
        if attachment.get("type") != "ElasticNetworkInterface":
            continue
        for detail in attachment.get("details", []):
            if detail.get("name") == "privateIPv4Address" and detail.get("value"):
                return detail["value"]

    for container in task.get("containers", []):
        for interface in container.get("networkInterfaces", []):
            if interface.get("privateIpv4Address"):
                return interface["privateIpv4Address"]

    return None


def _batched(items: List[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]
