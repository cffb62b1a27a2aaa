"""
Test helper utilities.

Fake collaborators and builders for discovery resources.
"""

import threading
from typing import Dict, List, Mapping, Optional, Sequence
from unittest.mock import MagicMock

from cloudmap_ecs_discovery.core.exceptions import EnumerationError, TagFetchError
from cloudmap_ecs_discovery.core.models import DiscoveryOptions, ResourceKind
from cloudmap_ecs_discovery.discovery.base import ResourceDescriptor, ResourceEnumerator, TagFetcher

REGION = "ap-southeast-1"
ACCOUNT = "123456789012"


def create_mock_lambda_context(function_name="cloudmap-ecs-discovery", request_id="test-request-123"):
    """
    Create a mock Lambda context with real attribute values.

    Plain MagicMock attributes would end up in JSON log lines and
    response bodies as unserializable objects.
    """
    context = MagicMock()
    context.function_name = function_name
    context.aws_request_id = request_id
    context.invoked_function_arn = f"arn:aws:lambda:{REGION}:{ACCOUNT}:function:{function_name}"
    return context


def make_options(**overrides) -> DiscoveryOptions:
    values = {"ecs_clusters": ("test-cluster",)}
    values.update(overrides)
    return DiscoveryOptions(**values)


def cluster_arn(cluster: str) -> str:
    return f"arn:aws:ecs:{REGION}:{ACCOUNT}:cluster/{cluster}"


def service_arn(cluster: str, service: str) -> str:
    return f"arn:aws:ecs:{REGION}:{ACCOUNT}:service/{cluster}/{service}"


def task_arn(cluster: str, task_id: str) -> str:
    return f"arn:aws:ecs:{REGION}:{ACCOUNT}:task/{cluster}/{task_id}"


def namespace_arn(namespace_id: str) -> str:
    return f"arn:aws:servicediscovery:{REGION}:{ACCOUNT}:namespace/{namespace_id}"


def cloudmap_service_arn(service_id: str) -> str:
    return f"arn:aws:servicediscovery:{REGION}:{ACCOUNT}:service/{service_id}"


def ecs_resources(
    cluster: str = "test-cluster",
    service: str = "web",
    task_id: str = "task-1",
    ip_address: Optional[str] = "10.0.1.15",
    service_tags: Optional[Dict[str, str]] = None,
    task_tags: Optional[Dict[str, str]] = None,
    cloudmap_service_ids: Sequence[str] = (),
) -> List[ResourceDescriptor]:
    """A cluster with one service running one task."""
    return [
        ResourceDescriptor(
            resource_id=cluster_arn(cluster),
            kind=ResourceKind.ECS_CLUSTER,
            name=cluster,
            tags={},
        ),
        ResourceDescriptor(
            resource_id=service_arn(cluster, service),
            kind=ResourceKind.ECS_SERVICE,
            name=service,
            tags=dict(service_tags or {}),
            parent_id=cluster_arn(cluster),
            metadata={"cluster_name": cluster, "cloudmap_service_ids": list(cloudmap_service_ids)},
        ),
        ResourceDescriptor(
            resource_id=task_arn(cluster, task_id),
            kind=ResourceKind.ECS_TASK,
            name=task_id,
            tags=dict(task_tags or {}),
            parent_id=service_arn(cluster, service),
            metadata={"cluster_name": cluster, "task_id": task_id, "ip_address": ip_address},
        ),
    ]


def cloudmap_resources(
    namespace_id: str = "ns-1",
    namespace: str = "internal.local",
    service_id: str = "srv-1",
    service: str = "web",
    instances: Mapping[str, str] = None,
    namespace_tags: Optional[Dict[str, str]] = None,
    service_tags: Optional[Dict[str, str]] = None,
) -> List[ResourceDescriptor]:
    """A namespace with one service and its registered instances (id -> IP)."""
    descriptors = [
        ResourceDescriptor(
            resource_id=namespace_arn(namespace_id),
            kind=ResourceKind.CLOUDMAP_NAMESPACE,
            name=namespace,
            tags=namespace_tags,
        ),
        ResourceDescriptor(
            resource_id=cloudmap_service_arn(service_id),
            kind=ResourceKind.CLOUDMAP_SERVICE,
            name=service,
            tags=service_tags,
            parent_id=namespace_arn(namespace_id),
        ),
    ]
    for instance_id, ip_address in (instances or {}).items():
        descriptors.append(ResourceDescriptor(
            resource_id=f"{cloudmap_service_arn(service_id)}/instance/{instance_id}",
            kind=ResourceKind.CLOUDMAP_INSTANCE,
            name=instance_id,
            tags={},
            parent_id=cloudmap_service_arn(service_id),
            metadata={"instance_id": instance_id, "ip_address": ip_address},
        ))
    return descriptors


class StaticLister(ResourceEnumerator):
    """
    Enumerator returning fixed descriptors per cluster / namespace name.

    Names missing from ``resources`` fail with EnumerationError. Every call
    is counted; ``gate`` (when given) blocks calls until it is set.
    """

    def __init__(self, resources: Mapping[str, List[ResourceDescriptor]], gate: threading.Event = None):
        self.resources = resources
        self.gate = gate
        self.calls: List[Sequence[str]] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def list_resources(self, names, selectors):
        with self._lock:
            self.calls.append(tuple(names))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        descriptors = []
        for name in names:
            if name not in self.resources:
                raise EnumerationError(f"not found: {name}", resource_id=name)
            # Fresh copies: a run must never mutate another run's descriptors
            descriptors.extend(
                ResourceDescriptor(
                    resource_id=d.resource_id,
                    kind=d.kind,
                    name=d.name,
                    tags=None if d.tags is None else dict(d.tags),
                    parent_id=d.parent_id,
                    metadata=dict(d.metadata),
                )
                for d in self.resources[name]
            )
        return descriptors


class StaticTagFetcher(TagFetcher):
    """Tag fetcher backed by a dict; unknown ids fail with TagFetchError."""

    def __init__(self, tags: Mapping[str, Dict[str, str]] = None):
        self.tags = dict(tags or {})
        self.requested: List[str] = []
        self._lock = threading.Lock()

    def fetch_tags(self, resource_id, kind):
        with self._lock:
            self.requested.append(resource_id)
        if resource_id not in self.tags:
            raise TagFetchError(f"no tags for {resource_id}", resource_id=resource_id)
        return dict(self.tags[resource_id])


def make_dependencies(ecs_lister=None, cloudmap_lister=None, tag_fetcher=None, executor=None):
    """PipelineDependencies with static fakes; the caller owns ``executor``."""
    from concurrent.futures import ThreadPoolExecutor

    from cloudmap_ecs_discovery.processors.base import PipelineDependencies

    return PipelineDependencies(
        ecs_lister=ecs_lister or StaticLister({}),
        cloudmap_lister=cloudmap_lister or StaticLister({}),
        tag_fetcher=tag_fetcher or StaticTagFetcher(),
        executor=executor or ThreadPoolExecutor(max_workers=4),
    )
