from typing import Dict, List, Optional

from ..core.models import ResourceKind
from ..core.tag_resolver import resolve_tags
from ..discovery.base import ResourceDescriptor
from .base import DiscoveryContext, DiscoveryProcessor, DiscoveryStage, ServiceInstance


class ResolveTagsProcessor(DiscoveryProcessor):
    """
    Correlates tasks with their ECS service, Cloud Map service and namespace,
    then merges the tags of each resulting instance.

    A Cloud Map instance whose id is the id of a discovered task (ECS
    registers tasks that way) is folded into that task; any other Cloud Map
    instance becomes an instance of its own.
    """

    stage = DiscoveryStage.RESOLVING

    def process(self, context: DiscoveryContext) -> None:
        for instance in self.build_instances(context):
            sources = [context.find(rid) for rid in instance.source_ids()]
            unknown = [d.resource_id for d in sources if d is not None and d.tags is None]
            if unknown:
                self.logger.debug(
                    "Instance skipped, source tags unknown",
                    extra={"instance_id": instance.instance_id, "sources": unknown},
                )
                continue
            if not instance.address:
                context.record_failure(instance.instance_id, "Instance has no private IPv4 address")
                continue

            context.instances[instance.instance_id] = instance
            context.resolved[instance.instance_id] = resolve_tags(
                context.options,
                task_tags=_tags(context.get(ResourceKind.ECS_TASK, instance.task_id)),
                service_tags=_tags(context.get(ResourceKind.ECS_SERVICE, instance.service_id)),
                cloudmap_service_tags=_tags(context.get(ResourceKind.CLOUDMAP_SERVICE, instance.cloudmap_service_id)),
                namespace_tags=_tags(context.get(ResourceKind.CLOUDMAP_NAMESPACE, instance.namespace_id)),
            )

        self.logger.info("Tags resolved", extra={"instances": len(context.resolved)})

    @staticmethod
    def build_instances(context: DiscoveryContext) -> List[ServiceInstance]:
        instances: List[ServiceInstance] = []
        by_task_id: Dict[str, ServiceInstance] = {}

        for task in context.of_kind(ResourceKind.ECS_TASK):
            service = context.get(ResourceKind.ECS_SERVICE, task.parent_id)
            cloudmap_service = _first_cloudmap_service(context, service)
            instance = ServiceInstance(
                instance_id=task.resource_id,
                address=task.metadata.get("ip_address"),
                task_id=task.resource_id,
                service_id=service.resource_id if service else None,
                cloudmap_service_id=cloudmap_service.resource_id if cloudmap_service else None,
                namespace_id=cloudmap_service.parent_id if cloudmap_service else None,
            )
            instances.append(instance)
            by_task_id[task.metadata.get("task_id", task.name)] = instance

        for registered in context.of_kind(ResourceKind.CLOUDMAP_INSTANCE):
            cloudmap_service = context.get(ResourceKind.CLOUDMAP_SERVICE, registered.parent_id)
            namespace_id = cloudmap_service.parent_id if cloudmap_service else None

            task_instance = by_task_id.get(registered.metadata.get("instance_id", registered.name))
            if task_instance is not None:
                if task_instance.cloudmap_service_id is None:
                    task_instance.cloudmap_service_id = registered.parent_id
                    task_instance.namespace_id = namespace_id
                continue

            instances.append(ServiceInstance(
                instance_id=registered.resource_id,
                address=registered.metadata.get("ip_address"),
                cloudmap_service_id=registered.parent_id,
                namespace_id=namespace_id,
            ))

        # Only descriptors actually discovered count as sources
        for instance in instances:
            if instance.namespace_id and context.get(ResourceKind.CLOUDMAP_NAMESPACE, instance.namespace_id) is None:
                instance.namespace_id = None
        return instances


def _first_cloudmap_service(
    context: DiscoveryContext,
    service: Optional[ResourceDescriptor],
) -> Optional[ResourceDescriptor]:
    if service is None:
        return None
    for arn in service.metadata.get("cloudmap_service_ids", []):
        descriptor = context.get(ResourceKind.CLOUDMAP_SERVICE, arn)
        if descriptor is not None:
            return descriptor
    return None


def _tags(descriptor: Optional[ResourceDescriptor]) -> Optional[Dict[str, str]]:
    return descriptor.tags if descriptor is not None else None
