from functools import partial
from typing import Callable, List, Tuple

from ..core.exceptions import DiscoveryError, DiscoveryUnavailableError
from ..core.models import ResourceKind
from .base import DiscoveryContext, DiscoveryProcessor, DiscoveryStage, run_concurrently


class EnumerateResourcesProcessor(DiscoveryProcessor):
    """
    Lists ECS clusters and Cloud Map namespaces, one call per configured name.

    A failing cluster or namespace is recorded and skipped. When every
    call fails there is nothing to serve and the run is aborted.
    """

    stage = DiscoveryStage.ENUMERATING

    def process(self, context: DiscoveryContext) -> None:
        options = context.options
        ecs_selectors = {
            ResourceKind.ECS_CLUSTER.value: options.ecs_cluster_selector,
            ResourceKind.ECS_SERVICE.value: options.ecs_service_selector,
        }
        cloudmap_selectors = {
            ResourceKind.CLOUDMAP_NAMESPACE.value: options.cloudmap_namespace_selector,
            ResourceKind.CLOUDMAP_SERVICE.value: options.cloudmap_service_selector,
        }

        calls: List[Tuple[str, Callable]] = []
        for name in options.ecs_clusters:
            calls.append((f"ecs:{name}", partial(self.dependencies.ecs_lister.list_resources, [name], ecs_selectors)))
        for name in options.cloudmap_namespaces:
            calls.append((
                f"cloudmap:{name}",
                partial(self.dependencies.cloudmap_lister.list_resources, [name], cloudmap_selectors),
            ))

        outcomes = run_concurrently(self.dependencies.executor, calls, context.cancel_event)

        failed = 0
        for outcome in outcomes:
            if outcome.error is not None:
                failed += 1
                context.record_failure(
                    resource_id=getattr(outcome.error, "resource_id", None) or outcome.key,
                    message=str(outcome.error),
                    retryable=getattr(outcome.error, "retryable", False),
                )
                if not isinstance(outcome.error, DiscoveryError):
                    self.logger.error(
                        "Unexpected enumeration error",
                        extra={"source": outcome.key, "error": repr(outcome.error)},
                    )
                continue

            for descriptor in outcome.value:
                error = descriptor.metadata.pop("error", None)
                if error:
                    context.record_failure(descriptor.resource_id, error)
                context.add_descriptor(descriptor)

        if outcomes and failed == len(outcomes):
            raise DiscoveryUnavailableError(
                f"All {failed} ECS cluster / Cloud Map namespace lookups failed"
            )

        self.logger.info(
            "Enumeration finished",
            extra={
                "sources": len(calls),
                "failed_sources": failed,
                "tasks": len(context.descriptors[ResourceKind.ECS_TASK]),
                "cloudmap_instances": len(context.descriptors[ResourceKind.CLOUDMAP_INSTANCE]),
            },
        )
