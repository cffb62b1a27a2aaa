"""
Shared state and the processor interface of the discovery pipeline.

A processor is one stage of a discovery run. It reads and updates the
DiscoveryContext handed to it and never calls another processor; the
order of stages belongs to the pipeline.
"""
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.exceptions import DiscoveryCancelledError
from ..core.logger import setup_logger
from ..core.models import DiscoveryOptions, ResourceKind, ScrapeTarget
from ..core.tag_resolver import ResolvedTagSet
from ..discovery.base import ResourceDescriptor, ResourceEnumerator, TagFetcher

logger = setup_logger(__name__)

# How often a fan-out join checks for cancellation
CANCEL_POLL_SECONDS = 0.1


class DiscoveryStage(str, Enum):
    IDLE = "Idle"
    ENUMERATING = "Enumerating"
    TAG_FETCHING = "TagFetching"
    RESOLVING = "Resolving"
    ASSEMBLING = "Assembling"
    CACHED = "Cached"


@dataclass
class DiscoveryFailure:
    """A resource that could not be processed in this run."""
    stage: DiscoveryStage
    resource_id: str
    message: str
    retryable: bool = False


@dataclass
class ServiceInstance:
    """
    One scrapeable instance and the descriptors its tags come from.

    Either a running ECS task (possibly registered in Cloud Map) or a
    Cloud Map instance with no discovered task behind it.
    """
    instance_id: str
    address: Optional[str]
    task_id: Optional[str] = None
    service_id: Optional[str] = None
    cloudmap_service_id: Optional[str] = None
    namespace_id: Optional[str] = None

    def source_ids(self) -> List[str]:
        return [rid for rid in (self.task_id, self.service_id, self.cloudmap_service_id, self.namespace_id) if rid]


@dataclass
class DiscoveryContext:
    """
    State of one discovery run.

    Created per run and owned by it. Fan-out workers never touch the
    context; their results are applied on the orchestrating thread.
    """
    options: DiscoveryOptions
    cancel_event: threading.Event = field(default_factory=threading.Event)
    stage: DiscoveryStage = DiscoveryStage.IDLE
    descriptors: Dict[ResourceKind, Dict[str, ResourceDescriptor]] = field(
        default_factory=lambda: {kind: {} for kind in ResourceKind}
    )
    instances: Dict[str, ServiceInstance] = field(default_factory=dict)
    resolved: Dict[str, ResolvedTagSet] = field(default_factory=dict)
    targets: List[ScrapeTarget] = field(default_factory=list)
    failures: List[DiscoveryFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_descriptor(self, descriptor: ResourceDescriptor) -> ResourceDescriptor:
        """
        Store a descriptor, merging with one already known under the same id.

        Known tags are never replaced by unknown ones, and a missing parent
        is filled in; this lets an ECS service's link to a Cloud Map service
        and the Cloud Map listing of that service meet in one descriptor.
        """
        known = self.descriptors[descriptor.kind].get(descriptor.resource_id)
        if known is None:
            self.descriptors[descriptor.kind][descriptor.resource_id] = descriptor
            return descriptor

        if descriptor.tags is not None:
            known.tags = descriptor.tags
        if known.parent_id is None:
            known.parent_id = descriptor.parent_id
        for key, value in descriptor.metadata.items():
            known.metadata.setdefault(key, value)
        return known

    def get(self, kind: ResourceKind, resource_id: Optional[str]) -> Optional[ResourceDescriptor]:
        if resource_id is None:
            return None
        return self.descriptors[kind].get(resource_id)

    def of_kind(self, kind: ResourceKind) -> List[ResourceDescriptor]:
        """Descriptors of one kind, ordered by resource id."""
        return [self.descriptors[kind][rid] for rid in sorted(self.descriptors[kind])]

    def all_descriptors(self) -> List[ResourceDescriptor]:
        return [d for kind in ResourceKind for d in self.of_kind(kind)]

    def find(self, resource_id: str) -> Optional[ResourceDescriptor]:
        for kind in ResourceKind:
            descriptor = self.descriptors[kind].get(resource_id)
            if descriptor is not None:
                return descriptor
        return None

    def record_failure(self, resource_id: str, message: str, retryable: bool = False) -> None:
        self.failures.append(DiscoveryFailure(
            stage=self.stage, resource_id=resource_id, message=message, retryable=retryable
        ))
        logger.warning(
            "Resource failed during discovery",
            extra={"stage": self.stage.value, "resource_id": resource_id, "error": message},
        )

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass
class PipelineDependencies:
    """Collaborators handed to every processor."""
    ecs_lister: ResourceEnumerator
    cloudmap_lister: ResourceEnumerator
    tag_fetcher: TagFetcher
    executor: Executor


@dataclass
class CallOutcome:
    key: str
    value: Any = None
    error: Optional[Exception] = None


def run_concurrently(
    executor: Executor,
    calls: Sequence[Tuple[str, Callable[[], Any]]],
    cancel_event: threading.Event,
) -> List[CallOutcome]:
    """
    Fan out independent network calls and join them.

    Outcomes are returned ordered by key, whatever the completion order.
    A failing call yields an outcome carrying its exception.

    Raises:
        DiscoveryCancelledError: If ``cancel_event`` is set before all calls finish
        ValueError: If two calls share a key
    """
    def guarded(call: Callable[[], Any]) -> Callable[[], Any]:
        def run() -> Any:
            if cancel_event.is_set():
                raise DiscoveryCancelledError("Discovery run cancelled")
            return call()
        return run

    keys = [key for key, _ in calls]
    if len(set(keys)) != len(keys):
        raise ValueError(f"Duplicate call keys: {sorted(k for k in set(keys) if keys.count(k) > 1)}")

    futures: Dict[str, Future] = {}
    for key, call in calls:
        if cancel_event.is_set():
            break
        futures[key] = executor.submit(guarded(call))

    pending = set(futures.values())
    while pending:
        if cancel_event.is_set():
            for future in pending:
                future.cancel()
            raise DiscoveryCancelledError("Discovery run cancelled")
        _, pending = wait(pending, timeout=CANCEL_POLL_SECONDS)

    if cancel_event.is_set():
        raise DiscoveryCancelledError("Discovery run cancelled")

    outcomes = []
    for key in sorted(futures):
        try:
            outcomes.append(CallOutcome(key=key, value=futures[key].result()))
        except DiscoveryCancelledError:
            raise
        except Exception as e:
            outcomes.append(CallOutcome(key=key, error=e))
    return outcomes


class DiscoveryProcessor(ABC):
    """
    One stage of the discovery pipeline.

    Subclasses set ``stage`` and implement ``process``.
    """

    stage: DiscoveryStage = DiscoveryStage.IDLE

    def __init__(self, dependencies: PipelineDependencies):
        self.dependencies = dependencies
        self.logger = setup_logger(f"processor.{self.stage.value}").bind(stage=self.stage.value)

    @abstractmethod
    def process(self, context: DiscoveryContext) -> None:
        """
        Apply this stage to the shared context.

        Per-resource problems are recorded with ``context.record_failure``;
        raising aborts the whole run.
        """
        raise NotImplementedError
