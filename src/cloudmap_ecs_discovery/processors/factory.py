from typing import Dict, Optional, Tuple, Type

from .assemble import AssembleTargetsProcessor
from .base import DiscoveryProcessor, DiscoveryStage, PipelineDependencies
from .enumerate import EnumerateResourcesProcessor
from .fetch_tags import FetchTagsProcessor
from .resolve import ResolveTagsProcessor


# Processor registry mapping pipeline stages to processor classes
PROCESSOR_REGISTRY: Dict[DiscoveryStage, Type[DiscoveryProcessor]] = {
    DiscoveryStage.ENUMERATING: EnumerateResourcesProcessor,
    DiscoveryStage.TAG_FETCHING: FetchTagsProcessor,
    DiscoveryStage.RESOLVING: ResolveTagsProcessor,
    DiscoveryStage.ASSEMBLING: AssembleTargetsProcessor,
}

# Order in which a discovery run executes its stages
PIPELINE_STAGES: Tuple[DiscoveryStage, ...] = (
    DiscoveryStage.ENUMERATING,
    DiscoveryStage.TAG_FETCHING,
    DiscoveryStage.RESOLVING,
    DiscoveryStage.ASSEMBLING,
)


def get_processor(
    stage: DiscoveryStage,
    dependencies: PipelineDependencies,
) -> Optional[DiscoveryProcessor]:
    """
    Instantiate the processor registered for a stage.

    Args:
        stage: Pipeline stage
        dependencies: Collaborators shared by all processors of a run

    Returns:
        DiscoveryProcessor instance, or None if no processor is registered

    Example:
        >>> processor = get_processor(DiscoveryStage.RESOLVING, dependencies)
        >>> processor.process(context)
    """
    processor_class = PROCESSOR_REGISTRY.get(stage)

    if processor_class:
        return processor_class(dependencies)

    return None


def register_processor(stage: DiscoveryStage, processor_class: Type[DiscoveryProcessor]) -> None:
    """Register (or replace) the processor class of a stage."""
    PROCESSOR_REGISTRY[stage] = processor_class


def get_registered_processors() -> Dict[DiscoveryStage, Type[DiscoveryProcessor]]:
    """Copy of the current processor registry."""
    return PROCESSOR_REGISTRY.copy()
