import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from ..discovery.base import ResourceEnumerator, TagFetcher
from ..processors.base import DiscoveryContext, DiscoveryStage, PipelineDependencies
from ..processors.factory import PIPELINE_STAGES, get_processor
from .exceptions import DiscoveryError
from .logger import setup_logger
from .models import DiscoveryOptions, ScrapeTarget


@dataclass(frozen=True)
class DiscoveryResult:
    """Outcome of one pipeline run."""
    targets: Tuple[ScrapeTarget, ...] = ()
    failure_count: int = 0
    warnings: Tuple[str, ...] = field(default_factory=tuple)
    duration_seconds: float = 0.0


class DiscoveryPipeline:
    """
    Runs the discovery stages in order over a fresh context.

    Every run owns its context and its worker pool; the pool bounds how
    many AWS calls are in flight at once.
    """

    def __init__(
        self,
        options: DiscoveryOptions,
        ecs_lister: Optional[ResourceEnumerator] = None,
        cloudmap_lister: Optional[ResourceEnumerator] = None,
        tag_fetcher: Optional[TagFetcher] = None,
        region: Optional[str] = None,
        stages: Sequence[DiscoveryStage] = PIPELINE_STAGES,
    ):
        self.options = options
        self.stages = tuple(stages)
        self.logger = setup_logger("pipeline")

        # Default to the boto3 collaborators
        if ecs_lister is None:
            from ..discovery.ecs import EcsResourceLister
            ecs_lister = EcsResourceLister(region=region)
        if cloudmap_lister is None:
            from ..discovery.cloudmap import CloudMapResourceLister
            cloudmap_lister = CloudMapResourceLister(region=region)
        if tag_fetcher is None:
            from ..discovery.tags import AwsTagFetcher
            tag_fetcher = AwsTagFetcher(region=region)

        self.ecs_lister = ecs_lister
        self.cloudmap_lister = cloudmap_lister
        self.tag_fetcher = tag_fetcher

    def run(self, cancel_event: Optional[threading.Event] = None) -> DiscoveryResult:
        """
        Execute one discovery run.

        Args:
            cancel_event: Set by the caller to stop issuing AWS calls

        Returns:
            DiscoveryResult with targets, failure count and parse warnings

        Raises:
            DiscoveryUnavailableError: If every cluster / namespace lookup failed
            DiscoveryCancelledError: If the run was cancelled
        """
        started = time.monotonic()
        run_logger = self.logger.bind(run_id=uuid.uuid4().hex[:12])
        context = DiscoveryContext(options=self.options, cancel_event=cancel_event or threading.Event())

        executor = ThreadPoolExecutor(
            max_workers=self.options.max_concurrency, thread_name_prefix="discovery"
        )
        try:
            dependencies = PipelineDependencies(
                ecs_lister=self.ecs_lister,
                cloudmap_lister=self.cloudmap_lister,
                tag_fetcher=self.tag_fetcher,
                executor=executor,
            )
            for stage in self.stages:
                processor = get_processor(stage, dependencies)
                if processor is None:
                    run_logger.warning("No processor registered for stage", extra={"stage": stage.value})
                    continue
                context.stage = stage
                run_logger.debug("Stage started", extra={"stage": stage.value})
                processor.process(context)
        except DiscoveryError as e:
            run_logger.error(
                "Discovery run failed",
                extra={"stage": context.stage.value, "error": str(e)},
            )
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            context.stage = DiscoveryStage.IDLE

        result = DiscoveryResult(
            targets=tuple(context.targets),
            failure_count=len(context.failures),
            warnings=tuple(context.warnings),
            duration_seconds=time.monotonic() - started,
        )
        run_logger.info(
            "Discovery run completed",
            extra={
                "targets": len(result.targets),
                "failures": result.failure_count,
                "warnings": len(result.warnings),
                "duration_seconds": round(result.duration_seconds, 3),
            },
        )
        return result
