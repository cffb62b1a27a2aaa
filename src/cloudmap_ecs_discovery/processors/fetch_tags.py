from functools import partial

from .base import DiscoveryContext, DiscoveryProcessor, DiscoveryStage, run_concurrently


class FetchTagsProcessor(DiscoveryProcessor):
    """Reads tags for every descriptor whose tags the listing did not return."""

    stage = DiscoveryStage.TAG_FETCHING

    def process(self, context: DiscoveryContext) -> None:
        pending = [d for d in context.all_descriptors() if d.tags is None]
        if not pending:
            return

        fetcher = self.dependencies.tag_fetcher
        calls = [(d.resource_id, partial(fetcher.fetch_tags, d.resource_id, d.kind)) for d in pending]
        outcomes = run_concurrently(self.dependencies.executor, calls, context.cancel_event)

        for outcome in outcomes:
            descriptor = context.find(outcome.key)
            if outcome.error is not None:
                # Tags stay unknown; instances depending on them are excluded
                context.record_failure(
                    resource_id=outcome.key,
                    message=str(outcome.error),
                    retryable=getattr(outcome.error, "retryable", False),
                )
                continue
            descriptor.tags = dict(outcome.value)

        self.logger.debug("Tags fetched", extra={"requested": len(pending)})
