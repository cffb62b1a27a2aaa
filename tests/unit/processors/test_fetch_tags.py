from cloudmap_ecs_discovery.core.models import ResourceKind
from cloudmap_ecs_discovery.processors.base import DiscoveryContext, DiscoveryStage
from cloudmap_ecs_discovery.processors.fetch_tags import FetchTagsProcessor
from tests.helpers import (
    StaticTagFetcher,
    cloudmap_resources,
    cloudmap_service_arn,
    ecs_resources,
    make_dependencies,
    make_options,
    namespace_arn,
)


def _context_with(descriptors):
    context = DiscoveryContext(options=make_options())
    context.stage = DiscoveryStage.TAG_FETCHING
    for descriptor in descriptors:
        context.add_descriptor(descriptor)
    return context


def test_fetches_only_unknown_tags():
    context = _context_with(ecs_resources() + cloudmap_resources(instances={"i-1": "10.0.2.1"}))
    fetcher = StaticTagFetcher({
        namespace_arn("ns-1"): {"region": "apse1"},
        cloudmap_service_arn("srv-1"): {"tier": "backend"},
    })

    FetchTagsProcessor(make_dependencies(tag_fetcher=fetcher)).process(context)

    assert sorted(fetcher.requested) == sorted([namespace_arn("ns-1"), cloudmap_service_arn("srv-1")])
    assert context.get(ResourceKind.CLOUDMAP_NAMESPACE, namespace_arn("ns-1")).tags == {"region": "apse1"}
    assert context.get(ResourceKind.CLOUDMAP_SERVICE, cloudmap_service_arn("srv-1")).tags == {"tier": "backend"}
    assert context.failures == []


def test_nothing_to_fetch():
    context = _context_with(ecs_resources())
    fetcher = StaticTagFetcher()

    FetchTagsProcessor(make_dependencies(tag_fetcher=fetcher)).process(context)

    assert fetcher.requested == []


def test_failed_fetch_leaves_tags_unknown():
    context = _context_with(cloudmap_resources())
    fetcher = StaticTagFetcher({namespace_arn("ns-1"): {}})

    FetchTagsProcessor(make_dependencies(tag_fetcher=fetcher)).process(context)

    failure, = context.failures
    assert failure.resource_id == cloudmap_service_arn("srv-1")
    assert failure.stage == DiscoveryStage.TAG_FETCHING
    assert context.get(ResourceKind.CLOUDMAP_SERVICE, cloudmap_service_arn("srv-1")).tags is None
    assert context.get(ResourceKind.CLOUDMAP_NAMESPACE, namespace_arn("ns-1")).tags == {}
