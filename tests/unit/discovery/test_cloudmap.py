"""Unit tests for discovery/cloudmap.py"""

import pytest
from botocore.exceptions import ClientError
from unittest.mock import MagicMock

from cloudmap_ecs_discovery.core.exceptions import EnumerationError
from cloudmap_ecs_discovery.core.models import ResourceKind
from cloudmap_ecs_discovery.discovery.cloudmap import CloudMapResourceLister
from tests.helpers import cloudmap_service_arn, namespace_arn


def _namespace(name, namespace_id):
    return {"Id": namespace_id, "Arn": namespace_arn(namespace_id), "Name": name, "Type": "DNS_PRIVATE"}


def _cm_service(name, service_id):
    return {"Id": service_id, "Arn": cloudmap_service_arn(service_id), "Name": name}


@pytest.fixture
def sd_client():
    client = MagicMock()
    pages = {
        "list_namespaces": [{"Namespaces": [_namespace("internal.local", "ns-1"), _namespace("other", "ns-2")]}],
        "list_services": [{"Services": [_cm_service("web", "srv-1")]}],
        "list_instances": [{"Instances": [
            {"Id": "i-1", "Attributes": {"AWS_INSTANCE_IPV4": "10.0.2.10", "AWS_INSTANCE_PORT": "8080"}},
            {"Id": "i-2", "Attributes": {}},
        ]}],
    }
    client.pages = pages
    client.paginators = {}

    def get_paginator(op):
        paginator = MagicMock()
        paginator.paginate.return_value = pages[op]
        client.paginators[op] = paginator
        return paginator

    client.get_paginator.side_effect = get_paginator
    client.list_tags_for_resource.return_value = {"Tags": []}
    return client


def _by_kind(descriptors, kind):
    return [d for d in descriptors if d.kind == kind]


def test_namespace_services_and_instances(sd_client):
    descriptors = CloudMapResourceLister(client=sd_client).list_resources(["internal.local"], {})

    namespace, = _by_kind(descriptors, ResourceKind.CLOUDMAP_NAMESPACE)
    assert namespace.resource_id == namespace_arn("ns-1")
    assert namespace.tags is None
    assert namespace.metadata == {"namespace_id": "ns-1", "type": "DNS_PRIVATE"}

    service, = _by_kind(descriptors, ResourceKind.CLOUDMAP_SERVICE)
    assert service.parent_id == namespace.resource_id
    assert service.tags is None

    instances = _by_kind(descriptors, ResourceKind.CLOUDMAP_INSTANCE)
    assert [i.name for i in instances] == ["i-1", "i-2"]
    assert instances[0].resource_id == f"{cloudmap_service_arn('srv-1')}/instance/i-1"
    assert instances[0].tags == {}
    assert instances[0].metadata["ip_address"] == "10.0.2.10"
    assert instances[0].metadata["port"] == "8080"
    assert instances[1].metadata["ip_address"] is None

    # No selector: tags are left for the tag fetching stage
    sd_client.list_tags_for_resource.assert_not_called()
    sd_client.paginators["list_services"].paginate.assert_called_once_with(
        Filters=[{"Name": "NAMESPACE_ID", "Values": ["ns-1"], "Condition": "EQ"}]
    )


def test_service_selector_reads_tags(sd_client):
    sd_client.list_tags_for_resource.return_value = {"Tags": [{"Key": "scrape", "Value": "no"}]}
    selectors = {ResourceKind.CLOUDMAP_SERVICE.value: {"scrape": "yes"}}

    descriptors = CloudMapResourceLister(client=sd_client).list_resources(["internal.local"], selectors)

    assert [d.kind for d in descriptors] == [ResourceKind.CLOUDMAP_NAMESPACE]
    sd_client.list_tags_for_resource.assert_called_once_with(ResourceARN=cloudmap_service_arn("srv-1"))


def test_namespace_selector_match_keeps_tags(sd_client):
    sd_client.list_tags_for_resource.return_value = {"Tags": [{"Key": "env", "Value": "prod"}]}
    selectors = {ResourceKind.CLOUDMAP_NAMESPACE.value: {"env": "prod"}}

    descriptors = CloudMapResourceLister(client=sd_client).list_resources(["internal.local"], selectors)

    namespace, = _by_kind(descriptors, ResourceKind.CLOUDMAP_NAMESPACE)
    assert namespace.tags == {"env": "prod"}


def test_unknown_namespaces_raise(sd_client):
    with pytest.raises(EnumerationError, match="not found"):
        CloudMapResourceLister(client=sd_client).list_resources(["ghost.local"], {})


def test_some_namespaces_missing_still_lists_found_ones(sd_client):
    descriptors = CloudMapResourceLister(client=sd_client).list_resources(["ghost.local", "internal.local"], {})

    assert _by_kind(descriptors, ResourceKind.CLOUDMAP_NAMESPACE)[0].name == "internal.local"


def test_list_namespaces_error(sd_client):
    sd_client.get_paginator.side_effect = ClientError(
        {"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "ListNamespaces"
    )

    with pytest.raises(EnumerationError) as exc_info:
        CloudMapResourceLister(client=sd_client).list_resources(["internal.local"], {})

    assert exc_info.value.retryable is True


def test_instance_listing_failure_is_kept_on_service(sd_client):
    def get_paginator(op):
        paginator = MagicMock()
        if op == "list_instances":
            paginator.paginate.side_effect = ClientError(
                {"Error": {"Code": "ServiceNotFound", "Message": "gone"}}, "ListInstances"
            )
        else:
            paginator.paginate.return_value = sd_client.pages[op]
        return paginator

    sd_client.get_paginator.side_effect = get_paginator

    descriptors = CloudMapResourceLister(client=sd_client).list_resources(["internal.local"], {})

    service, = _by_kind(descriptors, ResourceKind.CLOUDMAP_SERVICE)
    assert "Failed to list instances" in service.metadata["error"]
    assert _by_kind(descriptors, ResourceKind.CLOUDMAP_INSTANCE) == []
