"""Tests for tag priority resolution."""
from cloudmap_ecs_discovery.core.tag_resolver import resolve_tags, sanitize_label_name
from tests.helpers import make_options


ALL_SOURCES = dict(
    include_ecs_task_tags=True,
    include_ecs_service_tags=True,
    include_cloudmap_service_tags=True,
    include_cloudmap_namespace_tags=True,
)


def test_priority_task_over_service_over_cloudmap():
    options = make_options(**ALL_SOURCES)

    resolved = resolve_tags(
        options,
        task_tags={"env": "task"},
        service_tags={"env": "service", "team": "payments"},
        cloudmap_service_tags={"env": "cm-service", "tier": "backend", "team": "cm"},
        namespace_tags={"env": "namespace", "region": "apse1", "tier": "ns"},
    )

    assert resolved.labels == {
        "env": "task",
        "team": "payments",
        "tier": "backend",
        "region": "apse1",
    }


def test_disabled_source_contributes_no_labels():
    options = make_options(include_ecs_task_tags=True)

    resolved = resolve_tags(
        options,
        task_tags={"component": "api"},
        service_tags={"team": "payments"},
    )

    assert resolved.labels == {"component": "api"}


def test_metrics_tags_collected_even_when_source_disabled():
    options = make_options()

    resolved = resolve_tags(
        options,
        service_tags={"METRICS_PORT": "9100", "team": "payments"},
    )

    assert resolved.labels == {}
    assert resolved.metrics_tags == {"METRICS_PORT": "9100"}


def test_metrics_tags_follow_priority():
    options = make_options()

    resolved = resolve_tags(
        options,
        task_tags={"METRICS_PORT": "9200"},
        namespace_tags={"METRICS_PORT": "9100", "METRICS_PATH": "/prom"},
    )

    assert resolved.metrics_tags == {"METRICS_PORT": "9200", "METRICS_PATH": "/prom"}


def test_metrics_tags_are_not_labels():
    options = make_options(include_ecs_task_tags=True)

    resolved = resolve_tags(options, task_tags={"METRICS_PORT": "9100", "app": "web"})

    assert "METRICS_PORT" not in resolved.labels
    assert resolved.labels == {"app": "web"}


def test_extra_labels_override_everything():
    options = make_options(include_ecs_task_tags=True, extra_labels={"env": "prod", "source": "ecs"})

    resolved = resolve_tags(options, task_tags={"env": "dev"})

    assert resolved.labels == {"env": "prod", "source": "ecs"}


def test_missing_sources_are_empty():
    resolved = resolve_tags(make_options(**ALL_SOURCES))

    assert resolved.labels == {}
    assert resolved.metrics_tags == {}


def test_label_names_sanitized():
    options = make_options(include_ecs_task_tags=True)

    resolved = resolve_tags(options, task_tags={"aws:cloudformation:stack-name": "web", "1st": "a"})

    assert resolved.labels == {"aws_cloudformation_stack_name": "web", "_1st": "a"}


def test_sanitize_label_name():
    assert sanitize_label_name("service_discovery") == "service_discovery"
    assert sanitize_label_name("team.name") == "team_name"
    assert sanitize_label_name("") == "_"


def test_resolution_is_deterministic():
    options = make_options(**ALL_SOURCES)
    kwargs = dict(
        task_tags={"a-b": "task", "a_b": "task2"},
        service_tags={"x": "1"},
        namespace_tags={"x": "2"},
    )

    first = resolve_tags(options, **kwargs)
    second = resolve_tags(options, **kwargs)

    assert first == second
    assert first.labels["a_b"] == "task2"


def test_priority_applies_to_raw_keys_before_sanitizing():
    options = make_options(**ALL_SOURCES)

    resolved = resolve_tags(
        options,
        task_tags={"team-name": "platform"},
        namespace_tags={"team_name": "shared", "team-name": "ns"},
    )

    # team-name resolves to the task value, then loses the label slot to the valid name
    assert resolved.labels == {"team_name": "shared"}


def test_sanitized_key_kept_when_no_valid_name_collides():
    options = make_options(**ALL_SOURCES)

    resolved = resolve_tags(options, task_tags={"team-name": "platform"}, namespace_tags={"team-name": "ns"})

    assert resolved.labels == {"team_name": "platform"}
