"""
Global pytest configuration for all tests.

Provides shared fixtures to prevent test isolation issues.
"""

import os

import pytest

from cloudmap_ecs_discovery import app
from cloudmap_ecs_discovery.processors.factory import PROCESSOR_REGISTRY


@pytest.fixture(scope="function", autouse=True)
def aws_credentials():
    """
    Set fake AWS credentials and region for all tests.

    boto3 clients created by the code under test never find real
    credentials, and moto sees a consistent region.
    """
    saved = {key: os.environ.get(key) for key in (
        "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SECURITY_TOKEN",
        "AWS_SESSION_TOKEN", "AWS_DEFAULT_REGION", "DISCOVERY_CONFIG_PARAM",
    )}
    os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
    os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
    os.environ['AWS_SECURITY_TOKEN'] = 'testing'
    os.environ['AWS_SESSION_TOKEN'] = 'testing'
    os.environ['AWS_DEFAULT_REGION'] = 'ap-southeast-1'
    os.environ.pop('DISCOVERY_CONFIG_PARAM', None)
    yield
    for key, value in saved.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@pytest.fixture(autouse=True)
def isolated_app_state():
    """Each test starts without a cached discovery service or registry changes."""
    registry = dict(PROCESSOR_REGISTRY)
    app.reset()
    yield
    app.reset()
    PROCESSOR_REGISTRY.clear()
    PROCESSOR_REGISTRY.update(registry)
