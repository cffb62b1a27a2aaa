"""Prometheus HTTP service discovery for AWS ECS and Cloud Map."""

__version__ = "0.1.0"
