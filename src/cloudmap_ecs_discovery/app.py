"""
AWS Lambda handler serving Prometheus HTTP service discovery.

Deployed behind a Lambda function URL or an API Gateway proxy
integration. Prometheus points an ``http_sd_configs`` entry at
``/prometheus-targets``.
"""

import json
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .core.cache import ResultCache
from .core.config import get_options
from .core.exceptions import ConfigurationError, DiscoveryTimeoutError, DiscoveryUnavailableError
from .core.formatter import render_discovery_document
from .core.logger import setup_logger
from .core.models import ValidationFailure
from .core.pipeline import DiscoveryPipeline


logger = setup_logger(__name__)

DISCOVERY_PATHS = {"/prometheus-targets", "/discovery"}
HEALTH_PATH = "/health"
STALE_HEADER = "X-Discovery-Stale"

# Seconds a request waits for a refresh (override: DISCOVERY_REQUEST_TIMEOUT)
DEFAULT_REQUEST_TIMEOUT = 25.0

# Built once per Lambda execution environment and reused while warm
_cache: Optional[ResultCache] = None
_config_failures: Optional[List[ValidationFailure]] = None
_init_lock = threading.Lock()


def get_cache() -> ResultCache:
    """
    Return the process wide result cache, building it on first use.

    Configuration is validated exactly once; an invalid configuration is
    remembered and reported on every later call without re-validating.

    Raises:
        ConfigurationError: If the discovery options are invalid
    """
    global _cache, _config_failures

    with _init_lock:
        if _config_failures is not None:
            raise ConfigurationError(_config_failures)
        if _cache is None:
            try:
                options = get_options()
            except ConfigurationError as e:
                _config_failures = e.failures
                raise
            pipeline = DiscoveryPipeline(options, region=os.environ.get("AWS_REGION"))
            _cache = ResultCache(
                refresh=pipeline.run,
                ttl_seconds=options.cache_ttl_seconds,
                stale_grace_seconds=options.stale_grace_seconds,
            )
        return _cache


def reset() -> None:
    """Drop the cached service state (used between tests and on redeploy hooks)."""
    global _cache, _config_failures
    with _init_lock:
        if _cache is not None:
            _cache.close()
        _cache = None
        _config_failures = None


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler function.

    Args:
        event: Function URL / API Gateway proxy event
        context: Lambda context object

    Returns:
        Proxy response with statusCode, headers and a JSON body

    Example response for ``GET /prometheus-targets``:
        {
            "statusCode": 200,
            "headers": {"Content-Type": "application/json"},
            "body": "[{\"targets\": [\"10.0.1.15:9100\"], \"labels\": {...}}]"
        }
    """
    request_id = getattr(context, "aws_request_id", "local-test")
    method = _request_method(event)
    path = _request_path(event)

    logger.info(
        "Request received",
        extra={"method": method, "path": path, "request_id": request_id},
    )

    if path == HEALTH_PATH:
        return _response(200, json.dumps({"status": "ok"}))
    if path not in DISCOVERY_PATHS:
        return _error_response(404, f"Unknown path '{path}'", request_id)
    if method != "GET":
        return _error_response(405, f"Method {method} not allowed", request_id)

    params = event.get("queryStringParameters") or {}
    force_refresh = str(params.get("refresh", "")).lower() in ("true", "1", "yes")

    try:
        cache = get_cache()
    except ConfigurationError as e:
        return _error_response(
            500,
            "Invalid discovery configuration",
            request_id,
            failures=[{"message": f.message, "fields": list(f.fields)} for f in e.failures],
        )

    try:
        entry = cache.get(force_refresh=force_refresh, timeout=_request_timeout())
    except DiscoveryTimeoutError as e:
        return _error_response(504, str(e), request_id)
    except DiscoveryUnavailableError as e:
        return _error_response(503, f"Discovery unavailable: {e}", request_id)
    except Exception as e:
        logger.error(
            "Discovery request failed",
            extra={"error": str(e), "request_id": request_id},
            exc_info=True,
        )
        return _error_response(500, str(e), request_id)

    logger.info(
        "Discovery served",
        extra={
            "targets": len(entry.targets),
            "stale": entry.stale,
            "failures": entry.failure_count,
            "request_id": request_id,
        },
    )
    headers = {STALE_HEADER: "true"} if entry.stale else {}
    return _response(200, render_discovery_document(entry.targets), headers)


def _request_method(event: Dict[str, Any]) -> str:
    http = (event.get("requestContext") or {}).get("http") or {}
    return (http.get("method") or event.get("httpMethod") or "GET").upper()


def _request_path(event: Dict[str, Any]) -> str:
    path = event.get("rawPath") or event.get("path") or "/"
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def _request_timeout() -> float:
    try:
        return float(os.environ.get("DISCOVERY_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT))
    except ValueError:
        return DEFAULT_REQUEST_TIMEOUT


def _response(status_code: int, body: str, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json", **(headers or {})},
        "body": body,
    }


def _error_response(status_code: int, error: str, request_id: str, **details: Any) -> Dict[str, Any]:
    """
    Create standardized error response.

    Args:
        status_code: HTTP status code
        error: Error message
        request_id: Lambda request ID
        **details: Extra fields for the body

    Returns:
        Lambda proxy response dictionary
    """
    body = {
        "error": error,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        **details,
    }
    return _response(status_code, json.dumps(body))
