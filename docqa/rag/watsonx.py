"""Shared plumbing for IBM watsonx.ai clients."""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
import logging
from typing import Callable, TypeVar

import requests
from ibm_watsonx_ai import Credentials
from ibm_watsonx_ai.wml_client_error import ApiRequestFailure, WMLClientError

from docqa.config import Settings
from docqa.errors import GenerationError, ServiceConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Calls that outlive their timeout keep running here; callers stop waiting.
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="watsonx")


def build_credentials(settings: Settings) -> Credentials:
    return Credentials(
        api_key=settings.ibm_cloud_api_key,
        url=f"https://{settings.watsonx_region}.ml.cloud.ibm.com",
    )


def call_with_timeout(fn: Callable[[], T], timeout: float) -> T:
    """Run a watsonx.ai SDK call, mapping failures onto the error taxonomy."""
    future = _executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as e:
        raise ServiceConnectionError(
            f"watsonx.ai did not respond within {timeout:.0f}s"
        ) from e
    except (requests.ConnectionError, requests.Timeout) as e:
        raise ServiceConnectionError(f"Failed to connect to watsonx.ai: {e}") from e
    except ApiRequestFailure as e:
        raise GenerationError(f"watsonx.ai API error: {e}") from e
    except WMLClientError as e:
        raise GenerationError(f"watsonx.ai client error: {e}") from e
