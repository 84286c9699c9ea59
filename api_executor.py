# api_executor.py
import httpx
import json
import logging
import os
import time
from typing import Any, Optional, Protocol

from models import HttpOutcome, ResolvedRequest

logger = logging.getLogger(__name__)

API_TIMEOUT = float(os.getenv("API_TIMEOUT", "30"))
MAX_RESPONSE_BYTES = int(os.getenv("MAX_RESPONSE_BYTES", str(1024 * 1024)))


class HttpExecutor(Protocol):
    """The HTTP execution primitive the step runner depends on."""

    async def execute(self, request: ResolvedRequest) -> HttpOutcome:
        ...


class ResponseTooLargeError(Exception):
    pass


def parse_response_body(text: str) -> Any:
    """Parsed JSON when the body is JSON, otherwise the raw text."""
    if not text:
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class APIExecutor:
    """
    Performs resolved requests with a shared httpx.AsyncClient.

    Never raises for HTTP or transport problems: every outcome, including
    timeouts and oversized bodies, comes back as an HttpOutcome.
    """
    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = API_TIMEOUT, max_response_bytes: int = MAX_RESPONSE_BYTES):
        """
        Args:
            client (Optional[httpx.AsyncClient]): Client to reuse. One is created when omitted.
            timeout (float): Timeout for each request in seconds.
            max_response_bytes (int): Bodies larger than this are rejected.
        """
        self.timeout = timeout
        self.max_response_bytes = max_response_bytes
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.timeout)
        logger.info(f"APIExecutor initialized. Timeout: {timeout}s, Max response size: {max_response_bytes} bytes")

    async def close(self):
        """Closes the underlying HTTP client if this executor created it. Called on application shutdown."""
        if self._owns_client:
            await self._client.aclose()
            logger.info("APIExecutor's HTTP client closed.")

    async def _read_bounded(self, response: httpx.Response) -> str:
        chunks = []
        size = 0
        async for chunk in response.aiter_bytes():
            size += len(chunk)
            if size > self.max_response_bytes:
                raise ResponseTooLargeError(f"Response exceeded {self.max_response_bytes} bytes")
            chunks.append(chunk)
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    async def execute(self, request: ResolvedRequest) -> HttpOutcome:
        start_time = time.perf_counter()
        method = request.method.upper()

        log_body_preview = str(request.body)[:200] + "..." if request.body and len(str(request.body)) > 200 else request.body
        logger.info(f"Executing API call: {method} {request.url}")
        logger.debug(f"Headers: {list(request.headers.keys())}, Body preview: {log_body_preview}")

        request_kwargs = {"method": method, "url": request.url, "headers": request.headers, "timeout": self.timeout}
        if request.body is not None and method in ["POST", "PUT", "PATCH", "DELETE"]:
            request_kwargs["json"] = request.body

        outcome: HttpOutcome
        try:
            async with self._client.stream(**request_kwargs) as http_response:
                text = await self._read_bounded(http_response)
                status_code = http_response.status_code
            body = parse_response_body(text)
            if 200 <= status_code < 300:
                outcome = HttpOutcome(success=True, http_code=status_code, response=body)
            else:
                logger.warning(f"Received non-2xx status: {status_code}. Response: {str(body)[:200]}...")
                outcome = HttpOutcome(success=False, http_code=status_code, response=body, error=f"HTTP {status_code}: Request failed")
        except ResponseTooLargeError as e_size:
            logger.error(f"Response from {request.url} too large: {e_size}")
            outcome = HttpOutcome(success=False, error=str(e_size))
        except httpx.TimeoutException as e_timeout:
            logger.error(f"Timeout during API call to {request.url}: {e_timeout}")
            outcome = HttpOutcome(success=False, error=f"Timeout after {self.timeout}s: {e_timeout}")
        except httpx.RequestError as e_request:
            logger.error(f"Request error during API call to {request.url}: {e_request}")
            outcome = HttpOutcome(success=False, error=f"Request Error: {e_request}")
        finally:
            elapsed = time.perf_counter() - start_time
            logger.info(f"Finished API call {method} {request.url} in {elapsed:.4f}s")

        return outcome
