"""
JSON over HTTP for the HTTP based query backends.
"""
from typing import Any, Dict, Optional, Tuple

import httpx

from caracol.core.exceptions import BackendError
from caracol.core.logging import get_logger, fields

logger = get_logger(__name__)


class JSONClient:
    """
    Posts JSON documents and decodes JSON answers.

    A shared ``httpx.AsyncClient`` may be supplied; otherwise a short lived
    client is opened for each request. Transport failures, non 2xx answers and
    undecodable bodies are all reported as BackendError so a failed request
    only ever leaves a gap behind.
    """

    DEFAULT_TIMEOUT = 30.0  # seconds

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = DEFAULT_TIMEOUT):
        self.client = client
        self.timeout = timeout

    def _bearer_headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def post(
        self,
        url: str,
        body: Dict[str, Any],
        bearer_token: Optional[str] = None,
        basic_auth: Optional[Tuple[str, str]] = None,
    ) -> Any:
        """
        POST body as JSON to url.

        Args:
            url: Endpoint URL
            body: Request document
            bearer_token: Sent as an ``Authorization: Bearer`` header
            basic_auth: Username and password for HTTP basic auth

        Returns:
            Decoded JSON answer
        """
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if bearer_token:
            headers.update(self._bearer_headers(bearer_token))

        try:
            if self.client is not None:
                response = await self.client.post(url, headers=headers, json=body, auth=basic_auth)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, headers=headers, json=body, auth=basic_auth)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Backend answered {e.response.status_code}",
                extra=fields(url=url, status_code=e.response.status_code, body=e.response.text[:500]),
            )
            raise BackendError(f"{url} answered {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Error posting to {url}: {e}")
            raise BackendError(f"request to {url} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"{url} answered with invalid JSON") from e
