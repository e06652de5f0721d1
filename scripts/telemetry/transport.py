"""
HTTP transport collaborator and URL helpers.

The transport only executes one request and reports the outcome; retry
policy lives in the uploader.
"""

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import requests

log = logging.getLogger(__name__)

COLLECT_URL_PATTERN = "{host}/{env_key}/bulk"
COLLECT_HASH_URL_PATTERN = "{host}/{env_key}/bulk/hash/{hash}"
ENGAGE_URL_PATTERN = "{host}/{env_key}"
ENGAGE_HASH_URL_PATTERN = "{host}/{env_key}/hash/{hash}"

JSON_HEADERS = {"Content-Type": "application/json"}


@dataclass
class TransportResponse:
    """Outcome of one submission. status_code is 0 when nothing came back."""
    status_code: int = 0
    body: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return 0 < self.status_code < 400


class Transport(ABC):
    """Executes a single HTTP request asynchronously."""

    @abstractmethod
    async def submit(
        self,
        url: str,
        method: str = "POST",
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> TransportResponse:
        """Send the request and resume with its outcome. Must not raise."""


class RequestsTransport(Transport):
    """
    Transport built on requests.

    Requests run in the default executor so the event loop never blocks
    on network I/O.
    """

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    async def submit(self, url, method="POST", body=None, headers=None) -> TransportResponse:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._send, url, method, body, headers)

    def _send(self, url, method, body, headers) -> TransportResponse:
        try:
            response = self.session.request(
                method,
                url,
                data=body.encode('utf-8') if body is not None else None,
                headers=headers or {},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return TransportResponse(status_code=0, error=str(e))

        error = None
        if response.status_code >= 400:
            error = f"HTTP {response.status_code}"
        return TransportResponse(
            status_code=response.status_code,
            body=response.text,
            error=error,
        )


def generate_hash(data: str, secret: str) -> str:
    """MD5 hex digest of the body followed by the shared secret."""
    return hashlib.md5((data + secret).encode('utf-8')).hexdigest()


def format_url(pattern: str, host: str, env_key: str, hash_value: Optional[str] = None) -> str:
    """
    Fill a URL pattern, defaulting the host to https when it has no scheme.
    """
    if not host.startswith(("http://", "https://")):
        host = "https://" + host
    return pattern.format(host=host.rstrip("/"), env_key=env_key, hash=hash_value or "")


def signed_url(
    plain_pattern: str,
    hash_pattern: str,
    host: str,
    env_key: str,
    body: str,
    secret: Optional[str] = None
) -> str:
    """Choose the plain or hash pattern based on whether a secret is set."""
    if secret:
        return format_url(hash_pattern, host, env_key, generate_hash(body, secret))
    return format_url(plain_pattern, host, env_key)
