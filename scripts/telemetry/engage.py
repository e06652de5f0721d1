"""
Engagement requests with cache fallback.

A successful network response is written through to the engage cache;
when the network path fails the last cached response for the same
request fingerprint is served instead, marked with isCachedResponse.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .engage_cache import EngageCache, fingerprint
from .schema import Engagement
from .transport import (
    ENGAGE_HASH_URL_PATTERN,
    ENGAGE_URL_PATTERN,
    JSON_HEADERS,
    Transport,
    TransportResponse,
    signed_url,
)

log = logging.getLogger(__name__)

ENGAGE_API_VERSION = "4"


@dataclass
class EngageResponse:
    """Result handed back to the host for one engagement."""
    json: Dict[str, Any] = field(default_factory=dict)
    raw: Optional[str] = None
    status_code: int = 0
    error: Optional[str] = None
    is_cached: bool = False

    @property
    def parameters(self) -> Dict[str, Any]:
        params = self.json.get("parameters")
        return params if isinstance(params, dict) else {}


class EngageClient:
    """Posts engagement requests and maintains the engage cache."""

    def __init__(
        self,
        transport: Transport,
        engage_url: str,
        environment_key: str,
        cache: Optional[EngageCache] = None,
        hash_secret: Optional[str] = None
    ):
        self.transport = transport
        self.engage_url = engage_url
        self.environment_key = environment_key
        self.cache = cache
        self.hash_secret = hash_secret

    def build_request(self, engagement: Engagement, identity: Dict[str, Any]) -> Dict[str, Any]:
        """
        Assemble the request body.

        Args:
            engagement: Decision point, flavour and parameters
            identity: userID, sessionID and client facts; None values dropped
        """
        request = {k: v for k, v in identity.items() if v is not None}
        request.update({
            "decisionPoint": engagement.decision_point,
            "flavour": engagement.flavour,
            "version": ENGAGE_API_VERSION,
        })
        if engagement.parameters:
            request["parameters"] = dict(engagement.parameters)
        return request

    async def request(
        self,
        engagement: Engagement,
        identity: Dict[str, Any],
        cache_key: Optional[str] = None
    ) -> EngageResponse:
        """
        Request an engagement, falling back to the cache on failure.

        Args:
            engagement: Decision point, flavour and parameters
            identity: Client identity merged into the request body
            cache_key: Cache slot override for requests whose parameters
                change on every call

        Returns:
            EngageResponse; json is {} when neither network nor cache
            produced a usable response
        """
        key = cache_key or fingerprint(engagement.decision_point, engagement.flavour, engagement.parameters)
        body = json.dumps(self.build_request(engagement, identity), default=str)
        url = signed_url(
            ENGAGE_URL_PATTERN,
            ENGAGE_HASH_URL_PATTERN,
            self.engage_url,
            self.environment_key,
            body,
            self.hash_secret,
        )

        try:
            response = await self.transport.submit(url, "POST", body, dict(JSON_HEADERS))
        except Exception as e:
            response = TransportResponse(status_code=0, error=str(e))

        if response.succeeded:
            parsed = self._parse(engagement, response.body)
            if parsed is not None:
                if self.cache is not None:
                    self.cache.store(key, parsed)
                return EngageResponse(parsed, response.body, response.status_code)
            return EngageResponse({}, response.body, response.status_code, "invalid JSON")

        cached = self.cache.lookup(key) if self.cache is not None else None
        if cached is not None:
            log.debug("Engagement %s failed (%s), using cached response",
                      engagement.decision_point, response.error)
            result = copy.deepcopy(cached)
            if isinstance(result.get("parameters"), dict):
                result["parameters"]["isCachedResponse"] = True
            return EngageResponse(result, json.dumps(result), response.status_code,
                                  response.error, is_cached=True)

        log.warning("Engagement %s failed: %s", engagement.decision_point,
                    response.error or response.status_code)
        return EngageResponse({}, response.body, response.status_code, response.error)

    @staticmethod
    def _parse(engagement: Engagement, body: Optional[str]) -> Optional[Dict[str, Any]]:
        if not body:
            return None
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as e:
            log.error("Engagement %s responded with invalid JSON: %s", engagement.decision_point, e)
            return None
        if not isinstance(parsed, dict):
            log.error("Engagement %s responded with non-object JSON", engagement.decision_point)
            return None
        return parsed
