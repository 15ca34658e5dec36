"""
Grant cache.

Remembers which grant requests the relay already approved for the current
session, so repeated operations on the same resource do not re-request
authorization.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from ..core.errors import GrantError
from ..core.types import GrantRequest, GrantResponse

logger = logging.getLogger(__name__)

GrantRequestFunction = Callable[
    [GrantRequest],
    Union[GrantResponse, str, Awaitable[Union[GrantResponse, str]]],
]


class GrantCache:
    """
    Set of approved grant requests.

    Entries never expire; the whole cache is reset when the session changes.

    Usage:
        grants = GrantCache()
        await grants.ensure_grant(request, gateway.request_grant)
    """

    def __init__(self):
        self._grants: set[GrantRequest] = set()

    def has(self, grant: GrantRequest) -> bool:
        return grant in self._grants

    def add(self, grant: GrantRequest) -> None:
        self._grants.add(grant)

    def reset(self) -> None:
        self._grants.clear()

    def __len__(self) -> int:
        return len(self._grants)

    async def ensure_grant(self, grant: GrantRequest, request_fn: GrantRequestFunction) -> GrantResponse:
        """
        Make sure a grant is approved, asking the relay only on a cache miss.

        Concurrent calls for the same key may each reach the relay; only an
        explicit ``granted`` answer is ever cached.

        Args:
            grant: Grant request (cache key)
            request_fn: Function asking the relay for the grant

        Returns:
            GrantResponse.GRANTED

        Raises:
            GrantError: If the relay answered anything but ``granted``
        """
        if self.has(grant):
            return GrantResponse.GRANTED

        response: Any = request_fn(grant)
        if inspect.isawaitable(response):
            response = await response

        if response == GrantResponse.GRANTED:
            self.add(grant)
            logger.debug(f"Grant cached: {grant.type.value} for {grant.device_id}")
            return GrantResponse.GRANTED

        logger.info(f"Grant {grant.type.value} for {grant.device_id} not given: {response}")
        raise GrantError(response, grant)
