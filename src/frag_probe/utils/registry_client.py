import logging
import time
from typing import Any

import httpx

from ..exceptions import RegistryError
from ..models import FutureAssignment, GatewayInfo

logger = logging.getLogger(__name__)


class RegistryClient:
    """Client for the gateway registry's JSON-RPC interface.

    Provides the registered gateway set, the gateway scheduled for a future
    block, and simple round-trip measurements against gateway endpoints.
    """

    def __init__(self, url: str, timeout: float = 30.0) -> None:
        """Initialize the registry client.

        Args:
            url: Registry JSON-RPC endpoint
            timeout: Per-request timeout in seconds
        """
        if not url:
            raise ValueError("Registry RPC URL is required")

        self.url: str = url
        self.timeout: float = timeout

    async def _rpc_call(self, method: str, params: list[Any] | None = None) -> Any:
        """Perform a JSON-RPC 2.0 call against the registry.

        Args:
            method: JSON-RPC method name
            params: Positional parameters, omitted when None

        Returns:
            The ``result`` member of the response

        Raises:
            httpx.HTTPStatusError: If the request fails
            RegistryError: If the response carries an error or no result
        """
        payload: dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": 1}
        if params is not None:
            payload["params"] = params

        async with httpx.AsyncClient() as client:
            logger.debug(f"Calling {method} on {self.url} with params {params}")
            response: httpx.Response = await client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body: dict[str, Any] = response.json()

        match body:
            case {"error": error} if error:
                raise RegistryError(f"{method} failed: {error}")
            case {"result": result}:
                return result
            case _:
                raise RegistryError(f"{method} returned no result")

    async def registered_gateways(self) -> list[GatewayInfo]:
        """Fetch the currently registered gateways.

        Returns:
            Gateways in registry order
        """
        result = await self._rpc_call("registry_registeredGateways")
        if not isinstance(result, list):
            raise RegistryError(f"Unexpected registered gateways result: {result!r}")

        try:
            return [GatewayInfo(url=entry[0], address=entry[1]) for entry in result]
        except (IndexError, TypeError, KeyError) as e:
            raise RegistryError(f"Malformed gateway entry: {e}") from e

    async def future_gateway(self, blocks_ahead: int) -> FutureAssignment:
        """Fetch the gateway assigned ``blocks_ahead`` blocks from now.

        Args:
            blocks_ahead: Offset from the registry's current block

        Returns:
            The assignment for that block
        """
        result = await self._rpc_call("registry_futureGateway", [blocks_ahead])

        try:
            block_number, url, address = result[0], result[1], result[2]
        except (IndexError, TypeError, KeyError) as e:
            raise RegistryError(f"Malformed future gateway result: {result!r}") from e

        return FutureAssignment(url=url, address=address, block_number=int(block_number))

    async def measure_ping(self, url: str) -> int | None:
        """Measure the round trip of a plain GET to ``url``.

        Any HTTP response counts as reachable.

        Returns:
            Round trip in milliseconds, or None if the request failed
        """
        start = time.monotonic()
        try:
            async with httpx.AsyncClient() as client:
                await client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Ping failed for {url}: {e}")
            return None
        return int((time.monotonic() - start) * 1000)
