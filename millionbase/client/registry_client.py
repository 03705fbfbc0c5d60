"""Async HTTP client for the MillionBase registry service."""

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from millionbase.core.config import get_settings
from millionbase.core.exceptions import (
    RegistryUnavailableError,
    SubmissionError,
    TransientLookupError,
    claim_error_for,
)
from millionbase.core.models import (
    CellState,
    ClaimErrorBody,
    ClaimPage,
    ClaimRecord,
    SupplyStatus,
)

logger = logging.getLogger(__name__)


class RegistryClient:
    """
    RegistryGateway over HTTP.

    Claim rejections come back as ClaimError subclasses; everything else that
    goes wrong during a claim is a SubmissionError carrying the raw reason.
    Lookup failures are TransientLookupError so the sync fetcher can absorb
    them.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        claimant: str,
        operator: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not claimant:
            raise ValueError("claimant is required")
        settings = get_settings().client
        self.base_url = (base_url or settings.registry_url).rstrip("/")
        self.claimant = claimant
        self.operator = operator
        self.timeout = timeout if timeout is not None else settings.timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Claims

    async def claim(self, index: int) -> ClaimRecord:
        """
        Submit a claim for `index` as this client's claimant.

        Raises:
            ClaimError: the registry rejected the claim
            SubmissionError: transport or protocol failure
        """
        return await self._post_claim(
            index,
            f"/cells/{index}/claim",
            headers={"X-Claimant": self.claimant},
        )

    async def assisted_claim(self, index: int, beneficiary: str) -> ClaimRecord:
        """Operator-issued claim on behalf of `beneficiary`."""
        return await self._post_claim(
            index,
            f"/cells/{index}/assisted-claim",
            headers={"X-Operator": self.operator or ""},
            json_body={"beneficiary": beneficiary},
        )

    async def _post_claim(
        self,
        index: int,
        path: str,
        headers: dict[str, str],
        json_body: Optional[dict[str, Any]] = None,
    ) -> ClaimRecord:
        client = await self._get_client()
        try:
            response = await client.post(path, headers=headers, json=json_body)
        except httpx.RequestError as e:
            logger.warning(f"[RegistryClient] Claim on cell {index} failed in transit: {e}")
            raise SubmissionError(f"Request failed: {e}", cell_index=index) from e

        if response.status_code == 200:
            try:
                return ClaimRecord.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                raise SubmissionError(f"Malformed claim response: {e}", cell_index=index) from e

        self._raise_claim_error(response, index)
        raise SubmissionError(
            f"HTTP {response.status_code}: {response.text}",
            cell_index=index,
            context={"path": path},
        )

    @staticmethod
    def _raise_claim_error(response: httpx.Response, index: Any) -> None:
        """Raise the ClaimError encoded in `response`, if it carries one."""
        try:
            body = ClaimErrorBody.model_validate(response.json())
        except (ValueError, ValidationError):
            return
        try:
            error = claim_error_for(body.reason, body.cell_index if body.cell_index is not None else index, body.message)
        except ValueError:
            return
        raise error

    # ------------------------------------------------------------------ #
    # Reads

    async def get_cell(self, index: int) -> CellState:
        client = await self._get_client()
        try:
            response = await client.get(f"/cells/{index}")
        except httpx.RequestError as e:
            raise TransientLookupError(index, str(e)) from e
        if response.status_code != 200:
            self._raise_claim_error(response, index)
            raise TransientLookupError(index, f"HTTP {response.status_code}")
        try:
            return CellState.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TransientLookupError(index, f"malformed response: {e}") from e

    async def is_claimed(self, index: int) -> bool:
        return (await self.get_cell(index)).claimed

    async def supply(self) -> SupplyStatus:
        client = await self._get_client()
        try:
            response = await client.get("/supply")
            response.raise_for_status()
            return SupplyStatus.model_validate(response.json())
        except httpx.HTTPError as e:
            raise RegistryUnavailableError(f"Supply request failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise RegistryUnavailableError(f"Malformed supply response: {e}") from e

    async def total_claimed(self) -> int:
        return (await self.supply()).total_claimed

    async def capacity(self) -> int:
        return (await self.supply()).capacity

    async def list_claims(self, after: int = 0, limit: int = 500) -> ClaimPage:
        client = await self._get_client()
        try:
            response = await client.get("/claims", params={"after": after, "limit": limit})
            response.raise_for_status()
            return ClaimPage.model_validate(response.json())
        except httpx.HTTPError as e:
            raise RegistryUnavailableError(f"Claim log request failed: {e}") from e

    # ------------------------------------------------------------------ #
    # Event stream

    async def stream_events(self, after: int = 0) -> AsyncIterator[ClaimRecord]:
        """
        Follow the registry's claim event stream (Server-Sent Events).

        Yields records with order > `after`. Ends when the server closes the
        stream; transport failures surface as RegistryUnavailableError.
        """
        client = await self._get_client()
        timeout = httpx.Timeout(self.timeout, read=None)
        try:
            async with client.stream("GET", "/events", params={"after": after}, timeout=timeout) as response:
                if response.status_code != 200:
                    raise RegistryUnavailableError(f"Event stream returned HTTP {response.status_code}")
                event_name: Optional[str] = None
                data_lines: list[str] = []
                async for line in response.aiter_lines():
                    if line == "":
                        if data_lines and event_name in (None, "claim"):
                            yield ClaimRecord.model_validate(json.loads("\n".join(data_lines)))
                        event_name = None
                        data_lines = []
                        continue
                    if line.startswith(":"):
                        continue
                    field, _, value = line.partition(":")
                    if value.startswith(" "):
                        value = value[1:]
                    if field == "event":
                        event_name = value
                    elif field == "data":
                        data_lines.append(value)
        except httpx.HTTPError as e:
            raise RegistryUnavailableError(f"Event stream failed: {e}") from e
