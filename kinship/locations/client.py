"""HTTP client for the external geographic lookup service."""

from typing import Iterable, Optional

import httpx
from loguru import logger

from kinship.config import settings
from kinship.errors import ExternalLookupUnavailable


class LocationLookupClient:
    """
    Read-only client for GET states / districts / talukas.

    Every response is expected as {"success": bool, "<plural>": [{code, id, name}]}.
    The service is not fully trusted: a response reporting failure lets the
    caller try another parameter name, while transport errors, timeouts,
    server errors and non-JSON bodies raise ExternalLookupUnavailable.
    """

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = (base_url or settings.location_api.base_url).rstrip("/")
        self.timeout = timeout or settings.location_api.timeout
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _get(self, endpoint: str, params: dict) -> dict:
        try:
            response = self._client.get(f"/{endpoint}", params=params)
        except httpx.TimeoutException as e:
            raise ExternalLookupUnavailable(f"{endpoint} lookup timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ExternalLookupUnavailable(f"{endpoint} lookup failed: {e}") from e

        if response.status_code >= 500:
            raise ExternalLookupUnavailable(f"{endpoint} lookup returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            if response.is_success:
                raise ExternalLookupUnavailable(f"{endpoint} lookup returned a non-JSON body")
            data = {"success": False}

        if not isinstance(data, dict):
            raise ExternalLookupUnavailable(f"{endpoint} lookup returned {type(data).__name__}, expected object")
        return data

    def fetch_records(
        self,
        endpoint: str,
        result_key: str,
        param_options: Iterable[dict] = ({},)
    ) -> Optional[list[dict]]:
        """
        Query an endpoint trying each parameter set in order.

        An option that raises ExternalLookupUnavailable does not stop the
        remaining options from being tried.

        Args:
            endpoint: states, districts or talukas
            result_key: Key of the record list in the response
            param_options: Query parameter sets, primary first

        Returns:
            Records of the first call reporting success; None if every call
            reported failure

        Raises:
            ExternalLookupUnavailable: no call succeeded and at least one
                could not be completed
        """
        unavailable = None
        for params in param_options:
            try:
                data = self._get(endpoint, params)
            except ExternalLookupUnavailable as e:
                logger.warning(f"{endpoint} lookup with {params} unavailable: {e}")
                unavailable = e
                continue

            if data.get("success"):
                records = data.get(result_key) or []
                if not isinstance(records, list):
                    raise ExternalLookupUnavailable(f"{endpoint} lookup returned malformed '{result_key}'")
                return [r for r in records if isinstance(r, dict)]
            logger.debug(f"{endpoint} lookup with {params} reported failure")

        if unavailable is not None:
            raise unavailable
        return None
