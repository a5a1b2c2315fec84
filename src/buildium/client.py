"""
Buildium API client.

Read-only access to leases and tenants. Handles authentication headers,
offset pagination and retry for transient failures.
Client credentials are passed via configuration and never logged.
"""

import logging
from datetime import datetime
from typing import Iterable, Iterator, Optional
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import NotFoundError, TransientError
from .models import Lease, Tenant

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


class BuildiumAPIError(Exception):
    """Raised when Buildium API returns a non-retryable error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BuildiumClient:
    """
    Client for the Buildium property-management API.

    Handles:
    - Client id / secret header authentication
    - Offset pagination
    - Retry with exponential backoff for 429 and 5xx responses

    Usage:
        client = BuildiumClient(
            base_url="https://api.buildium.com/v1",
            client_id="...",
            client_secret="...",
        )

        for lease in client.get_leases_updated_since(since):
            print(lease.id, lease.last_updated)
    """

    LEASES_ENDPOINT = "leases"
    TENANT_ENDPOINT = "leases/tenants/{tenant_id}"
    UNIT_ENDPOINT = "rentals/units/{unit_id}"

    PAGE_SIZE = 500
    MAX_OFFSET = 50000
    PROPERTY_CHUNK_SIZE = 5

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        """
        Initialize Buildium client.

        Args:
            base_url: Buildium API root (e.g., https://api.buildium.com/v1)
            client_id: API client id
            client_secret: API client secret (never logged)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
        """
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout

        self._session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=0.2,
            status_forcelist=list(RETRYABLE_STATUS_CODES),
            allowed_methods=["GET"],
            respect_retry_after_header=True,
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

        self._session.headers.update({
            "x-buildium-client-id": client_id,
            "x-buildium-client-secret": client_secret,
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

        logger.info(f"Buildium client initialized for {self.base_url}")

    def __repr__(self) -> str:
        """Never expose credentials in repr."""
        return f"BuildiumClient(base_url='{self.base_url}')"

    def _make_request(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> dict | list:
        """
        Make authenticated GET request to Buildium API.

        Args:
            endpoint: API endpoint path, relative to base_url
            params: Query parameters (lists are sent as repeated keys)

        Returns:
            Parsed JSON response

        Raises:
            NotFoundError: On 404
            TransientError: If retries are exhausted or the network fails
            BuildiumAPIError: For any other error response
        """
        url = urljoin(self.base_url, endpoint)

        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RetryError as e:
            raise TransientError(f"Buildium retries exhausted: {e}") from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.error(f"Buildium request failed: {e}")
            raise TransientError(f"Buildium request failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise BuildiumAPIError(f"Buildium request failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"Buildium resource not found: {endpoint}")

        if response.status_code in RETRYABLE_STATUS_CODES:
            logger.error(f"Buildium still failing after retries: HTTP {response.status_code}")
            raise TransientError(
                f"Buildium API error after retries: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            error_msg = f"Buildium API error: {e}"
            try:
                error_body = e.response.json()
                if "UserMessage" in error_body:
                    error_msg = f"Buildium API error: {error_body['UserMessage']}"
            except (ValueError, AttributeError):
                pass

            logger.error(error_msg)
            raise BuildiumAPIError(error_msg, status_code=response.status_code) from e

        return response.json()

    def _paginate(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        page_size: Optional[int] = None,
    ) -> Iterator[dict]:
        """
        Handle Buildium offset pagination.

        A page shorter than the page size marks the end. Stops at
        MAX_OFFSET to avoid runaway loops.

        Yields:
            Individual records from each page
        """
        page_size = page_size or self.PAGE_SIZE
        offset = 0

        while True:
            page_params = dict(params or {})
            page_params.update({"limit": page_size, "offset": offset})

            page = self._make_request(endpoint, params=page_params)
            if not isinstance(page, list):
                page = []

            yield from page

            if len(page) < page_size:
                break

            offset += page_size
            if offset >= self.MAX_OFFSET:
                logger.warning(f"Reached max offset {offset} for {endpoint}; stopping pagination")
                break

    def _parse_leases(self, records: Iterable[dict]) -> list[Lease]:
        leases = []
        for data in records:
            try:
                leases.append(Lease.from_api_response(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed lease data (Id={data.get('Id')}): {e}")
        return leases

    def get_all_leases(self) -> list[Lease]:
        """
        Fetch every lease, in Buildium order.

        Returns:
            List of Lease objects
        """
        logger.info("Fetching all leases...")
        leases = self._parse_leases(self._paginate(self.LEASES_ENDPOINT))
        logger.info(f"Found {len(leases)} leases")
        return leases

    def get_leases_updated_since(self, timestamp: datetime) -> list[Lease]:
        """
        Fetch leases modified at or after a point in time.

        Uses Buildium's lastupdatedfrom filter.

        Args:
            timestamp: Lower bound for LastUpdatedDateTime

        Returns:
            List of Lease objects, in Buildium order
        """
        since = timestamp.isoformat()
        logger.info(f"Fetching leases updated since {since}...")

        leases = self._parse_leases(
            self._paginate(self.LEASES_ENDPOINT, params={"lastupdatedfrom": since})
        )

        logger.info(f"Found {len(leases)} leases updated since {since}")
        return leases

    def get_unit_property_id(self, unit_id: int) -> Optional[int]:
        """Look up the property a unit belongs to."""
        data = self._make_request(self.UNIT_ENDPOINT.format(unit_id=unit_id))
        property_id = data.get("PropertyId") if isinstance(data, dict) else None
        return int(property_id) if property_id else None

    def get_leases_by_unit_ids(
        self,
        unit_ids: Iterable[int],
        property_ids: Optional[dict[int, int]] = None,
    ) -> list[Lease]:
        """
        Fetch every lease for a set of units.

        Buildium cannot filter leases by unit id, so requests are grouped
        by property (a few properties per request) and filtered locally.
        Units whose property is not supplied are looked up first.

        Args:
            unit_ids: Units to fetch leases for
            property_ids: Optional unit id -> property id hints

        Returns:
            Leases for the requested units, de-duplicated by lease id
        """
        wanted = list(dict.fromkeys(int(u) for u in unit_ids))
        if not wanted:
            return []

        hints = property_ids or {}
        units_by_property: dict[int, set[int]] = {}

        for unit_id in wanted:
            property_id = hints.get(unit_id)
            if property_id is None:
                try:
                    property_id = self.get_unit_property_id(unit_id)
                except NotFoundError:
                    logger.warning(f"Unit {unit_id} not found in Buildium")
                    continue
            if property_id is None:
                logger.warning(f"Unit {unit_id} has no property id; skipping")
                continue
            units_by_property.setdefault(property_id, set()).add(unit_id)

        wanted_set = set(wanted)
        leases_by_id: dict[int, Lease] = {}
        property_list = list(units_by_property)

        for start in range(0, len(property_list), self.PROPERTY_CHUNK_SIZE):
            chunk = property_list[start:start + self.PROPERTY_CHUNK_SIZE]
            logger.debug(f"Fetching leases for properties {chunk}")

            records = self._paginate(
                self.LEASES_ENDPOINT,
                params={"propertyids": chunk},
            )
            for lease in self._parse_leases(records):
                if lease.unit_id in wanted_set:
                    leases_by_id.setdefault(lease.id, lease)

        leases = list(leases_by_id.values())
        logger.info(f"Found {len(leases)} leases across {len(wanted)} units")
        return leases

    def get_tenant(self, tenant_id: int) -> Tenant:
        """
        Fetch a tenant record.

        Args:
            tenant_id: Buildium tenant ID

        Returns:
            Tenant object

        Raises:
            NotFoundError: If the tenant does not exist
        """
        logger.debug(f"Fetching tenant {tenant_id}")
        data = self._make_request(self.TENANT_ENDPOINT.format(tenant_id=tenant_id))
        return Tenant.from_api_response(data)

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("Buildium client session closed")

    def __enter__(self) -> "BuildiumClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
