"""
HubSpot CRM API client for listings, contacts and associations.

Authenticates with a private-app access token. Provides the listing
lookups and batched writes, contact lookup by email, and the typed
contact <-> listing association edges the sync engine needs.
"""

import logging
import time
from typing import Iterable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import TransientError
from .models import (
    LEASE_FIELDS,
    UNIT_ID_PROPERTY,
    AssociationRecord,
    Contact,
    Listing,
    ListingAction,
    ListingBatchResult,
    ListingOutcome,
    association_label,
    plan_listing_batch,
)

logger = logging.getLogger(__name__)


class HubSpotAPIError(Exception):
    """Raised when HubSpot API returns an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        category: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.category = category


class HubSpotClient:
    """
    Client for the HubSpot CRM API.

    Features:
    - Bearer token authentication
    - Retry for idempotent requests on 5xx
    - Retry-After aware backoff on 429 for every request
    - Batched listing reads and creates (100 records per call)

    Usage:
        client = HubSpotClient(access_token="...")

        listing = client.search_listing_by_unit_id("1234")
        contact = client.search_contact_by_email("tenant@example.com")
        client.create_contact_listing_association(contact.id, listing.id, 2)
    """

    LISTING_ENDPOINT = "/crm/v3/objects/0-420/{listing_id}"
    LISTINGS_BATCH_READ_ENDPOINT = "/crm/v3/objects/0-420/batch/read"
    LISTINGS_BATCH_CREATE_ENDPOINT = "/crm/v3/objects/0-420/batch/create"
    LISTINGS_SEARCH_ENDPOINT = "/crm/v3/objects/0-420/search"
    CONTACTS_SEARCH_ENDPOINT = "/crm/v3/objects/contacts/search"
    CONTACT_LISTING_ASSOCIATIONS_ENDPOINT = "/crm/v4/objects/contacts/{contact_id}/associations/0-420"
    ASSOCIATIONS_BATCH_CREATE_ENDPOINT = "/crm/v4/associations/contacts/0-420/batch/create"
    ASSOCIATIONS_LABELS_ARCHIVE_ENDPOINT = "/crm/v4/associations/contacts/0-420/batch/labels/archive"

    BATCH_SIZE = 100

    LISTING_READ_PROPERTIES = (
        UNIT_ID_PROPERTY,
        "buildium_property_id",
        "hs_name",
        "hs_address_1",
        "hs_city",
        "hs_lastmodifieddate",
    ) + LEASE_FIELDS

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 30.0,
        max_retries: int = 3,
        rate_limit_delay: float = 0.55,
    ):
        """
        Initialize HubSpot client.

        Args:
            access_token: Private app token (never logged)
            base_url: HubSpot API root
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            rate_limit_delay: Base delay for 429 backoff without Retry-After
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.rate_limit_delay = rate_limit_delay

        self._session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=0.2,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "PUT", "DELETE"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

        self._session.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

        logger.info(f"HubSpot client initialized for {self.base_url}")

    def __repr__(self) -> str:
        """Never expose token in repr."""
        return f"HubSpotClient(base_url='{self.base_url}')"

    def make_request(
        self,
        method: str,
        path: str,
        body: Optional[dict | list] = None,
        params: Optional[dict] = None,
    ) -> dict | list | None:
        """
        Make authenticated request to HubSpot API.

        Generic primitive used by the typed operations below and by
        callers that need an endpoint without a dedicated method.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: API path, e.g. /crm/v3/objects/0-420
            body: JSON request body
            params: Query parameters

        Returns:
            Parsed JSON response, or None for 204 responses

        Raises:
            TransientError: If rate limiting or server errors outlast retries
            HubSpotAPIError: For any other error response
        """
        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries + 1):
            try:
                response = self._session.request(
                    method=method,
                    url=url,
                    json=body,
                    params=params,
                    timeout=self.timeout,
                )
            except requests.exceptions.RetryError as e:
                raise TransientError(f"HubSpot retries exhausted: {e}") from e
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                logger.error(f"HubSpot request failed: {e}")
                raise TransientError(f"HubSpot request failed: {e}") from e
            except requests.exceptions.RequestException as e:
                raise HubSpotAPIError(f"HubSpot request failed: {e}") from e

            if response.status_code != 429:
                break

            if attempt == self.max_retries:
                raise TransientError(
                    f"HubSpot rate limit persisted after {self.max_retries} retries",
                    status_code=429,
                )

            retry_after = response.headers.get("Retry-After")
            delay = float(retry_after) if retry_after else self.rate_limit_delay * (2 ** attempt)
            logger.warning(
                f"HubSpot rate limited on {method} {path}. "
                f"Retry {attempt + 1}/{self.max_retries} in {delay}s..."
            )
            time.sleep(delay)

        if response.status_code >= 500:
            raise TransientError(
                f"HubSpot server error: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            error_msg = f"HubSpot API error: {e}"
            category = None
            try:
                error_body = e.response.json()
                error_msg = f"HubSpot API error: {error_body.get('message', str(e))}"
                category = error_body.get("category")
            except (ValueError, AttributeError):
                pass

            logger.error(error_msg)
            raise HubSpotAPIError(
                error_msg,
                status_code=response.status_code,
                category=category,
            ) from e

        if response.status_code == 204 or not response.content:
            return None

        return response.json()

    # ============================================================
    # Listing Operations
    # ============================================================

    def get_listings_by_unit_ids(self, unit_ids: Iterable[str]) -> list[Listing]:
        """
        Batch read listings keyed by Buildium unit id.

        Units without a listing are simply absent from the result.

        Args:
            unit_ids: Buildium unit ids

        Returns:
            Listings found, in no particular order
        """
        unique_ids = list(dict.fromkeys(str(u) for u in unit_ids if u is not None))
        if not unique_ids:
            return []

        listings = []
        for start in range(0, len(unique_ids), self.BATCH_SIZE):
            chunk = unique_ids[start:start + self.BATCH_SIZE]
            logger.debug(f"Batch reading {len(chunk)} listing(s) by unit id")

            response = self.make_request(
                "POST",
                self.LISTINGS_BATCH_READ_ENDPOINT,
                body={
                    "idProperty": UNIT_ID_PROPERTY,
                    "properties": list(self.LISTING_READ_PROPERTIES),
                    "inputs": [{"id": unit_id} for unit_id in chunk],
                },
            ) or {}

            for item in response.get("results", []):
                listings.append(Listing.from_api_response(item))

        logger.debug(f"Batch read found {len(listings)} of {len(unique_ids)} listing(s)")
        return listings

    def search_listing_by_unit_id(self, unit_id: str) -> Optional[Listing]:
        """
        Find the listing for a Buildium unit.

        Args:
            unit_id: Buildium unit id (unique on listings)

        Returns:
            Listing, or None if no listing exists
        """
        response = self.make_request(
            "POST",
            self.LISTINGS_SEARCH_ENDPOINT,
            body={
                "filterGroups": [{
                    "filters": [{
                        "propertyName": UNIT_ID_PROPERTY,
                        "operator": "EQ",
                        "value": str(unit_id),
                    }]
                }],
                "properties": list(self.LISTING_READ_PROPERTIES),
                "limit": 1,
            },
        ) or {}

        results = response.get("results", [])
        if not results:
            return None
        return Listing.from_api_response(results[0])

    def update_listing(self, listing_id: str, properties: dict) -> Listing:
        """
        Update properties on an existing listing.

        Args:
            listing_id: HubSpot listing ID
            properties: Property values to set

        Returns:
            Updated listing
        """
        logger.info(f"Updating listing {listing_id}: {sorted(properties)}")
        response = self.make_request(
            "PATCH",
            self.LISTING_ENDPOINT.format(listing_id=listing_id),
            body={"properties": properties},
        )
        return Listing.from_api_response(response)

    def create_listings_batch(
        self,
        listings: list[Listing],
        dry_run: bool = False,
        force: bool = False,
        limit: Optional[int] = None,
        existing_by_unit_id: Optional[dict[str, Optional[Listing]]] = None,
    ) -> ListingBatchResult:
        """
        Create missing listings and refresh stale ones.

        Existing listings are looked up by unit id (using the supplied
        cache where it has an entry). Missing units are created through
        the batch endpoint; existing ones are updated when forced or when
        their lease data is stale, and skipped otherwise.

        Args:
            listings: Draft listings, one per unit
            dry_run: Plan only, write nothing
            force: Update every existing listing
            limit: Stop after this many creates plus updates
            existing_by_unit_id: Known listings (None = known absent)

        Returns:
            ListingBatchResult; rejected units are reported in `failed`
        """
        existing = dict(existing_by_unit_id or {})
        for draft in listings:
            if draft.unit_id not in existing:
                existing[draft.unit_id] = self.search_listing_by_unit_id(draft.unit_id)

        plan = plan_listing_batch(listings, existing, force=force, limit=limit)
        result = ListingBatchResult()
        to_create: list[Listing] = []

        for action, draft, current in plan:
            if action is ListingAction.SKIP:
                result.skipped.append(ListingOutcome(draft.unit_id, current))
            elif action is ListingAction.CREATE:
                to_create.append(draft)
            elif dry_run:
                result.updated.append(ListingOutcome(draft.unit_id, current))
            else:
                payload = draft.properties if force else draft.lease_update_payload()
                try:
                    updated = self.update_listing(current.id, payload)
                    result.updated.append(ListingOutcome(draft.unit_id, updated))
                except (HubSpotAPIError, TransientError) as e:
                    logger.error(f"Failed to update listing for unit {draft.unit_id}: {e}")
                    result.failed[draft.unit_id] = str(e)

        if dry_run:
            for draft in to_create:
                logger.info(f"DRY RUN: Would create listing for unit {draft.unit_id}")
                result.created.append(ListingOutcome(draft.unit_id, draft))
            return result

        for start in range(0, len(to_create), self.BATCH_SIZE):
            chunk = to_create[start:start + self.BATCH_SIZE]
            logger.info(f"Creating {len(chunk)} listing(s)")

            try:
                response = self.make_request(
                    "POST",
                    self.LISTINGS_BATCH_CREATE_ENDPOINT,
                    body={"inputs": [draft.to_api_payload() for draft in chunk]},
                ) or {}
            except (HubSpotAPIError, TransientError) as e:
                logger.error(f"Listing batch create failed: {e}")
                for draft in chunk:
                    result.failed[draft.unit_id] = str(e)
                continue

            created_units = set()
            for item in response.get("results", []):
                listing = Listing.from_api_response(item)
                created_units.add(listing.unit_id)
                result.created.append(ListingOutcome(listing.unit_id, listing))

            for draft in chunk:
                if draft.unit_id not in created_units:
                    result.failed[draft.unit_id] = "listing rejected by batch create"

        logger.info(
            f"Listing batch: {len(result.created)} created, {len(result.updated)} updated, "
            f"{len(result.skipped)} skipped, {len(result.failed)} failed"
        )
        return result

    # ============================================================
    # Contact and Association Operations
    # ============================================================

    def search_contact_by_email(self, email: str) -> Optional[Contact]:
        """
        Find a contact by email address.

        Args:
            email: Email to match (HubSpot matches case-insensitively)

        Returns:
            Contact, or None if no contact has that email
        """
        response = self.make_request(
            "POST",
            self.CONTACTS_SEARCH_ENDPOINT,
            body={
                "filterGroups": [{
                    "filters": [{
                        "propertyName": "email",
                        "operator": "EQ",
                        "value": email,
                    }]
                }],
                "properties": ["email"],
                "limit": 1,
            },
        ) or {}

        results = response.get("results", [])
        if not results:
            return None
        return Contact.from_api_response(results[0])

    def get_contact_listing_associations(
        self,
        contact_id: str,
        listing_id: str,
    ) -> list[AssociationRecord]:
        """
        Read the association types between one contact and one listing.

        Args:
            contact_id: HubSpot contact ID
            listing_id: HubSpot listing ID

        Returns:
            AssociationRecord per association type on the edge
        """
        endpoint = self.CONTACT_LISTING_ASSOCIATIONS_ENDPOINT.format(contact_id=contact_id)
        params: dict = {"limit": 500}
        records = []

        while True:
            response = self.make_request("GET", endpoint, params=params) or {}

            for item in response.get("results", []):
                if str(item.get("toObjectId")) != str(listing_id):
                    continue
                for assoc_type in item.get("associationTypes", []):
                    records.append(AssociationRecord.from_api_response(assoc_type))

            after = ((response.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                break
            params = {"limit": 500, "after": after}

        return records

    def create_contact_listing_association(
        self,
        contact_id: str,
        listing_id: str,
        association_type_id: int,
    ) -> None:
        """
        Create a typed association from a contact to a listing.

        Args:
            contact_id: HubSpot contact ID
            listing_id: HubSpot listing ID
            association_type_id: Association label id (2 = Active Tenant)
        """
        logger.info(
            f"Creating {association_label(association_type_id)} association: "
            f"contact {contact_id} -> listing {listing_id}"
        )
        self.make_request(
            "POST",
            self.ASSOCIATIONS_BATCH_CREATE_ENDPOINT,
            body={
                "inputs": [{
                    "from": {"id": str(contact_id)},
                    "to": {"id": str(listing_id)},
                    "types": [{
                        "associationCategory": "USER_DEFINED",
                        "associationTypeId": int(association_type_id),
                    }],
                }]
            },
        )

    def remove_contact_listing_association(
        self,
        contact_id: str,
        listing_id: str,
        association_type_id: int,
    ) -> None:
        """
        Remove one association label from a contact-listing edge.

        Other labels on the same edge are left in place.

        Args:
            contact_id: HubSpot contact ID
            listing_id: HubSpot listing ID
            association_type_id: Association label id to remove
        """
        logger.info(
            f"Removing {association_label(association_type_id)} association: "
            f"contact {contact_id} -> listing {listing_id}"
        )
        self.make_request(
            "POST",
            self.ASSOCIATIONS_LABELS_ARCHIVE_ENDPOINT,
            body={
                "inputs": [{
                    "from": {"id": str(contact_id)},
                    "to": {"id": str(listing_id)},
                    "types": [{
                        "associationCategory": "USER_DEFINED",
                        "associationTypeId": int(association_type_id),
                    }],
                }]
            },
        )

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("HubSpot client session closed")

    def __enter__(self) -> "HubSpotClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
