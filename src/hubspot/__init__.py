"""HubSpot CRM API client module."""

from .client import HubSpotClient, HubSpotAPIError
from .models import AssociationRecord, AssociationType, Contact, Listing, ListingBatchResult

__all__ = [
    "HubSpotClient",
    "HubSpotAPIError",
    "AssociationRecord",
    "AssociationType",
    "Contact",
    "Listing",
    "ListingBatchResult",
]
