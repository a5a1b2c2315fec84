"""Buildium API client module."""

from .client import BuildiumClient, BuildiumAPIError
from .models import Lease, LeaseStatus, Tenant, TenantReference

__all__ = ["BuildiumClient", "BuildiumAPIError", "Lease", "LeaseStatus", "Tenant", "TenantReference"]
