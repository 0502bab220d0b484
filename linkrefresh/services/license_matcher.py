"""Matches a repository's reported license against the owner's catalog."""

from __future__ import annotations

from typing import Any, Optional

from linkrefresh.models.refresh import Catalog, LicenseEntry

# SPDX placeholders GitHub reports when it cannot classify a license.
UNMATCHABLE_IDENTIFIERS = frozenset({"noassertion", "none", "other"})


def reported_license_identifier(repo_payload: dict[str, Any]) -> Optional[str]:
    """Extract the SPDX identifier from a GitHub repository payload."""
    license_payload = repo_payload.get("license")
    if not isinstance(license_payload, dict):
        return None
    spdx_id = license_payload.get("spdx_id")
    if isinstance(spdx_id, str) and spdx_id.strip():
        return spdx_id.strip()
    return None


def match_license(identifier: Optional[str], catalog: Catalog) -> Optional[LicenseEntry]:
    """Case-insensitive exact match on catalog name, then full name.

    An identifier without a catalog entry yields None; catalog entries are
    never created here.
    """
    if not identifier:
        return None
    needle = identifier.strip().casefold()
    if not needle or needle in UNMATCHABLE_IDENTIFIERS:
        return None

    for entry in catalog.licenses:
        if entry.name.strip().casefold() == needle:
            return entry
    for entry in catalog.licenses:
        if entry.full_name and entry.full_name.strip().casefold() == needle:
            return entry
    return None
