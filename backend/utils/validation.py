"""Validation utilities for addresses and ledger lookups."""

import re

from fastapi import HTTPException


ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
ZERO_ADDRESS = "0x" + "0" * 40


def is_valid_address(address) -> bool:
    """Check the shape of an EVM address (0x followed by 40 hex characters)."""
    return isinstance(address, str) and bool(ADDRESS_PATTERN.match(address))


def get_group_or_404(ledger, group_id: str):
    """Get a group by ID or raise 404 if not found."""
    group = ledger.get_group(group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group
