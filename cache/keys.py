"""Cache key derivation."""

import hashlib
import json
from typing import Any, Mapping, Optional, Union

from models import FetchArgs

KEY_PREFIX = "mixcloud"
CACHE_VERSION = "v3"  # bump to orphan every stored entry

TIER_HOT = "l1"
TIER_WARM = "l2"


def normalize_account(account: str) -> str:
    """Lowercase and trim an account name."""
    return (account or "").strip().lower()


def cache_key(account: str, args: Optional[Union[FetchArgs, Mapping[str, Any]]] = None,
              tier: str = TIER_WARM) -> str:
    """
    Generate the cache key for a cloudcast listing.

    Equivalent arguments give the same key whatever their order or the
    account's case/whitespace.
    """
    normalized = FetchArgs.from_mapping(args).to_dict()
    args_json = json.dumps(normalized, sort_keys=True, separators=(",", ":"))
    digest = hashlib.md5(args_json.encode()).hexdigest()[:16]
    return f"{KEY_PREFIX}:{tier}:{CACHE_VERSION}:{normalize_account(account)}:{digest}"


def account_prefix(account: str, tier: str) -> str:
    """Prefix shared by every listing key of one account in one tier."""
    return f"{KEY_PREFIX}:{tier}:{CACHE_VERSION}:{normalize_account(account)}:"


def tier_prefix(tier: str) -> str:
    return f"{KEY_PREFIX}:{tier}:"


def fallback_key(account: str) -> str:
    return f"{KEY_PREFIX}:fallback:{normalize_account(account)}"


def user_key(account: str) -> str:
    return f"{KEY_PREFIX}:user:{normalize_account(account)}"
