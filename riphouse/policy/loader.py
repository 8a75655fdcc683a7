# riphouse/policy/loader.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from riphouse.policy.schema import AuctionPolicy, PolicyBundle, RipLimitPolicy
from riphouse.policy.guardrails import validate_policy


def _deep_get(d: dict, key: str) -> Any:
    if key not in d:
        raise KeyError(f"Missing key: {key}")
    return d[key]


def load_policy_yaml(path: str | None = None) -> PolicyBundle:
    """
    Loads policy bundle from YAML.
    - default: riphouse/policy/defaults.yaml
    - override path by env RIPHOUSE_POLICY_PATH or param
    """
    if path is None:
        path = os.environ.get("RIPHOUSE_POLICY_PATH")

    if path is None:
        base = Path(__file__).resolve().parent
        path = str(base / "defaults.yaml")

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Policy YAML not found: {p}")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    auction_raw = _deep_get(raw, "auction")
    riplimit_raw = _deep_get(raw, "riplimit")

    bundle = PolicyBundle(
        auction=AuctionPolicy(
            default_page_limit=int(_deep_get(auction_raw, "default_page_limit")),
            max_page_limit=int(_deep_get(auction_raw, "max_page_limit")),
            max_bulk_items=int(_deep_get(auction_raw, "max_bulk_items")),
            default_bid_increment=int(_deep_get(auction_raw, "default_bid_increment")),
            homepage_limit=int(auction_raw.get("homepage_limit") or 8),
            similar_limit=int(auction_raw.get("similar_limit") or 6),
        ),
        riplimit=RipLimitPolicy(
            exchange_rate=int(_deep_get(riplimit_raw, "exchange_rate")),
            strike_block_threshold=int(_deep_get(riplimit_raw, "strike_block_threshold")),
            # 0 도 유효값이라 `or` 로 대체하지 않는다
            min_purchase_inr=int(riplimit_raw.get("min_purchase_inr", 100)),
        ),
    )

    validate_policy(bundle)
    return bundle
