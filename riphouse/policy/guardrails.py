# riphouse/policy/guardrails.py
from __future__ import annotations

from riphouse.policy.schema import PolicyBundle


class PolicyValidationError(ValueError):
    pass


def validate_policy(bundle: PolicyBundle) -> None:
    a = bundle.auction
    r = bundle.riplimit

    # --- auction ---
    if a.default_page_limit <= 0 or a.default_page_limit > a.max_page_limit:
        raise PolicyValidationError(
            f"default_page_limit must be 1~max_page_limit, got={a.default_page_limit}"
        )
    if a.max_page_limit > 500:
        raise PolicyValidationError(f"max_page_limit must be <= 500, got={a.max_page_limit}")
    if a.max_bulk_items <= 0 or a.max_bulk_items > 5000:
        raise PolicyValidationError(f"max_bulk_items must be 1~5000, got={a.max_bulk_items}")
    if a.default_bid_increment <= 0:
        raise PolicyValidationError(f"default_bid_increment must be > 0, got={a.default_bid_increment}")

    for name, v in [
        ("homepage_limit", a.homepage_limit),
        ("similar_limit", a.similar_limit),
    ]:
        if v <= 0 or v > a.max_page_limit:
            raise PolicyValidationError(f"{name} out of range, got={v}")

    # --- riplimit ---
    if r.exchange_rate <= 0:
        raise PolicyValidationError(f"exchange_rate must be > 0, got={r.exchange_rate}")
    if r.strike_block_threshold < 1 or r.strike_block_threshold > 100:
        raise PolicyValidationError(
            f"strike_block_threshold must be 1~100, got={r.strike_block_threshold}"
        )
    if r.min_purchase_inr < 0:
        raise PolicyValidationError(f"min_purchase_inr must be >= 0, got={r.min_purchase_inr}")
