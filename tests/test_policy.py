# tests/test_policy.py
import pytest

from riphouse.config import project_rules as R
from riphouse.policy.guardrails import PolicyValidationError
from riphouse.policy.loader import load_policy_yaml

BASE_YAML = """
auction:
  default_page_limit: 20
  max_page_limit: 100
  max_bulk_items: 500
  default_bid_increment: 100
riplimit:
  exchange_rate: 1
  strike_block_threshold: 3
"""


def _write(tmp_path, text):
    p = tmp_path / "policy.yaml"
    p.write_text(text, encoding="utf-8")
    return p


def test_defaults_loaded_into_rules():
    assert R.MAX_BULK_OPERATION_ITEMS == 500
    assert R.RIPLIMIT_EXCHANGE_RATE == 1
    assert R.STRIKE_BLOCK_THRESHOLD == 3
    assert R.MIN_RIPLIMIT_PURCHASE_INR == 100
    assert R.DEFAULT_PAGE_LIMIT <= R.MAX_PAGE_LIMIT


def test_optional_keys_fall_back(tmp_path):
    bundle = load_policy_yaml(str(_write(tmp_path, BASE_YAML)))
    assert bundle.auction.homepage_limit == 8
    assert bundle.auction.similar_limit == 6
    assert bundle.riplimit.min_purchase_inr == 100


def test_env_path_override(tmp_path, monkeypatch):
    p = _write(tmp_path, BASE_YAML.replace("exchange_rate: 1", "exchange_rate: 10"))
    monkeypatch.setenv("RIPHOUSE_POLICY_PATH", str(p))
    assert load_policy_yaml().riplimit.exchange_rate == 10


def test_missing_file_and_key(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_policy_yaml(str(tmp_path / "nope.yaml"))
    with pytest.raises(KeyError):
        load_policy_yaml(str(_write(tmp_path, "auction: {}\nriplimit: {}\n")))


@pytest.mark.parametrize(
    "old, new",
    [
        ("default_page_limit: 20", "default_page_limit: 0"),
        ("default_page_limit: 20", "default_page_limit: 200"),
        ("max_bulk_items: 500", "max_bulk_items: 0"),
        ("default_bid_increment: 100", "default_bid_increment: -1"),
        ("exchange_rate: 1", "exchange_rate: 0"),
        ("strike_block_threshold: 3", "strike_block_threshold: 0"),
    ],
)
def test_guardrails_reject_bad_values(tmp_path, old, new):
    with pytest.raises(PolicyValidationError):
        load_policy_yaml(str(_write(tmp_path, BASE_YAML.replace(old, new))))
