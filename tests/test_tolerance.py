"""
Tests for the tolerance configuration provider.
"""

import sqlite3
import pytest
from unittest.mock import Mock

from three_way_match.storage.base import ConfigStore
from three_way_match.tolerance import default_tolerances, resolve_tolerance_config


def test_defaults_created_on_first_use(store):
    tolerance = resolve_tolerance_config(store, tenant_id=1)

    assert tolerance.quantity_tolerance_pct == 5.0
    assert tolerance.price_tolerance_pct == 2.0
    assert tolerance.allow_payment_without_match is False

    # The row now exists and a second read returns it unchanged
    row = store.get_or_create_tolerance_config(1, {
        "quantity_tolerance_pct": 50,
        "price_tolerance_pct": 50,
        "allow_payment_without_match": True,
    })
    assert row["quantity_tolerance_pct"] == 5.0
    assert row["price_tolerance_pct"] == 2.0


def test_stored_values_are_used(store):
    resolve_tolerance_config(store, tenant_id=1)
    store.update_tolerance_config(1, price_tolerance_pct=10, allow_payment_without_match=True)

    tolerance = resolve_tolerance_config(store, tenant_id=1)

    assert tolerance.price_tolerance_pct == 10.0
    assert tolerance.quantity_tolerance_pct == 5.0
    assert tolerance.allow_payment_without_match is True


def test_tenants_are_independent(store):
    resolve_tolerance_config(store, tenant_id=1)
    store.update_tolerance_config(1, quantity_tolerance_pct=20)

    assert resolve_tolerance_config(store, tenant_id=2).quantity_tolerance_pct == 5.0


@pytest.mark.parametrize("raw", ["abc", 150, -1, 100])
def test_invalid_percentage_falls_back_to_default(store, raw):
    resolve_tolerance_config(store, tenant_id=1)
    store.update_tolerance_config(1, price_tolerance_pct=raw)

    tolerance = resolve_tolerance_config(store, tenant_id=1)

    assert tolerance.price_tolerance_pct == default_tolerances()["price_tolerance_pct"]


def test_malformed_flag_falls_back_to_default():
    config_store = Mock(spec=ConfigStore)
    config_store.get_or_create_tolerance_config.return_value = {
        "quantity_tolerance_pct": "7.5",
        "price_tolerance_pct": None,
        "allow_payment_without_match": "maybe",
    }

    tolerance = resolve_tolerance_config(config_store, tenant_id=3)

    assert tolerance.quantity_tolerance_pct == 7.5
    assert tolerance.price_tolerance_pct == 2.0
    assert tolerance.allow_payment_without_match is False


def test_storage_failure_propagates():
    config_store = Mock(spec=ConfigStore)
    config_store.get_or_create_tolerance_config.side_effect = sqlite3.OperationalError("database is locked")

    with pytest.raises(sqlite3.OperationalError):
        resolve_tolerance_config(config_store, tenant_id=1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
