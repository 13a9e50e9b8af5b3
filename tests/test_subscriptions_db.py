"""Tests for subscription tier storage."""

from uuid import uuid4

import pytest

from app.db import subscriptions


def test_list_tiers_hides_invisible_and_inactive(db) -> None:
    subscriptions.create_tier({"name": "professional", "sort_order": 2, "is_visible": True})
    subscriptions.create_tier({"name": "starter", "sort_order": 1, "is_visible": True})
    subscriptions.create_tier({"name": "internal", "sort_order": 3, "is_visible": False})
    db.tables["subscription_tiers"].append(
        {"id": str(uuid4()), "name": "legacy", "sort_order": 0, "is_visible": True, "is_active": False}
    )

    visible = subscriptions.list_tiers()
    everything = subscriptions.list_tiers(include_hidden=True)

    assert [t["name"] for t in visible] == ["starter", "professional"]
    assert [t["name"] for t in everything] == ["starter", "professional", "internal"]


def test_update_tier(db) -> None:
    tier = subscriptions.create_tier({"name": "starter", "sort_order": 1, "is_visible": True})

    updated = subscriptions.update_tier(tier["id"], {"monthly_price_pence": 4900})

    assert updated["monthly_price_pence"] == 4900
    assert subscriptions.get_tier(tier["id"])["monthly_price_pence"] == 4900


def test_update_missing_tier_raises(db) -> None:
    with pytest.raises(ValueError, match="not found"):
        subscriptions.update_tier(uuid4(), {"sort_order": 9})


def test_api_key_limits() -> None:
    assert subscriptions.api_key_rate_limit_for_tier("Starter") == 500
    assert subscriptions.api_key_rate_limit_for_tier("unlimited") is None
    with pytest.raises(ValueError):
        subscriptions.api_key_rate_limit_for_tier("platinum")
