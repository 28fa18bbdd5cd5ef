"""Tests for GrowthBook sync: cache gate, refresh, link and search cross-reference."""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_feature
from exptrack.models.experiment import utcnow
from exptrack.services.growthbook import GrowthBookError, GrowthBookNotConfiguredError
from exptrack.services.sync import (
    SYNC_TTL,
    ExperimentNotLinked,
    GrowthBookSyncService,
    RemoteFeatureNotFound,
    cache_age,
    is_stale,
)


def test_never_synced_is_stale():
    """Test that a missing sync time counts as infinitely stale."""
    assert cache_age(None) is None
    assert is_stale(None) is True


def test_within_ttl_is_fresh():
    now = datetime(2024, 3, 1, 12, 0, 0)
    assert is_stale(now - timedelta(minutes=4), now=now) is False
    assert is_stale(now - SYNC_TTL, now=now) is False


def test_past_ttl_is_stale():
    now = datetime(2024, 3, 1, 12, 0, 0)
    assert is_stale(now - timedelta(minutes=6), now=now) is True


def test_aware_timestamps_are_compared_in_utc():
    """Test that timezone-aware sync times are normalized before comparing."""
    now = datetime(2024, 3, 1, 12, 0, 0)
    synced = datetime(2024, 3, 1, 13, 58, 0, tzinfo=timezone(timedelta(hours=2)))
    assert cache_age(synced, now=now) == timedelta(minutes=2)


@pytest.mark.asyncio
async def test_enrich_unlinked_experiment_never_calls_remote(db, growthbook_client, growthbook_stub, experiment_factory):
    """Test that unlinked experiments are never enriched."""
    experiment = experiment_factory()

    remote = await GrowthBookSyncService(db, growthbook_client).enrich(experiment)

    assert remote is None
    assert growthbook_stub.requests == []


@pytest.mark.asyncio
async def test_enrich_skips_when_unconfigured(db, unconfigured_client, growthbook_stub, experiment_factory):
    growthbook_stub.add(make_feature("checkout-v2"))
    experiment = experiment_factory(growthbook_feature_id="checkout-v2")

    assert await GrowthBookSyncService(db, unconfigured_client).enrich(experiment) is None
    assert growthbook_stub.requests == []


@pytest.mark.asyncio
async def test_enrich_fresh_cache_skips_remote(db, growthbook_client, growthbook_stub, experiment_factory):
    """Test that a sync within the TTL does not call GrowthBook."""
    growthbook_stub.add(make_feature("checkout-v2"))
    synced_at = utcnow() - timedelta(minutes=4)
    experiment = experiment_factory(growthbook_feature_id="checkout-v2", last_synced_at=synced_at)

    remote = await GrowthBookSyncService(db, growthbook_client).enrich(experiment)

    assert remote is None
    assert len(growthbook_stub.feature_calls) == 0
    assert experiment.last_synced_at == synced_at


@pytest.mark.asyncio
async def test_enrich_stale_cache_fetches_once_and_records_sync(db, growthbook_client, growthbook_stub, experiment_factory):
    """Test that a stale sync fetches the feature once and builds the remote payload."""
    growthbook_stub.add(make_feature(
        "checkout-v2",
        rules=[
            {"type": "experiment", "condition": {"country": {"$in": ["US", "CA"]}},
             "variations": [{"value": False, "weight": 0.5}, {"value": True, "weight": 0.5}],
             "trackingKey": "checkout-v2"},
            {"type": "force", "value": True},
        ],
    ))
    synced_at = utcnow() - timedelta(minutes=6)
    experiment = experiment_factory(growthbook_feature_id="checkout-v2", last_synced_at=synced_at)

    remote = await GrowthBookSyncService(db, growthbook_client).enrich(experiment)

    assert len(growthbook_stub.feature_calls) == 1
    assert remote["feature_id"] == "checkout-v2"
    assert remote["enabled"] is True
    assert remote["has_experiments"] is True
    assert remote["has_overrides"] is True
    assert remote["has_rollouts"] is False
    assert remote["rule_count"] == 2
    assert remote["targeting_summary"] == ["country: US, CA"]
    assert remote["has_targeting"] is True
    assert [r["label"] for r in remote["rules"]] == ["A/B Test", "Override"]
    assert remote["experiments"][0]["tracking_key"] == "checkout-v2"
    assert remote["revision"]["version"] == 3

    db.refresh(experiment)
    assert experiment.last_synced_at > synced_at


@pytest.mark.asyncio
async def test_enrich_never_synced_is_fetched(db, growthbook_client, growthbook_stub, experiment_factory):
    growthbook_stub.add(make_feature("checkout-v2"))
    experiment = experiment_factory(growthbook_feature_id="checkout-v2")

    remote = await GrowthBookSyncService(db, growthbook_client).enrich(experiment)

    assert remote["key"] == "checkout-v2"
    assert experiment.last_synced_at is not None


@pytest.mark.asyncio
async def test_enrich_dangling_link_keeps_timestamp(db, growthbook_client, growthbook_stub, experiment_factory):
    """Test that a deleted remote feature is retried on every read."""
    synced_at = utcnow() - timedelta(minutes=10)
    experiment = experiment_factory(growthbook_feature_id="deleted-feature", last_synced_at=synced_at)
    service = GrowthBookSyncService(db, growthbook_client)

    assert await service.enrich(experiment) is None
    assert await service.enrich(experiment) is None

    db.refresh(experiment)
    assert experiment.last_synced_at == synced_at
    assert len(growthbook_stub.feature_calls) == 2


@pytest.mark.asyncio
async def test_enrich_unexpected_error_becomes_error_payload(db, growthbook_client, experiment_factory, monkeypatch):
    """Test that an exception from the client becomes an error payload."""
    experiment = experiment_factory(growthbook_feature_id="checkout-v2")

    async def explode(feature_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(growthbook_client, "get_feature", explode)

    remote = await GrowthBookSyncService(db, growthbook_client).enrich(experiment)

    assert remote == {"error": "Failed to fetch GrowthBook data", "message": "boom"}
    assert experiment.last_synced_at is None


@pytest.mark.asyncio
async def test_force_sync_ignores_fresh_cache(db, growthbook_client, growthbook_stub, experiment_factory):
    """Test that a forced sync fetches even inside the TTL."""
    growthbook_stub.add(make_feature("checkout-v2"))
    synced_at = utcnow() - timedelta(seconds=30)
    experiment = experiment_factory(growthbook_feature_id="checkout-v2", last_synced_at=synced_at)

    result = await GrowthBookSyncService(db, growthbook_client).force_sync(experiment)

    assert len(growthbook_stub.feature_calls) == 1
    assert result["success"] is True
    assert result["remote"]["key"] == "checkout-v2"
    assert result["last_synced_at"] >= synced_at


@pytest.mark.asyncio
async def test_force_sync_requires_link(db, growthbook_client, experiment_factory):
    with pytest.raises(ExperimentNotLinked):
        await GrowthBookSyncService(db, growthbook_client).force_sync(experiment_factory())


@pytest.mark.asyncio
async def test_force_sync_requires_configuration(db, unconfigured_client, experiment_factory):
    experiment = experiment_factory(growthbook_feature_id="checkout-v2")
    with pytest.raises(GrowthBookNotConfiguredError):
        await GrowthBookSyncService(db, unconfigured_client).force_sync(experiment)


@pytest.mark.asyncio
async def test_force_sync_missing_feature_surfaces(db, growthbook_client, experiment_factory):
    """Test that a forced sync reports a deleted feature instead of skipping it."""
    experiment = experiment_factory(growthbook_feature_id="deleted-feature")
    with pytest.raises(RemoteFeatureNotFound):
        await GrowthBookSyncService(db, growthbook_client).force_sync(experiment)
    assert experiment.last_synced_at is None


@pytest.mark.asyncio
async def test_force_sync_remote_failure_surfaces(db, growthbook_client, growthbook_stub, experiment_factory):
    growthbook_stub.fail_status = 502
    experiment = experiment_factory(growthbook_feature_id="checkout-v2")
    with pytest.raises(GrowthBookError):
        await GrowthBookSyncService(db, growthbook_client).force_sync(experiment)


@pytest.mark.asyncio
async def test_link_then_unlink(db, growthbook_client, growthbook_stub, experiment_factory):
    """Test that linking sets the feature id and sync time and unlinking clears both."""
    growthbook_stub.add(make_feature("checkout-v2"))
    experiment = experiment_factory()
    service = GrowthBookSyncService(db, growthbook_client)

    feature = await service.link(experiment, "checkout-v2")

    assert feature.id == "checkout-v2"
    assert experiment.growthbook_feature_id == "checkout-v2"
    assert experiment.last_synced_at is not None

    service.unlink(experiment)

    assert experiment.growthbook_feature_id is None
    assert experiment.last_synced_at is None


@pytest.mark.asyncio
async def test_link_to_missing_feature_writes_nothing(db, growthbook_client, experiment_factory):
    experiment = experiment_factory()

    with pytest.raises(RemoteFeatureNotFound):
        await GrowthBookSyncService(db, growthbook_client).link(experiment, "nope")

    db.refresh(experiment)
    assert experiment.growthbook_feature_id is None


@pytest.mark.asyncio
async def test_search_marks_linked_features(db, growthbook_client, growthbook_stub, experiment_factory):
    """Test that search results say which experiment each feature is linked to."""
    growthbook_stub.add(make_feature("f1", key="checkout-f1"))
    growthbook_stub.add(make_feature("f2", key="checkout-f2"))
    growthbook_stub.add(make_feature("f3", key="checkout-f3"))
    first = experiment_factory(name="First", growthbook_feature_id="f1")
    second = experiment_factory(name="Second", exp_parameter="second", growthbook_feature_id="f2")
    experiment_factory(name="Unlinked", exp_parameter="unlinked")

    results = await GrowthBookSyncService(db, growthbook_client).search_with_link_status("checkout")
    by_id = {r["id"]: r for r in results}

    assert by_id["f1"]["already_linked"] is True
    assert by_id["f1"]["linked_to"] == {"experiment_id": str(first.id), "experiment_name": "First"}
    assert by_id["f2"]["already_linked"] is True
    assert by_id["f2"]["linked_to"]["experiment_id"] == str(second.id)
    assert by_id["f3"]["already_linked"] is False
    assert by_id["f3"]["linked_to"] is None
