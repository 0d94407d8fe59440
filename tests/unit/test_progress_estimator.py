"""
Unit tests for the Progress Estimator.
"""

import math
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock

from prcast.models.update import Update, UpdateStatus
from prcast.services.progress_estimator import (
    ProgressEstimationError,
    ProgressEstimator,
    format_completed_work,
    parse_progress,
)


@pytest.mark.parametrize("value,expected", [
    (42, 42),
    (42.5, 43),
    (42.4, 42),
    ("57", 57),
    ("57.5%", 58),
    (-10, 0),
    (150, 100),
    (0, 0),
    (100, 100),
])
def test_parse_progress_valid(value, expected):
    result = parse_progress(value)

    assert result == expected
    assert isinstance(result, int)


@pytest.mark.parametrize("value", [None, "about half", True, False, math.nan, math.inf, [50], {"v": 1}])
def test_parse_progress_rejects_non_numbers(value):
    assert parse_progress(value) is None


def test_format_completed_work():
    assert format_completed_work([]) == "No updates yet."
    assert format_completed_work([("Setup", "Initial scaffold"), ("Cart", None)]) == (
        "1. Setup: Initial scaffold\n2. Cart:"
    )


@pytest.fixture
def store():
    store = AsyncMock()
    store.list_completed_updates.return_value = [
        Update(id="u1", project_id="proj-1", title="Setup", summary="Initial scaffold",
               status=UpdateStatus.COMPLETED),
    ]
    return store


@pytest.fixture
def llm_client():
    return AsyncMock()


def make_estimator(store, llm_client):
    return ProgressEstimator(store, llm_client=llm_client, settings=SimpleNamespace(progress_model="gpt-4o-mini"))


@pytest.mark.asyncio
async def test_estimate_persists_progress(store, llm_client):
    llm_client.complete.return_value = '{"progress": 34.6}'

    progress = await make_estimator(store, llm_client).estimate(
        "proj-1", "Storefront", current_title="Checkout", current_summary="Adds checkout"
    )

    assert progress == 35
    store.set_project_progress.assert_awaited_once_with("proj-1", 35)
    prompt = llm_client.complete.call_args.args[1]
    assert "1. Setup: Initial scaffold" in prompt
    assert "2. Checkout: Adds checkout" in prompt


@pytest.mark.asyncio
async def test_estimate_without_scope(store, llm_client):
    assert await make_estimator(store, llm_client).estimate("proj-1", "  ") is None

    llm_client.complete.assert_not_called()
    store.set_project_progress.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ['{"progress": "unknown"}', "not json", '{"other": 5}', "[1]"])
async def test_estimate_non_numeric_is_not_persisted(store, llm_client, raw):
    llm_client.complete.return_value = raw

    assert await make_estimator(store, llm_client).estimate("proj-1", "Storefront") is None
    store.set_project_progress.assert_not_called()


@pytest.mark.asyncio
async def test_estimate_model_failure(store, llm_client):
    llm_client.complete.side_effect = Exception("timeout")

    with pytest.raises(ProgressEstimationError):
        await make_estimator(store, llm_client).estimate("proj-1", "Storefront")
