"""Tests for the per-organization concurrency guard."""

import pytest
from fakes import InMemoryGenerationStore

from floragen.services.concurrency_guard import ConcurrencyGuard, GuardOutcome


@pytest.mark.asyncio
async def test_processing_job_blocks_its_organization_only():
    store = InMemoryGenerationStore()
    await store.create_job("org-1", "prod-1", ["detail"])
    guard = ConcurrencyGuard(store)

    assert await guard.has_active_batch("org-1") is True
    assert await guard.has_active_batch("org-2") is False


@pytest.mark.asyncio
async def test_finished_job_does_not_block():
    store = InMemoryGenerationStore()
    job = await store.create_job("org-1", "prod-1", ["detail"])
    job.record_outcome(succeeded=True)
    job.finalize()

    check = await ConcurrencyGuard(store).check("org-1")

    assert check.outcome == GuardOutcome.IDLE
    assert check.blocks is False


@pytest.mark.asyncio
async def test_backend_error_permits_request():
    guard = ConcurrencyGuard(InMemoryGenerationStore(fail_active_check=True))

    check = await guard.check("org-1")

    assert check.outcome == GuardOutcome.BACKEND_UNAVAILABLE
    assert check.blocks is False
    assert "database unavailable" in check.error
    assert await guard.has_active_batch("org-1") is False
