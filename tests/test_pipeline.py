"""Tests for the pipeline orchestrator.

Covers:
- White-background runs and resolves before any other job starts
- Dependent types use the white-background output and record it as parent
- One crashing job does not stop the rest of the batch
- Shared setup failures still end with batch-complete
- Per-job persistence, job record finalization and usage tracking
"""

import pytest
from fakes import (
    SOURCE,
    EventRecorder,
    FakeGeminiClient,
    FakeStorage,
    InMemoryGenerationStore,
    InMemoryUsageBackend,
    image_payload,
)

from floragen.models.generated_image import GeneratedImageStatus
from floragen.models.generation_job import GenerationJobStatus
from floragen.models.pipeline_job import PipelineJobStatus
from floragen.services.exceptions import SourceImageError
from floragen.services.generation.pipeline import (
    PipelineOrchestrator,
    PipelineRequest,
    run_pipeline,
)
from floragen.services.image_generation.gemini_client import GenerationResult
from floragen.services.image_generation.prompts import get_seed
from floragen.services.usage_ledger import UsageLedger


def ok(n: int) -> GenerationResult:
    return GenerationResult(success=True, image_base64=image_payload(n), mime_type="image/png")


def make_request(product, *image_types, **kwargs) -> PipelineRequest:
    return PipelineRequest(
        organization_id="org-1",
        product=product,
        source_image_url="https://cdn.test/source.jpg",
        image_types=tuple(image_types),
        **kwargs,
    )


class Harness:
    def __init__(self, client=None, storage=None, store=None, usage=None):
        self.client = client or FakeGeminiClient()
        self.storage = storage or FakeStorage()
        self.store = store or InMemoryGenerationStore()
        self.usage = usage or InMemoryUsageBackend()
        self.events = EventRecorder()
        self.orchestrator = PipelineOrchestrator(
            self.client, self.storage, self.store, UsageLedger(self.usage)
        )

    async def run(self, request):
        return await self.orchestrator.run(request, self.events)


def job_events(events, event_type):
    return [(e.job_id, e.image_type) for e in events.of_type(event_type)]


@pytest.mark.asyncio
async def test_white_background_resolves_before_any_other_job_starts(product):
    """White-background is generated first even when requested last."""
    harness = Harness()

    await harness.run(make_request(product, "detail", "tray", "white-background"))

    events = harness.events.events
    white_done = next(
        i
        for i, e in enumerate(events)
        if e.type in ("job-complete", "job-error") and e.image_type == "white-background"
    )
    other_starts = [
        i
        for i, e in enumerate(events)
        if e.type == "job-start" and e.image_type != "white-background"
    ]
    assert other_starts
    assert all(white_done < i for i in other_starts)

    # Remaining types keep request order
    assert [t for _, t in job_events(harness.events, "job-start")] == [
        "white-background",
        "detail",
        "tray",
    ]
    assert harness.events.types[0] == "batch-start"
    assert harness.events.types[-1] == "batch-complete"


@pytest.mark.asyncio
async def test_dependent_types_use_white_background_output_as_source(product):
    harness = Harness()

    jobs = await harness.run(
        make_request(
            product, "white-background", "measuring-tape", "tray", "danish-cart", "lifestyle"
        )
    )

    calls = harness.client.calls
    assert calls[0]["source_image_base64"] == SOURCE.base64
    for call in calls[1:4]:
        assert call["source_image_base64"] == image_payload(0)
        assert call["source_mime_type"] == "image/png"
    assert calls[4]["source_image_base64"] == SOURCE.base64

    white_image_id = jobs[0].generated_image_id
    assert white_image_id is not None
    by_type = {job.image_type: job for job in jobs}
    for dependent in ("measuring-tape", "tray", "danish-cart"):
        assert by_type[dependent].parent_image_id == white_image_id
        (record,) = harness.store.images_of_type(dependent.replace("-", "_"))
        assert record.parent_image_id == white_image_id
    assert by_type["lifestyle"].parent_image_id is None
    assert harness.store.images_of_type("lifestyle")[0].parent_image_id is None


@pytest.mark.asyncio
async def test_dependent_types_fall_back_to_original_when_white_background_fails(product):
    client = FakeGeminiClient(script=[GenerationResult.failed("Gemini API error 400: bad")])
    harness = Harness(client=client)

    jobs = await harness.run(make_request(product, "white-background", "measuring-tape"))

    assert jobs[0].status == PipelineJobStatus.FAILED
    assert jobs[1].status == PipelineJobStatus.COMPLETED
    assert client.calls[1]["source_image_base64"] == SOURCE.base64
    assert jobs[1].parent_image_id is None
    assert harness.events.types == [
        "batch-start",
        "job-start",
        "job-error",
        "job-start",
        "job-complete",
        "batch-complete",
    ]


@pytest.mark.asyncio
async def test_dependent_types_use_original_when_white_background_not_requested(product):
    harness = Harness()

    jobs = await harness.run(make_request(product, "tray", "danish-cart"))

    assert all(call["source_image_base64"] == SOURCE.base64 for call in harness.client.calls)
    assert all(job.parent_image_id is None for job in jobs)


@pytest.mark.asyncio
async def test_one_crashing_job_does_not_stop_the_batch(product):
    client = FakeGeminiClient(script=[ok(0), ok(1), RuntimeError("connection reset"), ok(3), ok(4)])
    harness = Harness(client=client)

    jobs = await harness.run(
        make_request(product, "detail", "composite", "lifestyle", "seasonal", "tray")
    )

    assert len(client.calls) == 5
    assert [job.status for job in jobs].count(PipelineJobStatus.COMPLETED) == 4
    crashed = jobs[2]
    assert crashed.status == PipelineJobStatus.FAILED
    assert crashed.error == "connection reset"

    (complete,) = harness.events.of_type("batch-complete")
    assert complete.success_count == 4
    assert complete.failed_count == 1
    assert job_events(harness.events, "job-error") == [("job-2-lifestyle", "lifestyle")]

    # The crash is still recorded as a failed generation
    (failed_record,) = harness.store.images_of_type("lifestyle")
    assert failed_record.status == GeneratedImageStatus.FAILED
    assert failed_record.error == "connection reset"
    assert failed_record.image_url == ""


@pytest.mark.asyncio
async def test_measuring_tape_chains_from_white_background(product):
    """Height 100cm: measuring tape is drawn on the white-background output."""
    harness = Harness()

    jobs = await harness.run(make_request(product, "white-background", "measuring-tape"))

    measuring_call = harness.client.calls[1]
    assert measuring_call["source_image_base64"] == image_payload(0)
    assert "100cm" in measuring_call["prompt"]
    assert "0cm" in measuring_call["prompt"]
    assert measuring_call["aspect_ratio"] == "3:4"
    assert jobs[1].parent_image_id == jobs[0].generated_image_id

    (complete,) = harness.events.of_type("batch-complete")
    assert (complete.success_count, complete.failed_count) == (2, 0)


@pytest.mark.asyncio
async def test_source_fetch_failure_fails_every_job(product):
    client = FakeGeminiClient(fetch_error=SourceImageError("Source image too large (max 50MB)"))
    harness = Harness(client=client)

    jobs = await harness.run(make_request(product, "white-background", "detail", "tray"))

    assert client.calls == []
    assert all(job.status == PipelineJobStatus.FAILED for job in jobs)
    assert all("too large" in job.error for job in jobs)
    assert harness.events.types == [
        "batch-start",
        "job-error",
        "job-error",
        "job-error",
        "batch-complete",
    ]
    (complete,) = harness.events.of_type("batch-complete")
    assert (complete.success_count, complete.failed_count) == (0, 3)

    (record,) = harness.store.jobs.values()
    assert record.status == GenerationJobStatus.FAILED
    assert record.failed_images == 3
    assert harness.usage.tracked == [("org-1", 0, 3)]


@pytest.mark.asyncio
async def test_job_record_creation_failure_fails_every_job(product):
    harness = Harness(store=InMemoryGenerationStore(fail_create_job=True))

    jobs = await harness.run(make_request(product, "detail", "lifestyle"))

    assert harness.client.fetched == []
    assert [job.status for job in jobs] == [PipelineJobStatus.FAILED] * 2
    (complete,) = harness.events.of_type("batch-complete")
    assert (complete.success_count, complete.failed_count) == (0, 2)


@pytest.mark.asyncio
async def test_source_is_fetched_once_per_batch(product):
    harness = Harness()

    await harness.run(make_request(product, "detail", "composite", "lifestyle"))

    assert harness.client.fetched == ["https://cdn.test/source.jpg"]


@pytest.mark.asyncio
async def test_upload_failure_is_a_job_failure(product):
    harness = Harness(storage=FakeStorage(fail_for="/tray-"))

    jobs = await harness.run(make_request(product, "detail", "tray", "lifestyle"))

    assert [job.status for job in jobs] == [
        PipelineJobStatus.COMPLETED,
        PipelineJobStatus.FAILED,
        PipelineJobStatus.COMPLETED,
    ]
    assert "Storage upload failed" in jobs[1].error


@pytest.mark.asyncio
async def test_returned_jobs_have_payloads_cleared(product):
    harness = Harness()

    jobs = await harness.run(make_request(product, "white-background", "tray"))

    assert all(job.status == PipelineJobStatus.COMPLETED for job in jobs)
    assert all(job.image_base64 is None and job.image_mime_type is None for job in jobs)
    assert all(job.image_url.startswith("https://storage.test/org-1/prod-1/") for job in jobs)


@pytest.mark.asyncio
async def test_generated_image_records_carry_generation_details(product):
    client = FakeGeminiClient(script=[ok(0), GenerationResult.failed("Gemini API error 400: x")])
    harness = Harness(client=client)

    await harness.run(
        make_request(product, "white-background", "lifestyle", source_image_id="img-9")
    )

    white, lifestyle = harness.store.images
    assert white.image_type == "white_background"
    assert white.status == GeneratedImageStatus.COMPLETED
    assert white.seed == get_seed("prod-1", "white-background")
    assert white.temperature == 0.3
    assert white.generation_model == "fake-image-model"
    assert white.source_image_id == "img-9"
    assert white.prompt_used
    assert white.generation_duration_ms >= 0

    assert lifestyle.status == GeneratedImageStatus.FAILED
    assert lifestyle.image_url == ""
    assert lifestyle.error == "Gemini API error 400: x"
    assert lifestyle.temperature == 0.8


@pytest.mark.asyncio
async def test_job_record_is_finalized_and_usage_tracked(product):
    client = FakeGeminiClient(script=[ok(0), GenerationResult.failed("no image")])
    harness = Harness(client=client)

    await harness.run(make_request(product, "detail", "seasonal"))

    (record,) = harness.store.jobs.values()
    assert record.status == GenerationJobStatus.COMPLETED
    assert (record.completed_images, record.failed_images) == (1, 1)
    assert record.completed_at is not None
    assert harness.usage.tracked == [("org-1", 1, 1)]


@pytest.mark.asyncio
async def test_all_jobs_failed_marks_record_failed(product):
    client = FakeGeminiClient(
        script=[GenerationResult.failed("a"), GenerationResult.failed("b")]
    )
    harness = Harness(client=client)

    await harness.run(make_request(product, "detail", "seasonal"))

    (record,) = harness.store.jobs.values()
    assert record.status == GenerationJobStatus.FAILED


@pytest.mark.asyncio
async def test_repeated_type_runs_as_independent_jobs(product):
    harness = Harness()

    jobs = await harness.run(make_request(product, "detail", "detail"))

    assert [job.id for job in jobs] == ["job-0-detail", "job-1-detail"]
    assert len(harness.client.calls) == 2


@pytest.mark.asyncio
async def test_request_settings_are_passed_to_the_client(product):
    harness = Harness()

    await harness.run(make_request(product, "detail", aspect_ratio="16:9", image_size="4096"))

    (call,) = harness.client.calls
    assert call["aspect_ratio"] == "16:9"
    assert call["image_size"] == "4096"
    assert call["temperature"] == 0.5
    assert call["seed"] == get_seed("prod-1", "detail")


@pytest.mark.asyncio
async def test_failing_event_handler_does_not_abort_the_run(product):
    def broken_handler(event):
        raise BrokenPipeError("client went away")

    orchestrator = PipelineOrchestrator(
        FakeGeminiClient(),
        FakeStorage(),
        InMemoryGenerationStore(),
        UsageLedger(InMemoryUsageBackend()),
    )

    jobs = await orchestrator.run(make_request(product, "detail", "tray"), broken_handler)

    assert all(job.status == PipelineJobStatus.COMPLETED for job in jobs)


@pytest.mark.asyncio
async def test_run_pipeline_function(product):
    events = EventRecorder()
    store = InMemoryGenerationStore()

    jobs = await run_pipeline(
        make_request(product, "white-background"),
        events,
        client=FakeGeminiClient(),
        storage=FakeStorage(),
        store=store,
        ledger=UsageLedger(InMemoryUsageBackend()),
    )

    assert len(jobs) == 1
    assert events.types == ["batch-start", "job-start", "job-complete", "batch-complete"]
    assert len(store.images) == 1
