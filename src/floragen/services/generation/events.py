"""Pipeline progress events and their Server-Sent Events transport.

Events are delivered in the order they are produced to a single consumer.
There is no replay: if the consumer goes away the run continues and the
remaining events are dropped. GenerationJob and GeneratedImage rows are the
durable record.
"""

import asyncio
from typing import Annotated, Any, AsyncIterator, Awaitable, Callable, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = structlog.get_logger(__name__)


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class BatchStartEvent(_Event):
    type: Literal["batch-start"] = "batch-start"
    total_jobs: int


class JobStartEvent(_Event):
    type: Literal["job-start"] = "job-start"
    job_id: str
    image_type: str


class JobCompleteEvent(_Event):
    type: Literal["job-complete"] = "job-complete"
    job_id: str
    image_type: str
    image_url: str


class JobErrorEvent(_Event):
    type: Literal["job-error"] = "job-error"
    job_id: str
    image_type: str
    error: str


class BatchCompleteEvent(_Event):
    type: Literal["batch-complete"] = "batch-complete"
    success_count: int
    failed_count: int


PipelineEvent = Annotated[
    Union[BatchStartEvent, JobStartEvent, JobCompleteEvent, JobErrorEvent, BatchCompleteEvent],
    Field(discriminator="type"),
]

EventHandler = Callable[[PipelineEvent], None]


def format_sse(event: PipelineEvent) -> str:
    """Render one event as an SSE frame (``event:`` line, JSON ``data:`` line, blank line)."""
    return f"event: {event.type}\ndata: {event.model_dump_json(by_alias=True)}\n\n"


class EventChannel:
    """Bridges the pipeline's synchronous ``on_event`` callback to an async consumer."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PipelineEvent | None] = asyncio.Queue()
        self._closed = False
        self._detached = False

    def publish(self, event: PipelineEvent) -> None:
        if self._closed or self._detached:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        """Producer finished; the consumer sees end of stream after pending events."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def detach(self) -> None:
        """Consumer went away; later events are dropped."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self) -> AsyncIterator[PipelineEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[PipelineEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


# Runs outlive their HTTP response when the client disconnects
_background_runs: set[asyncio.Task] = set()


def _on_run_done(task: asyncio.Task) -> None:
    _background_runs.discard(task)
    if task.cancelled():
        logger.warning("event_stream.run_cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "event_stream.run_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )


async def stream_events(run: Callable[[EventHandler], Awaitable[Any]]) -> AsyncIterator[str]:
    """Drive ``run(on_event)`` as a task and yield its events as SSE frames.

    Closing this generator early (client disconnect) does not cancel the run.
    """
    channel = EventChannel()

    async def _drive() -> None:
        try:
            await run(channel.publish)
        finally:
            channel.close()

    task = asyncio.create_task(_drive())
    _background_runs.add(task)
    task.add_done_callback(_on_run_done)

    try:
        async for event in channel:
            yield format_sse(event)
    finally:
        if not task.done():
            logger.info("event_stream.consumer_detached")
        channel.detach()
