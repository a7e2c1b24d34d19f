import anyio
import pytest

from conftest import FakeAudioSession, FakeConverter, RecordingStore, make_track
from downonspot.core import DownOnSpot
from downonspot.job_store import (
    Claimed,
    Converting,
    Done,
    Downloading,
    ErrorKind,
    JobStore,
)
from downonspot.pipeline import PipelineExecutor
from downonspot.utils.exceptions import StreamError
from downonspot.utils.models import AudioFormat, Expanded, TrackRef
from downonspot.utils.path_builder import PathBuilder
from downonspot.utils.tempfile_manager import TempFileManager
from downonspot.worker_pool import WorkerPool

pytestmark = pytest.mark.anyio


async def run_pool(tmp_path, metadata, session, store, concurrency, **options):
    async with TempFileManager(tmp_path / "tmp") as temp_files:
        executor = PipelineExecutor(
            store,
            metadata,
            session,
            FakeConverter(),
            PathBuilder(tmp_path / "out", "%title%", AudioFormat.OGG),
            temp_files,
            **options,
        )
        pool = WorkerPool(store, executor, concurrency, idle_poll=0.01)
        with anyio.fail_after(10):
            await pool.run()
    return pool


async def test_concurrency_limit_must_be_positive():
    with pytest.raises(ValueError):
        WorkerPool(JobStore(), None, 0)


@pytest.mark.parametrize("concurrency", [1, 2, 3])
async def test_never_exceeds_concurrency_limit(tmp_path, metadata, concurrency):
    session = FakeAudioSession(chunks=[b"x" * 10] * 3, delay=0.01)
    store = JobStore()
    for i in range(8):
        metadata.add_tracks(make_track(f"t{i}"))
        await store.enqueue(TrackRef(f"t{i}"))

    await run_pool(tmp_path, metadata, session, store, concurrency)

    assert session.max_active == concurrency
    assert all(isinstance(job.state, Done) for job in store.snapshot())
    assert sorted(session.opened) == sorted(f"t{i}" for i in range(8))


async def test_empty_store_returns_immediately(tmp_path, metadata):
    session = FakeAudioSession()
    await run_pool(tmp_path, metadata, session, JobStore(), 4)
    assert session.opened == []


async def test_failures_do_not_stop_other_jobs(tmp_path, metadata):
    session = FakeAudioSession(failures={"t1": StreamError("t1", "reset")})
    store = JobStore()
    for track_id in ("t0", "t1", "t2"):
        metadata.add_tracks(make_track(track_id))
        await store.enqueue(TrackRef(track_id))

    await run_pool(tmp_path, metadata, session, store, 2)

    states = {job.track_id: job.state for job in store.snapshot()}
    assert isinstance(states["t0"], Done)
    assert states["t1"].kind is ErrorKind.PROTOCOL
    assert isinstance(states["t2"], Done)


async def test_shutdown_lets_in_flight_jobs_finish(tmp_path, metadata):
    session = FakeAudioSession(chunks=[b"x" * 10] * 5, delay=0.02)
    store = JobStore()
    for i in range(4):
        metadata.add_tracks(make_track(f"t{i}"))
        await store.enqueue(TrackRef(f"t{i}"))

    async with TempFileManager(tmp_path / "tmp") as temp_files:
        executor = PipelineExecutor(
            store,
            metadata,
            session,
            FakeConverter(),
            PathBuilder(tmp_path / "out", "%title%", AudioFormat.OGG),
            temp_files,
        )
        pool = WorkerPool(store, executor, 2, idle_poll=0.01)

        async def stop_soon() -> None:
            await anyio.sleep(0.03)
            pool.request_shutdown()

        with anyio.fail_after(10):
            async with anyio.create_task_group() as tg:
                tg.start_soon(stop_soon)
                await pool.run()

    states = [job.state for job in store.snapshot()]
    assert pool.shutdown_requested
    assert states[:2] == [Done(states[0].path), Done(states[1].path)]
    assert store.queued_count == 2
    assert store.in_flight_count == 0


async def test_single_track_end_to_end(app_settings, metadata):
    metadata.add_tracks(make_track("abc123", "One More Time", artists=["Daft Punk"]))
    session = FakeAudioSession(chunks=[b"x" * 1000])
    store = RecordingStore()
    dos = DownOnSpot(app_settings, metadata, session, FakeConverter(), store)

    resolution = await dos.resolve_input("spotify:track:abc123")
    assert resolution == Expanded([TrackRef("abc123")])
    await dos.submit(resolution)

    with anyio.fail_after(10):
        summary = await dos.run()

    target = dos.paths.build_track_path(metadata.tracks["abc123"])
    assert store.history["abc123"] == [
        Claimed(),
        Downloading(0, 1000),
        Downloading(1000, 1000),
        Converting(),
        Done(str(target)),
    ]
    assert target.exists()
    assert store.get("abc123").display_name == "Daft Punk - One More Time"
    assert (summary.done, summary.total, summary.remaining) == (1, 1, 0.0)


async def test_mixed_outcomes_are_counted(app_settings, metadata):
    metadata.add_tracks(make_track("good"), make_track("bad"))
    session = FakeAudioSession(failures={"bad": StreamError("bad", "reset")})
    app_settings.downloader.concurrent_downloads = 2
    dos = DownOnSpot(app_settings, metadata, session, FakeConverter())
    await dos.submit(Expanded([TrackRef("good"), TrackRef("bad")]))
    rendered = []

    with anyio.fail_after(10):
        summary = await dos.run(render=rendered.append)

    assert (summary.waiting, summary.in_flight) == (0, 0)
    assert (summary.done, summary.failed, summary.skipped) == (1, 1, 0)
    assert summary.is_finished
    assert [failure.track_id for failure in summary.errors] == ["bad"]
    assert rendered[-1] == summary


async def test_second_run_skips_existing_files(app_settings, metadata):
    metadata.add_tracks(make_track("t1"))
    first = DownOnSpot(app_settings, metadata, FakeAudioSession(), FakeConverter())
    await first.enqueue_track("t1")
    await first.run()

    session = FakeAudioSession()
    second = DownOnSpot(app_settings, metadata, session, FakeConverter())
    await second.enqueue_track("t1")
    summary = await second.run()

    assert (summary.done, summary.skipped, summary.failed) == (0, 1, 0)
    assert session.opened == []
    assert second.store.get("t1").state.kind is ErrorKind.ALREADY_DOWNLOADED


async def test_submit_skips_duplicates(app_settings, metadata):
    dos = DownOnSpot(app_settings, metadata, FakeAudioSession(), FakeConverter())

    first = await dos.submit(Expanded([TrackRef("a", "A"), TrackRef("b", "B")]))
    second = await dos.submit(Expanded([TrackRef("b", "B"), TrackRef("c", "C")]))

    assert [job.track_id for job in first] == ["a", "b"]
    assert [job.track_id for job in second] == ["c"]
    assert len(dos.store) == 3


async def test_enqueue_track_survives_failed_lookup(app_settings, metadata):
    dos = DownOnSpot(app_settings, metadata, FakeAudioSession(), FakeConverter())

    job = await dos.enqueue_track("unknown")

    assert job.display_name == "unknown"


async def test_shutdown_before_run_claims_nothing(app_settings, metadata):
    metadata.add_tracks(make_track("t1"))
    session = FakeAudioSession()
    dos = DownOnSpot(app_settings, metadata, session, FakeConverter())
    await dos.enqueue_track("t1")

    dos.request_shutdown()
    summary = await dos.run()

    assert dos.shutdown_requested
    assert summary.waiting == 1
    assert session.opened == []
