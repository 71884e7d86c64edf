"""Property-based tests for conversion admission control."""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.conversion.errors import AdmissionRejected, ProcessFailure
from app.modules.conversion.models import ConversionJob, JobState
from app.modules.conversion.scheduler import ConversionScheduler


class TestAdmissionCounter:
    """Property tests for the in-flight counter."""

    @given(
        limit=st.integers(min_value=1, max_value=10),
        ops=st.lists(st.booleans(), max_size=100),
    )
    @settings(max_examples=200)
    def test_counter_stays_within_bounds(self, limit: int, ops: list[bool]) -> None:
        """For any sequence of acquire/release, 0 <= in_flight <= limit."""
        scheduler = ConversionScheduler(limit)
        held = 0

        for acquire in ops:
            if acquire:
                admitted = scheduler.try_acquire()
                assert admitted == (held < limit)
                if admitted:
                    held += 1
            elif held:
                scheduler.release()
                held -= 1

            assert scheduler.in_flight == held
            assert 0 <= scheduler.in_flight <= limit

    @given(limit=st.integers(min_value=1, max_value=20))
    @settings(max_examples=50)
    def test_limit_plus_one_is_rejected(self, limit: int) -> None:
        scheduler = ConversionScheduler(limit)

        assert all(scheduler.try_acquire() for _ in range(limit))
        assert scheduler.try_acquire() is False

        scheduler.release()
        assert scheduler.try_acquire() is True

    def test_release_without_acquire_raises(self) -> None:
        with pytest.raises(RuntimeError):
            ConversionScheduler(1).release()

    def test_limit_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ConversionScheduler(0)


class TestAdmitContext:
    """Slot handling around a job's execution."""

    @pytest.mark.asyncio
    async def test_slot_released_after_success(self) -> None:
        scheduler = ConversionScheduler(1)
        job = ConversionJob(state=JobState.VALIDATED)

        async with scheduler.admit(job):
            assert scheduler.in_flight == 1
            assert job.state == JobState.QUEUED

        assert scheduler.in_flight == 0

    @pytest.mark.asyncio
    async def test_slot_released_exactly_once_after_failure(self) -> None:
        scheduler = ConversionScheduler(1)

        with pytest.raises(ProcessFailure):
            async with scheduler.admit(ConversionJob(state=JobState.VALIDATED)):
                raise ProcessFailure()

        assert scheduler.in_flight == 0
        # Slot is usable again
        async with scheduler.admit(ConversionJob(state=JobState.VALIDATED)):
            assert scheduler.in_flight == 1

    @pytest.mark.asyncio
    async def test_slot_released_after_cancellation(self) -> None:
        scheduler = ConversionScheduler(1)
        entered = asyncio.Event()

        async def hold() -> None:
            async with scheduler.admit(ConversionJob(state=JobState.VALIDATED)):
                entered.set()
                await asyncio.sleep(3600)

        task = asyncio.create_task(hold())
        await entered.wait()
        assert scheduler.in_flight == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert scheduler.in_flight == 0

    @pytest.mark.asyncio
    async def test_rejection_carries_retry_after(self) -> None:
        scheduler = ConversionScheduler(1, retry_after_seconds=7)
        assert scheduler.try_acquire()

        job = ConversionJob(state=JobState.VALIDATED)
        with pytest.raises(AdmissionRejected) as exc_info:
            async with scheduler.admit(job):
                pass

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers == {"Retry-After": "7"}
        # Rejected job never took a slot and never moved forward
        assert scheduler.in_flight == 1
        assert job.state == JobState.VALIDATED

    @pytest.mark.asyncio
    async def test_concurrent_admissions_never_exceed_limit(self) -> None:
        scheduler = ConversionScheduler(3)
        peak = 0
        rejected = 0

        async def attempt() -> None:
            nonlocal peak, rejected
            try:
                async with scheduler.admit(ConversionJob(state=JobState.VALIDATED)):
                    peak = max(peak, scheduler.in_flight)
                    await asyncio.sleep(0.01)
            except AdmissionRejected:
                rejected += 1

        await asyncio.gather(*(attempt() for _ in range(10)))

        assert peak == 3
        assert rejected == 7
        assert scheduler.in_flight == 0
