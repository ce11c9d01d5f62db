"""
Job state store tests
"""

import pytest
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.schemas import ErrorInfo, Job
from orchestrator.storage import FileJobStateStore, InMemoryJobStateStore


def make_job() -> Job:
    return Job(
        job_id="job-1700000000000-abc123",
        slug="analyze-apple",
        query="Analyze Apple",
        status="failed",
        progress=[{"stage": "planning", "percent": 0}],
        current_report={"findings": [{"id": "f1"}]},
        error=ErrorInfo(message="Job cancelled by user", kind="cancelled", cancelled=True)
    )


@pytest.mark.asyncio
class TestInMemoryStore:

    async def test_put_get(self):
        store = InMemoryJobStateStore()
        job = make_job()

        await store.put(job.job_id, job)
        loaded = await store.get(job.job_id)

        assert loaded.model_dump() == job.model_dump()
        assert loaded is not job
        assert job.job_id in store
        assert len(store) == 1

    async def test_snapshot_is_taken_at_put(self):
        store = InMemoryJobStateStore()
        job = make_job()

        await store.put(job.job_id, job)
        job.query = "changed"

        assert (await store.get(job.job_id)).query == "Analyze Apple"

    async def test_missing(self):
        assert await InMemoryJobStateStore().get("job-unknown") is None


@pytest.mark.asyncio
class TestFileStore:

    async def test_put_get(self, tmp_path):
        store = FileJobStateStore(str(tmp_path / "jobs"))
        job = make_job()

        await store.put(job.job_id, job)
        loaded = await store.get(job.job_id)

        assert loaded.error.cancelled
        assert loaded.current_report == {"findings": [{"id": "f1"}]}
        assert (tmp_path / "jobs" / f"{job.job_id}.json").exists()

    async def test_missing(self, tmp_path):
        assert await FileJobStateStore(str(tmp_path)).get("job-unknown") is None

    async def test_rejects_path_traversal(self, tmp_path):
        store = FileJobStateStore(str(tmp_path))
        with pytest.raises(ValueError):
            await store.get("../etc/passwd")

    async def test_concurrent_puts_keep_last_snapshot(self, tmp_path):
        """Overlapping writes for one job never corrupt the document"""
        store = FileJobStateStore(str(tmp_path))
        job = make_job()

        for round_number in range(10):
            snapshots = []
            for size in range(8):
                snapshot = job.model_copy(deep=True)
                snapshot.progress = [{"stage": "s", "percent": i} for i in range(size * 20)]
                snapshot.query = f"round {round_number} size {size}"
                snapshots.append(snapshot)

            await asyncio.gather(*(store.put(job.job_id, s) for s in snapshots))
            loaded = await store.get(job.job_id)

            assert loaded.query == f"round {round_number} size 7"
            assert len(loaded.progress) == 140

        assert [p.name for p in tmp_path.iterdir()] == [f"{job.job_id}.json"]
