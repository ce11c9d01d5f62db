"""
Job state persistence

Opaque async key-value stores for job snapshots:
    await store.get(job_id) -> Job | None
    await store.put(job_id, job)

The job manager treats every store as best-effort.
"""

import asyncio
import logging
import os
import re
import sys
import tempfile
import weakref
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.schemas import Job

logger = logging.getLogger(__name__)

SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class JobStateStore(ABC):
    """Persistence collaborator interface"""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    async def put(self, job_id: str, job: Job) -> None:
        pass


class InMemoryJobStateStore(JobStateStore):
    """Stores serialized snapshots in a dict (tests and single-process use)"""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, job_id: str) -> Optional[Job]:
        raw = self._data.get(job_id)
        return Job.from_json(raw) if raw is not None else None

    async def put(self, job_id: str, job: Job) -> None:
        self._data[job_id] = job.to_json()

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._data

    def __len__(self) -> int:
        return len(self._data)


class FileJobStateStore(JobStateStore):
    """
    One JSON document per job in a directory.

    File I/O runs in a worker thread so the event loop is never blocked.
    Writes for one job are applied one at a time in call order, each to
    its own temp file that is then renamed over the document.
    """

    def __init__(self, directory: str):
        """
        Initialize file store.

        Args:
            directory: Directory for job files (created if missing)
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _path(self, job_id: str) -> Path:
        if not SAFE_KEY.match(job_id):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return self.directory / f"{job_id}.json"

    def _read(self, job_id: str) -> Optional[Job]:
        path = self._path(job_id)
        if not path.exists():
            return None
        return Job.from_json(path.read_text(encoding="utf-8"))

    def _write(self, job_id: str, payload: str) -> None:
        path = self._path(job_id)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{job_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _lock(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._lock(job_id):
            return await asyncio.to_thread(self._read, job_id)

    async def put(self, job_id: str, job: Job) -> None:
        # Serialize on the loop so the snapshot matches the moment of the call
        payload = job.to_json()
        async with self._lock(job_id):
            await asyncio.to_thread(self._write, job_id, payload)
