"""
任务追踪器

维护任务 ID 到任务记录的映射，供轮询进度使用：
- 读写锁：轮询读取远多于流水线写入
- 已结束任务按存活时间和数量淘汰，进行中的任务永不淘汰
"""

import time
import uuid
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional

from .job import DownloadJob

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """读写锁

    多个读者可并发持有；写者独占，并且排队的写者会阻止新读者进入。
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class JobTracker:
    """任务追踪器"""

    def __init__(self, max_finished: int = 500, finished_ttl: float = 3600):
        """初始化任务追踪器

        Args:
            max_finished: 保留的已结束任务最大数量
            finished_ttl: 已结束任务的最长保留时间（秒）
        """
        self.max_finished = max_finished
        self.finished_ttl = finished_ttl
        self.lock = ReadWriteLock()
        self._jobs: Dict[str, DownloadJob] = {}

    def create(self, progress: Optional[str] = "Starting download...") -> str:
        """创建新任务（状态为 queued）

        Args:
            progress: 初始进度提示

        Returns:
            任务 ID
        """
        job_id = str(uuid.uuid4())
        job = DownloadJob(id=job_id, progress=progress)
        with self.lock.write():
            self._jobs[job_id] = job
            self._sweep_locked(time.time())
        return job_id

    def get(self, job_id: str) -> Optional[DownloadJob]:
        """获取任务副本

        Args:
            job_id: 任务 ID

        Returns:
            DownloadJob 副本，不存在返回 None
        """
        with self.lock.read():
            job = self._jobs.get(job_id)
            return job.copy() if job else None

    def update(self, job_id: str, mutator: Callable[[DownloadJob], None]) -> Optional[DownloadJob]:
        """修改任务

        Args:
            job_id: 任务 ID
            mutator: 修改函数，如 lambda job: job.mark_converting()

        Returns:
            修改后的任务副本，不存在返回 None
        """
        with self.lock.write():
            job = self._jobs.get(job_id)
            if job is None:
                return None
            mutator(job)
            return job.copy()

    def list_all(self) -> List[DownloadJob]:
        with self.lock.read():
            return [job.copy() for job in self._jobs.values()]

    def sweep(self, now: Optional[float] = None) -> int:
        """淘汰过期的已结束任务

        Args:
            now: 当前时间戳，默认 time.time()

        Returns:
            淘汰的任务数量
        """
        with self.lock.write():
            return self._sweep_locked(now if now is not None else time.time())

    def _sweep_locked(self, now: float) -> int:
        finished = [job for job in self._jobs.values() if job.is_finished()]
        evicted = 0

        for job in finished:
            if now - (job.finished_at or job.updated_at) > self.finished_ttl:
                del self._jobs[job.id]
                evicted += 1

        remaining = sorted(
            (job for job in finished if job.id in self._jobs),
            key=lambda job: job.finished_at or job.updated_at,
        )
        overflow = len(remaining) - self.max_finished
        for job in remaining[:max(0, overflow)]:
            del self._jobs[job.id]
            evicted += 1

        if evicted:
            logger.debug(f"Evicted {evicted} finished jobs")
        return evicted

    def __len__(self) -> int:
        with self.lock.read():
            return len(self._jobs)
