"""
下载转码任务数据模型

定义任务的数据结构和状态流转：
queued → downloading → converting → ready，任何非终态都可以转入 error。
"""

import time
import copy
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List


class JobStatus(Enum):
    """任务状态枚举"""
    QUEUED = "queued"            # 已创建，尚未开始
    DOWNLOADING = "downloading"  # yt-dlp 下载中
    CONVERTING = "converting"    # FFmpeg 转码中
    READY = "ready"              # 已完成，会话已登记
    ERROR = "error"              # 失败


TERMINAL_STATUSES = (JobStatus.READY, JobStatus.ERROR)


@dataclass
class DownloadJob:
    """下载转码任务

    只存在于进程内存中，不持久化。
    """

    id: str
    status: JobStatus = JobStatus.QUEUED
    progress: Optional[str] = None
    error: Optional[str] = None
    session: Optional[Dict[str, Any]] = None

    # 已经历的状态（按顺序）
    history: List[str] = field(default_factory=list)

    # 时间戳
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def __post_init__(self):
        """初始化后处理"""
        if isinstance(self.status, str):
            self.status = JobStatus(self.status)
        if not self.history:
            self.history.append(self.status.value)

    def _transition(self, status: JobStatus):
        if self.is_finished():
            raise ValueError(f"Job {self.id} already finished with status {self.status.value}")
        self.status = status
        self.history.append(status.value)
        self.updated_at = time.time()
        if status in TERMINAL_STATUSES:
            self.finished_at = self.updated_at

    def mark_downloading(self, progress: str = "Starting download..."):
        """标记为下载中"""
        self._transition(JobStatus.DOWNLOADING)
        self.progress = progress

    def mark_converting(self, progress: str = "Converting to HLS format..."):
        """标记为转码中"""
        self._transition(JobStatus.CONVERTING)
        self.progress = progress

    def mark_ready(self, session: Dict[str, Any]):
        """标记为已完成

        Args:
            session: 会话结果视图
        """
        self._transition(JobStatus.READY)
        self.progress = None
        self.session = session

    def mark_error(self, error: str):
        """标记为错误

        Args:
            error: 错误信息
        """
        self._transition(JobStatus.ERROR)
        self.error = error

    def is_finished(self) -> bool:
        """判断任务是否已结束（完成或错误）

        Returns:
            是否已结束
        """
        return self.status in TERMINAL_STATUSES

    def copy(self) -> 'DownloadJob':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（用于 API 响应）

        Returns:
            字典表示
        """
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "error": self.error,
            "session": self.session,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
