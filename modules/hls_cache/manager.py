"""
HLS 缓存管理器

把会话存储、任务追踪器、下载转码流水线和文件服务组装在一起：
- 启动时加载账本并清理孤立目录
- 提交 URL / 上传任务，转码在后台线程池中执行
- 查询任务进度、列出曲目、删除曲目
"""

import os
import uuid
import shutil
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from .artifacts import ArtifactServer
from .config import HlsCacheConfig, DOWNLOADS_DIRNAME, LEDGER_FILENAME
from .errors import DuplicateOriginError, JobNotFoundError, ServiceUnavailableError, SessionNotFoundError
from .ffmpeg import FFmpegRunner
from .pipeline import ConversionPipeline
from .session import HlsSession
from .store import SessionStore
from .tracker import JobTracker
from .ytdlp import YtDlpRunner, is_audio_file

logger = logging.getLogger(__name__)


class HlsCacheManager:
    """HLS 缓存管理器"""

    def __init__(
        self,
        config: HlsCacheConfig,
        downloader=None,
        transcoder=None,
        executor: Optional[Executor] = None,
    ):
        """初始化管理器

        Args:
            config: 缓存配置
            downloader: 下载器，默认 YtDlpRunner
            transcoder: 转码器，默认 FFmpegRunner
            executor: 后台线程池，默认按 max_workers 创建
        """
        self.config = config
        self.downloader = downloader or YtDlpRunner(config)
        self.transcoder = transcoder or FFmpegRunner(config)
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=config.max_workers,
            thread_name_prefix="HlsConvert",
        )

        self.store = SessionStore(config.cache_dir)
        self.tracker = JobTracker(
            max_finished=config.max_finished_jobs,
            finished_ttl=config.finished_job_ttl,
        )
        self.pipeline = ConversionPipeline(
            config, self.store, self.tracker, self.downloader, self.transcoder
        )
        # 账本写入使用独立的单线程池，不与长时间运行的转码任务争用工作线程
        self.ledger_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="HlsLedger")
        self.artifacts = ArtifactServer(self.store, executor=self.ledger_executor)

    def start(self) -> int:
        """创建缓存目录、加载账本并清理孤立目录

        账本无法读取（或存在被隔离的损坏账本）时跳过清理，
        此时无法判断哪些目录仍属于曾经登记的会话。

        Returns:
            加载的会话数量
        """
        os.makedirs(self.config.cache_dir, exist_ok=True)
        count = self.store.load()
        if not self.store.ledger_readable or self.store.has_quarantined_ledger():
            logger.warning(f"Skipping orphan sweep of {self.config.cache_dir}: ledger was unreadable")
            return count

        removed = self.sweep_orphans()
        if removed:
            logger.info(f"Removed {removed} orphaned directories from {self.config.cache_dir}")
        return count

    def stop(self, wait: bool = True):
        """停止管理器（只关闭自己创建的转码线程池）"""
        if self._owns_executor:
            self.executor.shutdown(wait=wait)
        self.ledger_executor.shutdown(wait=wait)

    def sweep_orphans(self) -> int:
        """删除不属于任何存活会话的目录

        仅在启动时调用：此时没有进行中的任务，下载临时目录可以整体删除。
        只处理本服务创建的目录（_downloads 以及以 UUID 命名的会话目录），
        其它目录和文件一律保留。

        Returns:
            删除的目录数量
        """
        cache_dir = self.config.cache_dir
        owned = {os.path.realpath(path) for path in self.store.owned_directories()}
        removed = 0

        try:
            names = os.listdir(cache_dir)
        except OSError as e:
            logger.warning(f"Failed to scan cache directory {cache_dir}: {e}")
            return 0

        for name in names:
            path = os.path.join(cache_dir, name)
            if name == f"{LEDGER_FILENAME}.tmp":
                self._remove_path(path)
                continue
            if not os.path.isdir(path) or os.path.islink(path):
                continue
            if name != DOWNLOADS_DIRNAME:
                if not _is_session_dirname(name) or os.path.realpath(path) in owned:
                    continue
            if self._remove_path(path):
                removed += 1

        return removed

    def _remove_path(self, path: str) -> bool:
        try:
            if os.path.isdir(path):
                shutil.rmtree(path)
            else:
                os.remove(path)
            return True
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")
            return False

    def check_tools(self) -> Tuple[bool, bool]:
        """检查外部工具是否可用

        Returns:
            (ffmpeg 是否可用, yt-dlp 是否可用)
        """
        return self.transcoder.check_available(), self.downloader.check_available()

    def list_tracks(self) -> List[Dict[str, Any]]:
        """获取所有曲目

        Returns:
            曲目视图列表
        """
        return [session.to_track_dict(key) for key, session in self.store.list_all()]

    def submit_url(self, url: str, title: Optional[str] = None) -> str:
        """提交 URL 下载转码任务

        查重在当前线程同步完成，下载和转码在后台线程池中执行。

        Args:
            url: 来源 URL
            title: 标题

        Returns:
            任务 ID

        Raises:
            DuplicateOriginError: 该 URL 已缓存或正在处理（job_id 指向已失败的任务）
            ServiceUnavailableError: 服务正在关闭
        """
        job_id = self.tracker.create()
        try:
            key = self.pipeline.reserve_url(job_id, url)
        except DuplicateOriginError as e:
            e.job_id = job_id
            raise

        self._dispatch(job_id, key, self.pipeline.process_url, url, title)
        logger.info(f"Queued download job {job_id} for {url}")
        return job_id

    def submit_file(
        self,
        file_name: str,
        save_to: Callable[[str], None],
        title: Optional[str] = None,
    ) -> str:
        """提交上传文件转码任务

        Args:
            file_name: 已经过安全处理的文件名
            save_to: 把上传内容写入指定路径的函数
            title: 标题，为空时使用文件名

        Returns:
            任务 ID

        Raises:
            ValueError: 不是可识别的音频文件
            DuplicateOriginError: 相同内容已缓存或正在处理
            ServiceUnavailableError: 服务正在关闭
        """
        if not file_name or not is_audio_file(file_name):
            raise ValueError(f"Unsupported audio file: {file_name!r}")

        job_id = self.tracker.create(progress="Upload received")
        job_dir = self.config.get_job_dir(job_id)
        os.makedirs(job_dir, exist_ok=True)
        source_path = os.path.join(job_dir, file_name)
        try:
            save_to(source_path)
        except OSError as e:
            self._remove_path(job_dir)
            self.tracker.update(job_id, lambda job: job.mark_error(f"Failed to store upload: {e}"))
            raise

        try:
            key = self.pipeline.reserve_file(job_id, source_path)
        except DuplicateOriginError as e:
            e.job_id = job_id
            raise

        self._dispatch(job_id, key, self.pipeline.process_file, source_path, title)
        logger.info(f"Queued upload job {job_id} for {file_name}")
        return job_id

    def _dispatch(self, job_id: str, key: str, process: Callable, *args):
        """把已预留的任务交给转码线程池

        Raises:
            ServiceUnavailableError: 线程池已关闭，预留已释放，任务已标记为 error
        """
        try:
            self.executor.submit(process, job_id, *args, key)
        except RuntimeError as e:
            logger.warning(f"Job {job_id} not scheduled: {e}")
            self.store.release(key)
            job_dir = self.config.get_job_dir(job_id)
            if os.path.exists(job_dir):
                self._remove_path(job_dir)
            self.tracker.update(job_id, lambda job: job.mark_error("Service is shutting down"))
            raise ServiceUnavailableError(job_id) from e

    def get_job(self, job_id: str) -> Dict[str, Any]:
        """获取任务状态

        Raises:
            JobNotFoundError: 任务不存在
        """
        job = self.tracker.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job.to_dict()

    def delete_track(self, key: str) -> HlsSession:
        """删除曲目：移除会话、删除切片目录并持久化账本

        Args:
            key: 缓存键（曲目 ID）

        Returns:
            被删除的会话

        Raises:
            SessionNotFoundError: 曲目不存在
        """
        session = self.store.remove(key)
        if session is None:
            raise SessionNotFoundError(key)

        if os.path.exists(session.segments_dir):
            try:
                shutil.rmtree(session.segments_dir)
            except OSError as e:
                logger.warning(f"Failed to delete segments dir {session.segments_dir}: {e}")

        self.store.save()
        logger.info(f"Deleted track {key} ({session.title})")
        return session

    def read_playlist(self, session_id: str) -> bytes:
        return self.artifacts.read_playlist(session_id)

    def resolve_segment(self, session_id: str, name: str) -> str:
        return self.artifacts.resolve_segment(session_id, name)

    def get_status_summary(self) -> Dict[str, Any]:
        """获取状态摘要"""
        jobs = self.tracker.list_all()
        return {
            "total_tracks": len(self.store),
            "total_jobs": len(jobs),
            "active_jobs": sum(1 for job in jobs if not job.is_finished()),
        }


def _is_session_dirname(name: str) -> bool:
    try:
        return str(uuid.UUID(name)) == name
    except ValueError:
        return False


def get_hls_cache_manager(config: HlsCacheConfig, **kwargs) -> HlsCacheManager:
    """获取 HLS 缓存管理器实例

    Args:
        config: 缓存配置

    Returns:
        HlsCacheManager 实例
    """
    return HlsCacheManager(config, **kwargs)
