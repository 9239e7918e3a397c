"""
下载转码流水线

驱动单个任务从头到尾执行：
- 预留缓存键（查重）
- 调用 yt-dlp 获取源文件（上传任务跳过）
- 调用 FFmpeg 生成 HLS 切片并解析播放列表
- 清理源文件，登记会话并持久化账本

任何一步失败都会释放预留、删除本任务产生的目录，并把任务标记为 error。
"""

import os
import uuid
import shutil
import logging
from typing import Callable, Optional

from .config import HlsCacheConfig
from .errors import CollaboratorError, DuplicateOriginError, HlsCacheError
from .hashing import derive_key, derive_file_key
from .playlist import read_segment_count
from .session import HlsSession
from .store import SessionStore
from .tracker import JobTracker
from .ytdlp import find_audio_file

logger = logging.getLogger(__name__)


class ConversionPipeline:
    """下载转码流水线

    同一任务内的步骤严格按顺序执行；不同任务之间互不影响。
    """

    def __init__(
        self,
        config: HlsCacheConfig,
        store: SessionStore,
        tracker: JobTracker,
        downloader,
        transcoder,
    ):
        """初始化流水线

        Args:
            config: 缓存配置
            store: 会话存储
            tracker: 任务追踪器
            downloader: 下载器，需提供 download(url, output_dir) -> (bool, error)
            transcoder: 转码器，需提供 transcode(source_path, output_dir) -> (bool, error)
        """
        self.config = config
        self.store = store
        self.tracker = tracker
        self.downloader = downloader
        self.transcoder = transcoder

    def reserve_url(self, job_id: str, url: str) -> str:
        """为 URL 任务预留缓存键

        Args:
            job_id: 任务 ID
            url: 来源 URL

        Returns:
            缓存键

        Raises:
            DuplicateOriginError: 该 URL 已缓存或正在处理，任务已被标记为 error
        """
        key = derive_key(url)
        try:
            self.store.reserve(key, url)
        except DuplicateOriginError as e:
            logger.info(f"Job {job_id} rejected as duplicate: {url}")
            self._fail(job_id, str(e))
            raise
        return key

    def reserve_file(self, job_id: str, source_path: str) -> str:
        """为上传任务预留缓存键（基于文件内容）

        Args:
            job_id: 任务 ID
            source_path: 已保存的上传文件

        Returns:
            缓存键

        Raises:
            DuplicateOriginError: 相同内容已缓存或正在处理
        """
        key = derive_file_key(source_path)
        try:
            self.store.reserve(key)
        except DuplicateOriginError as e:
            logger.info(f"Job {job_id} rejected as duplicate upload: {os.path.basename(source_path)}")
            self._remove_tree(self.config.get_job_dir(job_id))
            self._fail(job_id, str(e))
            raise
        return key

    def run_url(self, job_id: str, url: str, title: Optional[str] = None) -> Optional[HlsSession]:
        """同步执行完整的 URL 任务

        Returns:
            登记的会话，失败（包括重复）返回 None
        """
        try:
            key = self.reserve_url(job_id, url)
        except DuplicateOriginError:
            return None
        return self.process_url(job_id, url, title, key)

    def run_file(self, job_id: str, source_path: str, title: Optional[str] = None) -> Optional[HlsSession]:
        """同步执行完整的上传任务"""
        try:
            key = self.reserve_file(job_id, source_path)
        except DuplicateOriginError:
            return None
        return self.process_file(job_id, source_path, title, key)

    def process_url(self, job_id: str, url: str, title: Optional[str], key: str) -> Optional[HlsSession]:
        """执行已预留的 URL 任务：下载 → 转码 → 登记

        Args:
            job_id: 任务 ID
            url: 来源 URL
            title: 标题，为空时自动生成
            key: reserve_url 返回的缓存键

        Returns:
            登记的会话，失败返回 None
        """
        def acquire(job_dir: str) -> str:
            self.tracker.update(job_id, lambda job: job.mark_downloading())
            success, error = self.downloader.download(url, job_dir)
            if not success:
                raise CollaboratorError("yt-dlp", error or "download failed")
            source_path = find_audio_file(job_dir)
            if source_path is None:
                raise CollaboratorError("yt-dlp", "Downloaded file not found after yt-dlp completed")
            return source_path

        return self._execute(job_id, key, acquire, title, origin_url=url)

    def process_file(self, job_id: str, source_path: str, title: Optional[str], key: str) -> Optional[HlsSession]:
        """执行已预留的上传任务：转码 → 登记"""
        if not title:
            title = os.path.splitext(os.path.basename(source_path))[0]
        return self._execute(job_id, key, lambda job_dir: source_path, title, origin_url="")

    def _execute(
        self,
        job_id: str,
        key: str,
        acquire: Callable[[str], str],
        title: Optional[str],
        origin_url: str,
    ) -> Optional[HlsSession]:
        session_id = str(uuid.uuid4())
        session_dir = self.config.get_session_dir(session_id)
        playlist_path = self.config.get_playlist_path(session_id)
        job_dir = self.config.get_job_dir(job_id)

        try:
            os.makedirs(job_dir, exist_ok=True)
            source_path = acquire(job_dir)

            self.tracker.update(job_id, lambda job: job.mark_converting())
            success, error = self.transcoder.transcode(source_path, session_dir)
            if not success:
                raise CollaboratorError("FFmpeg", error or "transcode failed")

            total_segments = read_segment_count(playlist_path)
            if total_segments == 0:
                logger.warning(f"Job {job_id} produced a playlist without segments")
        except Exception as e:
            if not isinstance(e, (HlsCacheError, OSError)):
                logger.exception(f"Unexpected error in job {job_id}")
            self.store.release(key)
            self._remove_tree(job_dir)
            self._remove_tree(session_dir)
            self._fail(job_id, str(e))
            return None

        self._remove_source(source_path)
        self._remove_tree(job_dir)

        session = HlsSession(
            id=session_id,
            title=title or f"Track {session_id[:8]}",
            segments_dir=session_dir,
            playlist_path=playlist_path,
            total_segments=total_segments,
            segment_duration=self.config.segment_duration,
            origin_url=origin_url,
        )
        self.store.insert(key, session)
        self.store.save()

        result = session.to_result_dict(job_id)
        self.tracker.update(job_id, lambda job: job.mark_ready(result))
        logger.info(f"Job {job_id} ready: session {session_id} ({session.title}, {total_segments} segments)")
        return session

    def _fail(self, job_id: str, message: str):
        limit = self.config.max_error_length
        if len(message) > limit:
            message = message[:limit]
        logger.error(f"Job {job_id} failed: {message}")
        self.tracker.update(job_id, lambda job: job.mark_error(message))

    def _remove_source(self, source_path: str):
        try:
            os.remove(source_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete source file {source_path}: {e}")

    def _remove_tree(self, path: str):
        if not os.path.exists(path):
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Failed to remove directory {path}: {e}")
