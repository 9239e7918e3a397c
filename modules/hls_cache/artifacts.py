"""
HLS 文件服务

把 (会话 ID, 文件名) 解析为磁盘上的安全路径并读取内容。
切片路径在解析 .. 和符号链接之后必须仍位于会话自己的目录内。
"""

import os
import logging
import threading
from concurrent.futures import Executor
from typing import Optional, Tuple

from .errors import ForbiddenPathError, SessionNotFoundError
from .session import HlsSession
from .store import SessionStore

logger = logging.getLogger(__name__)

PLAYLIST_MIMETYPE = "application/vnd.apple.mpegurl"
SEGMENT_MIMETYPE = "video/mp2t"


def resolve_within(base_dir: str, name: str) -> str:
    """把文件名拼接到目录下，并确认结果仍位于该目录内

    Args:
        base_dir: 基准目录
        name: 请求的文件名（不可信）

    Returns:
        解析后的绝对路径

    Raises:
        ForbiddenPathError: 路径逃出基准目录
    """
    if not name or "\x00" in name:
        raise ForbiddenPathError(name)

    base_real = os.path.normcase(os.path.realpath(base_dir))
    candidate = os.path.realpath(os.path.join(base_dir, name))
    try:
        common = os.path.commonpath([os.path.normcase(candidate), base_real])
    except ValueError as e:
        raise ForbiddenPathError(name) from e
    if common != base_real or os.path.normcase(candidate) == base_real:
        raise ForbiddenPathError(name)
    return candidate


class ArtifactServer:
    """HLS 文件服务（只读访问会话存储）"""

    def __init__(self, store: SessionStore, executor: Optional[Executor] = None):
        """初始化文件服务

        Args:
            store: 会话存储
            executor: 用于异步持久化播放次数的线程池，为空时同步保存
        """
        self.store = store
        self.executor = executor
        self._save_lock = threading.Lock()
        self._save_pending = False

    def _resolve_session(self, session_id: str) -> Tuple[str, HlsSession]:
        found = self.store.find_by_session_id(session_id)
        if found is None:
            raise SessionNotFoundError(session_id)
        return found

    def read_playlist(self, session_id: str) -> bytes:
        """读取会话播放列表，并记录一次播放

        Args:
            session_id: 会话 ID

        Returns:
            m3u8 内容

        Raises:
            SessionNotFoundError: 会话不存在或播放列表无法读取
        """
        key, session = self._resolve_session(session_id)
        try:
            with open(session.playlist_path, "rb") as f:
                content = f.read()
        except OSError as e:
            logger.warning(f"Playlist unreadable for session {session_id}: {e}")
            raise SessionNotFoundError(session_id) from e

        self._record_listen(key)
        return content

    def _record_listen(self, key: str):
        def increment(session: HlsSession):
            session.listen_count += 1

        if self.store.update(key, increment) is None:
            return
        if self.executor is None:
            self.store.save()
            return

        # 同一时间最多排队一次保存；保存开始前清除标记，之后的播放会再排一次
        with self._save_lock:
            if self._save_pending:
                return
            self._save_pending = True
        try:
            self.executor.submit(self._flush_listens)
        except RuntimeError as e:
            logger.warning(f"Executor unavailable, saving listen count inline: {e}")
            self._flush_listens()

    def _flush_listens(self):
        with self._save_lock:
            self._save_pending = False
        self.store.save()

    def resolve_segment(self, session_id: str, name: str) -> str:
        """解析切片文件路径

        Args:
            session_id: 会话 ID
            name: 切片文件名

        Returns:
            切片文件绝对路径

        Raises:
            SessionNotFoundError: 会话或切片不存在
            ForbiddenPathError: 文件名逃出会话目录
        """
        _, session = self._resolve_session(session_id)
        try:
            path = resolve_within(session.segments_dir, name)
        except ForbiddenPathError:
            logger.warning(f"Rejected segment path {name!r} for session {session_id}")
            raise
        if not os.path.isfile(path):
            raise SessionNotFoundError(f"{session_id}/{name}")
        return path

    def read_segment(self, session_id: str, name: str) -> bytes:
        """读取切片内容

        Raises:
            SessionNotFoundError: 会话或切片不存在
            ForbiddenPathError: 文件名逃出会话目录
        """
        path = self.resolve_segment(session_id, name)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise SessionNotFoundError(f"{session_id}/{name}") from e
