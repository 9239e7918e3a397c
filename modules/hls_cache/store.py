"""
HLS 会话存储

负责已完成会话的内存映射及其持久化账本：
- 从账本加载会话，并校验磁盘上的目录和播放列表
- 整体写回账本（临时文件 + 原子替换）
- 按缓存键预留（claim），保证同一来源最多只有一个会话
"""

import os
import json
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from .config import LEDGER_FILENAME
from .errors import DuplicateOriginError
from .session import HlsSession

logger = logging.getLogger(__name__)


def get_ledger_path(cache_dir: str) -> str:
    return os.path.join(cache_dir, LEDGER_FILENAME)


def get_quarantine_prefix(cache_dir: str) -> str:
    return f"{get_ledger_path(cache_dir)}.corrupt"


def has_quarantined_ledger(cache_dir: str) -> bool:
    """判断缓存目录中是否存在被隔离的损坏账本

    Args:
        cache_dir: 缓存根目录

    Returns:
        是否存在
    """
    prefix = os.path.basename(get_quarantine_prefix(cache_dir))
    try:
        return any(name.startswith(prefix) for name in os.listdir(cache_dir))
    except OSError:
        return False


def load_ledger(cache_dir: str) -> Tuple[Dict[str, HlsSession], int, bool]:
    """从账本文件加载会话

    目录或播放列表已不存在的记录会被丢弃（视为孤立元数据，不是错误）。
    账本损坏时记录警告并返回空映射，服务仍可启动。

    Args:
        cache_dir: 缓存根目录

    Returns:
        (缓存键到会话的映射, 被丢弃的记录数, 账本是否可读)
        账本不存在视为可读；无法读取、JSON 损坏或结构错误时为 False
    """
    ledger_path = get_ledger_path(cache_dir)
    sessions: Dict[str, HlsSession] = {}
    dropped = 0

    if not os.path.exists(ledger_path):
        return sessions, dropped, True

    try:
        with open(ledger_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read {LEDGER_FILENAME}: {e}")
        return sessions, dropped, False

    entries = data.get("entries") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        logger.warning(f"Malformed {LEDGER_FILENAME}: missing entries list")
        return sessions, dropped, False

    for entry in entries:
        try:
            file_hash = str(entry["file_hash"])
            session = HlsSession.from_entry(entry)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed ledger entry: {e}")
            dropped += 1
            continue

        if not session.exists_on_disk():
            logger.info(f"Dropping stale ledger entry {session.id} ({session.title})")
            dropped += 1
            continue

        sessions[file_hash] = session

    logger.info(f"Loaded {len(sessions)} HLS cache entries from disk")
    return sessions, dropped, True


def save_ledger(cache_dir: str, sessions: Dict[str, HlsSession]) -> bool:
    """把会话映射整体写回账本

    先写临时文件再 os.replace，读者不会看到写了一半的账本。
    失败只记录警告，不抛出：运行期间内存中的映射才是权威数据。

    Args:
        cache_dir: 缓存根目录
        sessions: 会话映射快照

    Returns:
        是否写入成功
    """
    ledger_path = get_ledger_path(cache_dir)
    tmp_path = f"{ledger_path}.tmp"
    payload = {
        "entries": [session.to_entry(file_hash) for file_hash, session in sessions.items()]
    }

    try:
        os.makedirs(cache_dir, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, ledger_path)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Failed to save HLS cache: {e}")
        return False


class SessionStore:
    """会话存储

    单个互斥锁保护所有读写。锁内只做拷贝或修改，
    文件 I/O 总是在释放锁之后基于快照进行。
    """

    def __init__(self, cache_dir: str):
        """初始化会话存储

        Args:
            cache_dir: 缓存根目录（账本文件所在位置）
        """
        self.cache_dir = cache_dir
        self.lock = threading.Lock()
        self._sessions: Dict[str, HlsSession] = {}
        self._by_session_id: Dict[str, str] = {}
        # 进行中的转码预留：缓存键 -> 来源 URL（上传为空字符串）
        self._claims: Dict[str, str] = {}
        self.ledger_readable = True

    def load(self) -> int:
        """从账本加载会话，替换当前内存映射

        如果有记录被丢弃，立即重写账本，让磁盘与内存保持一致。
        账本无法解析时将其改名隔离，之后的保存不会覆盖原始内容。

        Returns:
            加载的会话数量
        """
        sessions, dropped, readable = load_ledger(self.cache_dir)
        with self.lock:
            self._sessions = sessions
            self._by_session_id = {s.id: key for key, s in sessions.items()}
            count = len(self._sessions)
        self.ledger_readable = readable

        if not readable:
            self._quarantine_ledger()
        elif dropped:
            logger.info(f"Pruned {dropped} stale ledger entries, rewriting ledger")
            self.save()
        return count

    def _quarantine_ledger(self):
        ledger_path = get_ledger_path(self.cache_dir)
        target = f"{get_quarantine_prefix(self.cache_dir)}-{int(time.time())}"
        try:
            os.replace(ledger_path, target)
            logger.warning(f"Moved unreadable ledger to {target}; orphan sweep disabled until it is resolved")
        except OSError as e:
            logger.warning(f"Failed to quarantine unreadable ledger {ledger_path}: {e}")

    def has_quarantined_ledger(self) -> bool:
        return has_quarantined_ledger(self.cache_dir)

    def save(self) -> bool:
        """持久化当前映射

        Returns:
            是否写入成功
        """
        with self.lock:
            snapshot = {key: session.copy() for key, session in self._sessions.items()}
        return save_ledger(self.cache_dir, snapshot)

    def get(self, key: str) -> Optional[HlsSession]:
        with self.lock:
            session = self._sessions.get(key)
            return session.copy() if session else None

    def find_by_origin(self, origin_url: str) -> Optional[Tuple[str, HlsSession]]:
        """按来源 URL 查找会话

        Args:
            origin_url: 来源 URL

        Returns:
            (缓存键, 会话副本)，不存在返回 None
        """
        if not origin_url:
            return None
        with self.lock:
            return self._find_by_origin_locked(origin_url)

    def _find_by_origin_locked(self, origin_url: str) -> Optional[Tuple[str, HlsSession]]:
        for key, session in self._sessions.items():
            if session.origin_url == origin_url:
                return key, session.copy()
        return None

    def find_by_session_id(self, session_id: str) -> Optional[Tuple[str, HlsSession]]:
        """按会话 ID 查找会话

        Args:
            session_id: 会话 ID

        Returns:
            (缓存键, 会话副本)，不存在返回 None
        """
        with self.lock:
            key = self._by_session_id.get(session_id)
            if key is None:
                return None
            return key, self._sessions[key].copy()

    def reserve(self, key: str, origin_url: str = "") -> None:
        """预留缓存键，开始一次转码前调用

        查重和登记在同一把锁内完成，同一来源的并发请求只有一个能成功。

        Args:
            key: 缓存键
            origin_url: 来源 URL（上传文件为空）

        Raises:
            DuplicateOriginError: 已存在会话或已有进行中的转码
        """
        with self.lock:
            existing = self._sessions.get(key)
            if existing is None and origin_url:
                found = self._find_by_origin_locked(origin_url)
                existing = found[1] if found else None
            if existing is not None:
                raise DuplicateOriginError(existing.title)

            if key in self._claims or (origin_url and origin_url in self._claims.values()):
                raise DuplicateOriginError()

            self._claims[key] = origin_url

    def release(self, key: str) -> None:
        with self.lock:
            self._claims.pop(key, None)

    def is_reserved(self, key: str) -> bool:
        with self.lock:
            return key in self._claims

    def insert(self, key: str, session: HlsSession) -> None:
        """登记会话，同时释放该键的预留

        Args:
            key: 缓存键
            session: 会话
        """
        with self.lock:
            previous = self._sessions.get(key)
            if previous is not None:
                self._by_session_id.pop(previous.id, None)
            self._sessions[key] = session.copy()
            self._by_session_id[session.id] = key
            self._claims.pop(key, None)

    def remove(self, key: str) -> Optional[HlsSession]:
        """移除会话

        Args:
            key: 缓存键

        Returns:
            被移除的会话，不存在返回 None
        """
        with self.lock:
            session = self._sessions.pop(key, None)
            if session is not None:
                self._by_session_id.pop(session.id, None)
            return session

    def update(self, key: str, mutator: Callable[[HlsSession], None]) -> Optional[HlsSession]:
        """原地修改会话（如递增播放次数）

        会话 ID 和目录在创建后不可修改，mutator 对它们的改动会被还原。

        Args:
            key: 缓存键
            mutator: 修改函数

        Returns:
            修改后的会话副本，不存在返回 None
        """
        with self.lock:
            session = self._sessions.get(key)
            if session is None:
                return None
            frozen = (session.id, session.segments_dir, session.playlist_path)
            mutator(session)
            session.id, session.segments_dir, session.playlist_path = frozen
            return session.copy()

    def list_all(self) -> List[Tuple[str, HlsSession]]:
        """获取所有会话的快照

        Returns:
            (缓存键, 会话副本) 列表
        """
        with self.lock:
            return [(key, session.copy()) for key, session in self._sessions.items()]

    def owned_directories(self) -> List[str]:
        """获取所有存活会话占用的目录"""
        with self.lock:
            return [session.segments_dir for session in self._sessions.values()]

    def __len__(self) -> int:
        with self.lock:
            return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        with self.lock:
            return key in self._sessions
