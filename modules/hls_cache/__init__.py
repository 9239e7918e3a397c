"""
HLS 音频缓存模块

把远程 URL 或上传的音频文件转成 HLS 切片并提供播放服务，
同一来源只转码一次。

核心特性：
- 基于 SHA-256 的内容寻址，重复请求在调用任何外部工具前即被拒绝
- 内存会话映射 + JSON 账本，启动时按磁盘实际情况自动修正
- 任务状态 queued → downloading → converting → ready / error 可轮询
- 切片路径解析后做目录包含检查，拒绝路径穿越
"""

from .config import HlsCacheConfig, get_hls_cache_config
from .errors import (
    HlsCacheError,
    DuplicateOriginError,
    CollaboratorError,
    SessionNotFoundError,
    JobNotFoundError,
    ForbiddenPathError,
    ServiceUnavailableError,
)
from .hashing import derive_key, derive_file_key
from .session import HlsSession
from .store import SessionStore, load_ledger, save_ledger
from .job import DownloadJob, JobStatus
from .tracker import JobTracker, ReadWriteLock
from .ffmpeg import FFmpegRunner
from .ytdlp import YtDlpRunner
from .pipeline import ConversionPipeline
from .artifacts import ArtifactServer
from .manager import HlsCacheManager, get_hls_cache_manager

__all__ = [
    'HlsCacheConfig',
    'get_hls_cache_config',
    'HlsCacheError',
    'DuplicateOriginError',
    'CollaboratorError',
    'SessionNotFoundError',
    'JobNotFoundError',
    'ForbiddenPathError',
    'ServiceUnavailableError',
    'derive_key',
    'derive_file_key',
    'HlsSession',
    'SessionStore',
    'load_ledger',
    'save_ledger',
    'DownloadJob',
    'JobStatus',
    'JobTracker',
    'ReadWriteLock',
    'FFmpegRunner',
    'YtDlpRunner',
    'ConversionPipeline',
    'ArtifactServer',
    'HlsCacheManager',
    'get_hls_cache_manager',
]
