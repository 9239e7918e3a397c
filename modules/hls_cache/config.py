"""
HLS 缓存配置模块

定义缓存目录、转码参数、外部工具路径以及任务保留策略的配置和默认值。
"""

import os
from dataclasses import dataclass
from typing import Tuple


# 可识别的音频文件扩展名（yt-dlp 下载结果及上传文件）
AUDIO_EXTENSIONS: Tuple[str, ...] = ("wav", "mp3", "mp4", "flac", "ogg", "m4a", "aac")

LEDGER_FILENAME = "hls_cache.json"
PLAYLIST_FILENAME = "playlist.m3u8"
DOWNLOADS_DIRNAME = "_downloads"


@dataclass
class HlsCacheConfig:
    """HLS 缓存配置

    从全局配置中读取 hls_cache 相关参数，提供默认值。
    """

    # 基础配置
    cache_dir: str = "./hls_cache"
    segment_duration: float = 10.0  # 切片时长（秒），转码时固定，之后不再变化

    # 编码参数
    audio_encoder: str = "aac"
    audio_bitrate: str = "128k"

    # 外部工具
    ffmpeg_path: str = "ffmpeg"
    ytdlp_path: str = "yt-dlp"
    audio_format: str = "mp3"  # yt-dlp 提取音频格式

    # 并发与超时
    max_workers: int = 2
    process_timeout: int = 3600

    # 任务保留策略
    max_finished_jobs: int = 500
    finished_job_ttl: int = 3600

    # 错误信息最大长度
    max_error_length: int = 2000

    # 上传限制
    max_upload_mb: int = 200

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'HlsCacheConfig':
        """从应用配置创建 HlsCacheConfig

        Args:
            app_config: 全局配置字典

        Returns:
            HlsCacheConfig 实例
        """
        section = app_config.get("hls_cache", {}) or {}

        config = cls()

        if "cache_dir" in section:
            config.cache_dir = section["cache_dir"] or config.cache_dir
        if "segment_duration" in section:
            config.segment_duration = float(section["segment_duration"] or 10.0)

        if "audio_encoder" in section:
            config.audio_encoder = section["audio_encoder"]
        if "audio_bitrate" in section:
            config.audio_bitrate = section["audio_bitrate"]

        if "ffmpeg_path" in section:
            config.ffmpeg_path = section["ffmpeg_path"] or "ffmpeg"
        if "ytdlp_path" in section:
            config.ytdlp_path = section["ytdlp_path"] or "yt-dlp"
        if "audio_format" in section:
            config.audio_format = section["audio_format"] or "mp3"

        if "max_workers" in section:
            config.max_workers = int(section["max_workers"] or 2)
        if "process_timeout" in section:
            config.process_timeout = int(section["process_timeout"] or 3600)

        if "max_finished_jobs" in section:
            config.max_finished_jobs = int(section["max_finished_jobs"] or 500)
        if "finished_job_ttl" in section:
            config.finished_job_ttl = int(section["finished_job_ttl"] or 3600)

        if "max_error_length" in section:
            config.max_error_length = int(section["max_error_length"] or 2000)
        if "max_upload_mb" in section:
            config.max_upload_mb = int(section["max_upload_mb"] or 200)

        return config

    def get_session_dir(self, session_id: str) -> str:
        """获取会话切片目录

        Args:
            session_id: 会话 ID

        Returns:
            切片目录路径
        """
        return os.path.join(self.cache_dir, session_id)

    def get_playlist_path(self, session_id: str) -> str:
        """获取会话播放列表路径

        Args:
            session_id: 会话 ID

        Returns:
            m3u8 文件路径
        """
        return os.path.join(self.get_session_dir(session_id), PLAYLIST_FILENAME)

    def get_segment_pattern(self, session_id: str) -> str:
        """获取切片文件名模式（用于 FFmpeg）

        Args:
            session_id: 会话 ID

        Returns:
            切片文件名模式，如 "/path/to/hls_cache/<id>/%03d.ts"
        """
        return os.path.join(self.get_session_dir(session_id), "%03d.ts")

    def get_downloads_root(self) -> str:
        """获取下载临时目录根路径"""
        return os.path.join(self.cache_dir, DOWNLOADS_DIRNAME)

    def get_job_dir(self, job_id: str) -> str:
        """获取任务工作目录（下载或上传的源文件存放处）

        Args:
            job_id: 任务 ID

        Returns:
            工作目录路径
        """
        return os.path.join(self.get_downloads_root(), job_id)


def get_hls_cache_config(app_config: dict) -> HlsCacheConfig:
    """获取 HLS 缓存配置的便捷函数

    Args:
        app_config: 全局配置字典

    Returns:
        HlsCacheConfig 实例
    """
    return HlsCacheConfig.from_app_config(app_config)
