"""
FFmpeg 进程管理模块

负责构建和执行把音频文件切成 HLS 的 FFmpeg 命令。
"""

import os
import subprocess
import logging
from typing import List, Optional, Tuple

from .config import HlsCacheConfig, PLAYLIST_FILENAME

logger = logging.getLogger(__name__)


class FFmpegRunner:
    """FFmpeg 进程管理器

    输入一个音频文件和输出目录，生成 playlist.m3u8 以及 000.ts、001.ts ... 切片。
    """

    def __init__(self, config: HlsCacheConfig):
        """初始化 FFmpeg 运行器

        Args:
            config: 缓存配置
        """
        self.config = config
        self.ffmpeg_path = config.ffmpeg_path

    def build_command(self, source_path: str, output_dir: str) -> List[str]:
        """构建 FFmpeg 命令

        Args:
            source_path: 源音频文件
            output_dir: 会话输出目录

        Returns:
            FFmpeg 命令列表
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-i", source_path,
        ]

        # 音频编码参数
        cmd.extend(["-c:a", self.config.audio_encoder])
        if self.config.audio_bitrate:
            cmd.extend(["-b:a", self.config.audio_bitrate])

        # HLS 输出参数：保留所有切片，VOD 播放列表
        cmd.extend([
            "-f", "hls",
            "-hls_time", _format_duration(self.config.segment_duration),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", os.path.join(output_dir, "%03d.ts"),
            os.path.join(output_dir, PLAYLIST_FILENAME),
        ])

        return cmd

    def transcode(self, source_path: str, output_dir: str) -> Tuple[bool, Optional[str]]:
        """执行转码

        Args:
            source_path: 源音频文件
            output_dir: 会话输出目录

        Returns:
            (成功标志, 错误信息)
        """
        os.makedirs(output_dir, exist_ok=True)
        command = self.build_command(source_path, output_dir)
        logger.info(f"Starting FFmpeg: {' '.join(command)}")

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.config.process_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"FFmpeg timeout after {self.config.process_timeout}s for {source_path}")
            return False, f"timeout ({self.config.process_timeout}s)"
        except OSError as e:
            logger.error(f"Failed to start FFmpeg: {e}")
            return False, str(e)

        if result.returncode != 0:
            error_msg = result.stderr.strip() or f"exited with code {result.returncode}"
            logger.error(f"FFmpeg failed (code {result.returncode}) for {source_path}")
            return False, error_msg

        if not os.path.isfile(os.path.join(output_dir, PLAYLIST_FILENAME)):
            return False, "playlist not produced"

        return True, None

    def check_available(self) -> bool:
        """检查 ffmpeg 是否可用

        Returns:
            是否可用
        """
        return probe_version([self.ffmpeg_path, "-version"])


def _format_duration(seconds: float) -> str:
    if float(seconds).is_integer():
        return str(int(seconds))
    return str(seconds)


def probe_version(command: List[str]) -> bool:
    try:
        result = subprocess.run(command, capture_output=True, timeout=15)
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0
