"""
yt-dlp 下载模块

调用 yt-dlp 把远程 URL 提取为单个音频文件。
"""

import os
import subprocess
import logging
from typing import List, Optional, Tuple

from .config import HlsCacheConfig, AUDIO_EXTENSIONS
from .ffmpeg import probe_version

logger = logging.getLogger(__name__)


def is_audio_file(path: str) -> bool:
    """根据扩展名判断是否为可识别的音频文件

    Args:
        path: 文件路径

    Returns:
        是否为音频文件
    """
    ext = os.path.splitext(path)[1].lstrip(".").lower()
    return ext in AUDIO_EXTENSIONS


def find_audio_file(directory: str) -> Optional[str]:
    """在目录中查找第一个音频文件（按文件名排序）

    Args:
        directory: 目录

    Returns:
        音频文件路径，找不到返回 None
    """
    try:
        names = sorted(os.listdir(directory))
    except OSError:
        return None
    for name in names:
        path = os.path.join(directory, name)
        if os.path.isfile(path) and is_audio_file(path):
            return path
    return None


class YtDlpRunner:
    """yt-dlp 运行器"""

    def __init__(self, config: HlsCacheConfig):
        """初始化 yt-dlp 运行器

        Args:
            config: 缓存配置
        """
        self.config = config
        self.ytdlp_path = config.ytdlp_path

    def build_command(self, url: str, output_dir: str) -> List[str]:
        """构建 yt-dlp 命令

        Args:
            url: 来源 URL
            output_dir: 下载目录

        Returns:
            yt-dlp 命令列表
        """
        return [
            self.ytdlp_path,
            "-x",
            "--audio-format", self.config.audio_format,
            "--audio-quality", "0",
            "-o", os.path.join(output_dir, "audio.%(ext)s"),
            "--no-playlist",
            "--force-overwrites",
            url,
        ]

    def download(self, url: str, output_dir: str) -> Tuple[bool, Optional[str]]:
        """下载音频

        Args:
            url: 来源 URL
            output_dir: 下载目录（任务独占）

        Returns:
            (成功标志, 错误信息)
        """
        os.makedirs(output_dir, exist_ok=True)
        command = self.build_command(url, output_dir)
        logger.info(f"Starting yt-dlp: {' '.join(command)}")

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.config.process_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"yt-dlp timeout after {self.config.process_timeout}s for {url}")
            return False, f"timeout ({self.config.process_timeout}s)"
        except OSError as e:
            logger.error(f"Failed to start yt-dlp: {e}")
            return False, str(e)

        if result.returncode != 0:
            logger.error(f"yt-dlp failed (code {result.returncode}) for {url}")
            return False, f"{result.stderr.strip()} {result.stdout.strip()}".strip()

        return True, None

    def check_available(self) -> bool:
        """检查 yt-dlp 是否可用"""
        return probe_version([self.ytdlp_path, "--version"])
