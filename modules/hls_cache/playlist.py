"""
HLS 播放列表解析

读取 FFmpeg 生成的 m3u8，统计其中引用的媒体切片。
"""

from typing import List

SEGMENT_EXTENSION = ".ts"


def list_segments(content: str) -> List[str]:
    """列出播放列表中引用的切片文件

    Args:
        content: m3u8 文本

    Returns:
        切片条目列表（按出现顺序）
    """
    segments = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.endswith(SEGMENT_EXTENSION):
            segments.append(line)
    return segments


def count_segments(content: str) -> int:
    return len(list_segments(content))


def read_segment_count(playlist_path: str) -> int:
    """读取播放列表文件并统计切片数量

    Args:
        playlist_path: m3u8 文件路径

    Returns:
        切片数量，可能为 0

    Raises:
        OSError: 文件无法读取
    """
    with open(playlist_path, "r", encoding="utf-8", errors="replace") as f:
        return count_segments(f.read())
