"""
HLS 会话数据模型

一个会话即一次完整、可独立播放的转码结果：播放列表加切片文件。
"""

import os
from dataclasses import dataclass, asdict
from typing import Dict, Any


def playlist_url(session_id: str) -> str:
    """获取会话播放列表的 URL 路径"""
    return f"/api/hls/{session_id}/playlist.m3u8"


@dataclass
class HlsSession:
    """HLS 会话

    创建后 id、目录、切片数量和切片时长均不再变化，
    只有 listen_count 会通过 SessionStore.update 递增。
    """

    id: str
    title: str
    segments_dir: str
    playlist_path: str
    total_segments: int = 0
    segment_duration: float = 10.0
    origin_url: str = ""
    listen_count: int = 0

    def exists_on_disk(self) -> bool:
        """判断会话目录和播放列表是否都存在

        Returns:
            是否存在
        """
        return os.path.isdir(self.segments_dir) and os.path.isfile(self.playlist_path)

    def to_entry(self, file_hash: str) -> Dict[str, Any]:
        """转换为账本记录

        Args:
            file_hash: 缓存键

        Returns:
            可 JSON 序列化的字典
        """
        return {
            "file_hash": file_hash,
            "session_id": self.id,
            "title": self.title,
            "origin_url": self.origin_url,
            "segments_dir": self.segments_dir,
            "playlist_path": self.playlist_path,
            "total_segments": self.total_segments,
            "segment_duration": self.segment_duration,
            "listen_count": self.listen_count,
        }

    @classmethod
    def from_entry(cls, entry: Dict[str, Any]) -> 'HlsSession':
        """从账本记录还原会话

        Args:
            entry: 账本记录

        Returns:
            HlsSession 实例

        Raises:
            KeyError: 缺少必要字段
            ValueError: 字段类型错误
        """
        return cls(
            id=str(entry["session_id"]),
            title=str(entry["title"]),
            segments_dir=str(entry["segments_dir"]),
            playlist_path=str(entry["playlist_path"]),
            total_segments=int(entry["total_segments"]),
            segment_duration=float(entry["segment_duration"]),
            origin_url=str(entry.get("origin_url") or ""),
            listen_count=int(entry.get("listen_count") or 0),
        )

    def to_track_dict(self, file_hash: str) -> Dict[str, Any]:
        """转换为曲目列表视图（用于 API 响应）

        Args:
            file_hash: 缓存键，作为曲目 ID

        Returns:
            字典表示
        """
        return {
            "id": file_hash,
            "title": self.title,
            "url": playlist_url(self.id),
            "session_id": self.id,
            "total_segments": self.total_segments,
            "segment_duration": self.segment_duration,
            "listen_count": self.listen_count,
        }

    def to_result_dict(self, job_id: str) -> Dict[str, Any]:
        """转换为任务结果视图

        Args:
            job_id: 产生该会话的任务 ID

        Returns:
            字典表示
        """
        return {
            "id": job_id,
            "title": self.title,
            "session_id": self.id,
            "playlist_url": playlist_url(self.id),
            "total_segments": self.total_segments,
            "segment_duration": self.segment_duration,
        }

    def copy(self) -> 'HlsSession':
        return HlsSession(**asdict(self))
