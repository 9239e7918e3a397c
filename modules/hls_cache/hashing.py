"""
内容寻址模块

为来源（URL 或上传文件）生成稳定的缓存键，用于去重和查找。
"""

import hashlib

_CHUNK_SIZE = 1024 * 1024


def derive_key(origin_url: str) -> str:
    """根据来源 URL 生成缓存键

    Args:
        origin_url: 原始 URL

    Returns:
        URL UTF-8 字节的 SHA-256 十六进制摘要
    """
    return hashlib.sha256(origin_url.encode("utf-8")).hexdigest()


def derive_file_key(path: str) -> str:
    """根据文件内容生成缓存键（用于上传文件）

    Args:
        path: 文件路径

    Returns:
        文件内容的 SHA-256 十六进制摘要
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
