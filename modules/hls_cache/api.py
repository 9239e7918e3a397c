"""
HLS 缓存 API 端点

曲目列表、播放列表与切片服务、URL 下载和文件上传任务、任务进度查询、曲目删除。
只读模式下只注册读取和播放相关的路由。
"""

from flask import jsonify, request, send_file, Response
from werkzeug.utils import secure_filename
import logging

from .artifacts import PLAYLIST_MIMETYPE, SEGMENT_MIMETYPE
from .errors import (
    DuplicateOriginError,
    ForbiddenPathError,
    JobNotFoundError,
    ServiceUnavailableError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

# 全局管理器实例（在 webserver.py 中初始化）
HLS_MANAGER = None


def init_hls_manager(manager):
    """初始化 HLS 缓存管理器

    Args:
        manager: HlsCacheManager 实例
    """
    global HLS_MANAGER
    HLS_MANAGER = manager
    logger.info("HLS cache manager initialized")


def register_routes(app, readonly: bool = False):
    """注册 HLS 缓存 API 路由

    Args:
        app: Flask 应用实例
        readonly: 只读模式，不注册下载、上传和删除路由
    """

    @app.route('/api/tracks', methods=['GET'])
    def hls_list_tracks():
        """获取所有已缓存曲目"""
        if HLS_MANAGER is None:
            return jsonify({"error": "HLS manager not initialized"}), 500
        return jsonify(HLS_MANAGER.list_tracks())

    @app.route('/api/mode', methods=['GET'])
    def hls_mode():
        """返回当前运行模式"""
        return jsonify({
            "readonly": readonly,
            "mode": "readonly" if readonly else "readwrite",
        })

    @app.route('/api/hls/<session_id>/playlist.m3u8', methods=['GET'])
    def hls_playlist(session_id):
        """获取会话的 m3u8 播放列表（每次请求计一次播放）

        Args:
            session_id: 会话 ID
        """
        if HLS_MANAGER is None:
            return "HLS manager not initialized", 500

        try:
            content = HLS_MANAGER.read_playlist(session_id)
        except SessionNotFoundError:
            return "Not found", 404

        return Response(content, mimetype=PLAYLIST_MIMETYPE)

    @app.route('/api/hls/<session_id>/<path:segment_name>', methods=['GET'])
    def hls_segment(session_id, segment_name):
        """获取切片文件

        Args:
            session_id: 会话 ID
            segment_name: 切片文件名
        """
        if HLS_MANAGER is None:
            return "HLS manager not initialized", 500

        try:
            path = HLS_MANAGER.resolve_segment(session_id, segment_name)
        except ForbiddenPathError:
            return "Forbidden", 403
        except SessionNotFoundError:
            return "Not found", 404

        return send_file(path, mimetype=SEGMENT_MIMETYPE, conditional=True)

    if readonly:
        return

    @app.route('/api/download', methods=['POST'])
    def hls_download():
        """提交 URL 下载转码任务

        请求体：
        {
            "url": "https://...",
            "title": "可选标题"
        }
        """
        if HLS_MANAGER is None:
            return jsonify({"error": "HLS manager not initialized"}), 500

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400

        url = data.get('url')
        title = data.get('title')
        if not isinstance(url, str) or not url.strip():
            return jsonify({"error": "Missing url"}), 400
        if title is not None and not isinstance(title, str):
            return jsonify({"error": "Invalid title"}), 400
        url = url.strip()
        title = (title or '').strip() or None

        try:
            job_id = HLS_MANAGER.submit_url(url, title)
        except DuplicateOriginError as e:
            return jsonify({"error": str(e), "id": e.job_id}), 409
        except ServiceUnavailableError as e:
            return jsonify({"error": str(e), "id": e.job_id}), 503

        return jsonify({"id": job_id, "status": "queued"}), 202

    @app.route('/api/download/<job_id>', methods=['GET'])
    def hls_download_status(job_id):
        """查询任务进度

        Args:
            job_id: 任务 ID
        """
        if HLS_MANAGER is None:
            return jsonify({"error": "HLS manager not initialized"}), 500

        try:
            return jsonify(HLS_MANAGER.get_job(job_id))
        except JobNotFoundError:
            return jsonify({"error": "Job not found"}), 404

    @app.route('/api/upload', methods=['POST'])
    def hls_upload():
        """上传音频文件并转码

        表单字段：file（必需），title（可选）
        """
        if HLS_MANAGER is None:
            return jsonify({"error": "HLS manager not initialized"}), 500

        upload = request.files.get('file')
        if upload is None or not upload.filename:
            return jsonify({"error": "Missing file"}), 400

        file_name = secure_filename(upload.filename)
        title = (request.form.get('title') or '').strip() or None

        try:
            job_id = HLS_MANAGER.submit_file(file_name, upload.save, title)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except DuplicateOriginError as e:
            return jsonify({"error": str(e), "id": e.job_id}), 409
        except ServiceUnavailableError as e:
            return jsonify({"error": str(e), "id": e.job_id}), 503

        return jsonify({"id": job_id, "status": "queued"}), 202

    @app.route('/api/tracks/<track_id>', methods=['DELETE'])
    def hls_delete_track(track_id):
        """删除曲目

        Args:
            track_id: 曲目 ID（缓存键）
        """
        if HLS_MANAGER is None:
            return jsonify({"error": "HLS manager not initialized"}), 500

        try:
            session = HLS_MANAGER.delete_track(track_id)
        except SessionNotFoundError:
            return jsonify({"error": "Track not found"}), 404

        return jsonify({
            "success": True,
            "message": f"Track '{session.title}' deleted",
        })


def get_hls_manager():
    """获取 HLS 缓存管理器实例

    Returns:
        HlsCacheManager 实例
    """
    return HLS_MANAGER
