#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import json
import argparse
import logging
from logging.handlers import TimedRotatingFileHandler

# Add current directory to Python path to ensure modules can be imported
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask
from flask_cors import CORS

from modules.hls_cache import HlsCacheConfig, get_hls_cache_manager
from modules.hls_cache import api as hls_api

# Configuration file path
CONFIG_FILE = "config/config.json"

DEFAULT_CONFIG = {
    "port": 8080,
    "readonly": False,
    "hls_cache": {
        "cache_dir": "./hls_cache",
        "segment_duration": 10.0,
        "audio_encoder": "aac",
        "audio_bitrate": "128k",
        "ffmpeg_path": "ffmpeg",
        "ytdlp_path": "yt-dlp",
        "audio_format": "mp3",
        "max_workers": 2,
        "process_timeout": 3600,
        "max_finished_jobs": 500,
        "finished_job_ttl": 3600,
        "max_error_length": 2000,
        "max_upload_mb": 200
    }
}


def setup_logging(log_dir: str = "logs"):
    """Configure console and rotating file logging"""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    # 配置较少日志输出的模块
    for module in ['werkzeug', 'urllib3']:
        logging.getLogger(module).setLevel(logging.WARNING)

    os.makedirs(log_dir, exist_ok=True)

    # 添加按日期滚动的文件处理器
    file_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, 'hls_server.log'),
        when='midnight',
        interval=1,
        backupCount=3  # 保留3天日志
    )
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    file_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(file_handler)


def load_config(config_file: str = CONFIG_FILE) -> dict:
    """Load configuration file, creating it with defaults if missing"""
    config = json.loads(json.dumps(DEFAULT_CONFIG))
    try:
        if os.path.exists(config_file):
            with open(config_file, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
            section = loaded_config.pop("hls_cache", None) or {}
            config.update(loaded_config)
            config["hls_cache"].update(section)
            logging.info(f"Loaded configuration file: {config_file}")
        else:
            config_dir = os.path.dirname(config_file)
            if config_dir:
                os.makedirs(config_dir, exist_ok=True)
            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config, f, ensure_ascii=False, indent=2)
            logging.info(f"Created default configuration file: {config_file}")
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file: {str(e)}")

    # 环境变量优先于配置文件
    if os.environ.get("HLS_CACHE_PATH"):
        config["hls_cache"]["cache_dir"] = os.environ["HLS_CACHE_PATH"]
    if os.environ.get("PORT"):
        config["port"] = int(os.environ["PORT"])

    return config


def create_app(manager, readonly: bool = False, max_upload_mb: int = 200) -> Flask:
    """Create the Flask application and register HLS routes"""
    app = Flask(__name__)
    CORS(app, allow_headers=["content-type", "range"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])
    app.config['MAX_CONTENT_LENGTH'] = max_upload_mb * 1024 * 1024

    hls_api.init_hls_manager(manager)
    hls_api.register_routes(app, readonly=readonly)
    return app


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='HLS 音频缓存服务')
    parser.add_argument('--port', type=int, default=None, help='监听端口（默认 8080）')
    parser.add_argument('--cache-path', default=None, help='HLS 缓存目录（默认 ./hls_cache）')
    parser.add_argument('--readonly', action='store_true', help='只读模式：禁止添加和删除曲目')
    parser.add_argument('--config', default=CONFIG_FILE, help='配置文件路径')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logging()

    app_config = load_config(args.config)
    if args.cache_path:
        app_config["hls_cache"]["cache_dir"] = args.cache_path
    port = args.port or int(app_config.get("port", 8080))
    readonly = args.readonly or bool(app_config.get("readonly", False))

    hls_config = HlsCacheConfig.from_app_config(app_config)
    manager = get_hls_cache_manager(hls_config)

    ffmpeg_ok, ytdlp_ok = manager.check_tools()
    if ffmpeg_ok:
        logging.info("FFmpeg found")
    else:
        logging.error("FFmpeg not found! Please install FFmpeg for HLS streaming.")
        sys.exit(1)
    if ytdlp_ok:
        logging.info("yt-dlp found")
    else:
        logging.warning("yt-dlp not found! URL downloads will not work. Install with: pip install yt-dlp")

    try:
        count = manager.start()
    except OSError as e:
        logging.error(f"Failed to create cache directory: {e}")
        sys.exit(1)

    logging.info(f"Starting HLS music server on port {port}")
    logging.info(f"HLS cache directory: {hls_config.cache_dir} ({count} tracks)")
    if readonly:
        logging.info("Running in READONLY mode - adding/removing tracks disabled")

    app = create_app(manager, readonly=readonly, max_upload_mb=hls_config.max_upload_mb)
    try:
        app.run(host='0.0.0.0', port=port, debug=False, threaded=True)
    finally:
        manager.stop(wait=False)


# Start the server
if __name__ == '__main__':
    main()
