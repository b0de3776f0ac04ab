"""
Logging configuration and utilities.
统一管理爬虫会话、版本服务和数据库的日志配置
支持按天轮转、保留策略和自动清理
"""

import logging
import logging.handlers
import sys
import time
import functools
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime, timedelta
import threading

import schedule
import structlog


PROJECT_ROOT = Path(__file__).parent.parent.parent

# 业务日志文件映射
BUSINESS_LOGS = {
    # 爬虫相关
    "crawler_eprocure": "logs/crawler_eprocure.log",
    "crawler_cppp": "logs/crawler_cppp.log",
    "browser": "logs/browser.log",

    # 会话与调度
    "session_registry": "logs/session_registry.log",
    "crawl_service": "logs/crawl_service.log",
    "worker_pool": "logs/worker_pool.log",

    # 数据相关
    "database": "logs/database.log",
    "versioning": "logs/versioning.log",

    # 系统相关
    "system": "logs/system.log",
    "error": "logs/error.log",
}

_cleanup_thread: Optional[threading.Thread] = None
_cleanup_lock = threading.Lock()


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    retention_days: int = 7
) -> None:
    """
    Set up logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path, rotated at midnight
        retention_days: Number of days to retain log files
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_file,
            when='midnight',
            interval=1,
            backupCount=retention_days,
            encoding='utf-8'
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        ))
        root_logger.addHandler(file_handler)

        _start_log_cleanup_scheduler(log_path.parent, retention_days)


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    Args:
        name: Logger name (typically __name__)
    """
    return logging.getLogger(name)


def get_structured_logger(name: str, **initial_values: Any):
    """Get a structlog logger bound to the given context values."""
    return structlog.get_logger(name).bind(**initial_values)


def get_business_logger(business_name: str, log_level: str = "INFO") -> logging.Logger:
    """
    获取业务日志记录器

    Args:
        business_name: 业务名称 (如 'crawler_cppp', 'session_registry')
        log_level: 日志级别

    Returns:
        配置好的日志记录器
    """
    log_file = BUSINESS_LOGS.get(business_name, f"logs/{business_name}.log")

    logger = logging.getLogger(f"business.{business_name}")

    # 已经配置过，直接返回
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, log_level.upper()))

    log_path = PROJECT_ROOT / log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_path,
        when='midnight',
        interval=1,
        backupCount=7,
        encoding='utf-8'
    )
    file_handler.suffix = "%Y-%m-%d"
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    logger.addHandler(file_handler)

    # 控制台只输出ERROR及以上
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.ERROR)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(console_handler)

    return logger


def _start_log_cleanup_scheduler(logs_dir: Path, retention_days: int) -> None:
    """启动日志清理调度器 (每个进程只启动一次)"""
    global _cleanup_thread

    with _cleanup_lock:
        if _cleanup_thread is not None and _cleanup_thread.is_alive():
            return

        def cleanup_job():
            try:
                cleanup_old_logs(logs_dir, retention_days)
            except OSError as e:
                logging.getLogger(__name__).warning(f"Log cleanup failed: {e}")

        # 每天凌晨2点执行清理
        schedule.every().day.at("02:00").do(cleanup_job)

        def run_scheduler():
            while True:
                schedule.run_pending()
                time.sleep(60)

        _cleanup_thread = threading.Thread(target=run_scheduler, name="LogCleanup", daemon=True)
        _cleanup_thread.start()


def cleanup_old_logs(logs_dir: Optional[Path] = None, retention_days: int = 7) -> int:
    """
    清理超过保留期的日志文件

    Args:
        logs_dir: 日志目录路径
        retention_days: 保留天数

    Returns:
        清理的文件数量
    """
    if logs_dir is None:
        logs_dir = PROJECT_ROOT / "logs"

    logs_dir = Path(logs_dir)
    if not logs_dir.exists():
        return 0

    logger = logging.getLogger(__name__)
    cleaned_count = 0
    cutoff_date = datetime.now() - timedelta(days=retention_days)

    for log_file in logs_dir.glob("*.log*"):
        if not log_file.is_file():
            continue
        file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
        if file_mtime < cutoff_date:
            log_file.unlink()
            cleaned_count += 1
            logger.info(f"Removed expired log file: {log_file.name}")

    if cleaned_count > 0:
        logger.info(f"Log cleanup finished, removed {cleaned_count} files")

    return cleaned_count


def get_log_statistics(logs_dir: Optional[Path] = None) -> Dict[str, Any]:
    """获取日志统计信息"""
    if logs_dir is None:
        logs_dir = PROJECT_ROOT / "logs"
    logs_dir = Path(logs_dir)

    stats = {
        "total_files": 0,
        "total_size_mb": 0,
        "files_by_business": {},
        "oldest_log": None,
        "newest_log": None
    }

    if not logs_dir.exists():
        return stats

    oldest_time = None
    newest_time = None

    for log_file in logs_dir.glob("*.log*"):
        if not log_file.is_file():
            continue

        stats["total_files"] += 1
        file_size = log_file.stat().st_size
        stats["total_size_mb"] += file_size / 1024 / 1024

        file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
        if oldest_time is None or file_mtime < oldest_time:
            oldest_time = file_mtime
            stats["oldest_log"] = log_file.name
        if newest_time is None or file_mtime > newest_time:
            newest_time = file_mtime
            stats["newest_log"] = log_file.name

        # 按业务分类统计
        business_name = log_file.name.split('.log')[0]
        bucket = stats["files_by_business"].setdefault(business_name, {"count": 0, "size_mb": 0})
        bucket["count"] += 1
        bucket["size_mb"] += file_size / 1024 / 1024

    stats["total_size_mb"] = round(stats["total_size_mb"], 2)
    return stats


def log_business_operation(business_name: str, operation_name: Optional[str] = None):
    """
    业务操作日志装饰器

    Args:
        business_name: 业务名称
        operation_name: 操作名称，默认使用函数名
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_business_logger(business_name)
            op_name = operation_name or func.__name__

            logger.info(f"Starting {op_name}")
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
                logger.info(f"Finished {op_name} in {time.time() - start_time:.2f}s")
                return result
            except Exception as e:
                logger.error(f"{op_name} failed after {time.time() - start_time:.2f}s: {e}")
                raise

        return wrapper
    return decorator
