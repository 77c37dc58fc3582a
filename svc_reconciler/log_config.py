"""Настройка логирования приложения.

Файлы логов хранятся в `data/logs/` (относительно CWD), ротация по дате
через TimedRotatingFileHandler.

- Ротация: ежедневно (midnight).
- Хранение: retention_days (по умолчанию 30).
- Уровень: level (по умолчанию INFO).
"""
from __future__ import annotations

import glob
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler

_LOG_DIR = os.path.join(os.getcwd(), "data", "logs")
_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Установленные handlers, чтобы при реконфигурации удалять старые.
_file_handler: logging.Handler | None = None
_console_handler: logging.Handler | None = None


def _ensure_log_dir(log_dir: str) -> str:
    os.makedirs(log_dir, exist_ok=True)
    return log_dir


def setup_logging(
    level: str = "INFO",
    retention_days: int = 30,
    max_size_mb: int = 50,
    log_dir: str | None = None,
) -> None:
    """Настраивает корневой логгер.

    - Файловый handler: ротация по дате.
    - Консольный handler: для docker-compose logs / stdout.
    """
    global _file_handler, _console_handler

    level_str = (level or "INFO").strip().upper()
    if level_str not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level_str = "INFO"
    log_level = getattr(logging, level_str, logging.INFO)

    retention_days = max(1, min(365, int(retention_days or 30)))
    max_size_mb = max(5, min(500, int(max_size_mb or 50)))

    root = logging.getLogger()

    if _file_handler and _file_handler in root.handlers:
        root.removeHandler(_file_handler)
        _file_handler.close()
    if _console_handler and _console_handler in root.handlers:
        root.removeHandler(_console_handler)

    log_dir = _ensure_log_dir(log_dir or _LOG_DIR)
    log_file = os.path.join(log_dir, "app.log")

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    fh = TimedRotatingFileHandler(
        log_file,
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
        utc=True,
    )
    fh.suffix = "%Y-%m-%d"
    fh.setLevel(log_level)
    fh.setFormatter(formatter)
    _file_handler = fh

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(formatter)
    _console_handler = ch

    root.setLevel(log_level)
    root.addHandler(fh)
    root.addHandler(ch)

    _cleanup_old_logs(log_dir, retention_days, max_size_mb)

    # Подавляем слишком шумные логгеры
    logging.getLogger("uvicorn.access").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("ldap3").setLevel(max(log_level, logging.WARNING))

    logging.getLogger("svc_reconciler").info(
        "Логирование настроено: уровень=%s, хранение=%d дней, макс. размер=%d МБ",
        level_str, retention_days, max_size_mb,
    )


def _cleanup_old_logs(log_dir: str, retention_days: int, max_size_mb: int) -> None:
    """Удаляет ротированные файлы старше retention_days и сверх общего лимита размера."""
    cutoff = time.time() - (retention_days * 86400)
    rotated = sorted(glob.glob(os.path.join(log_dir, "app.log.*")), key=os.path.getmtime, reverse=True)
    size_limit = max_size_mb * 1024 * 1024
    used = 0
    for f in rotated:
        try:
            used += os.path.getsize(f)
            if os.path.getmtime(f) < cutoff or used > size_limit:
                os.remove(f)
        except OSError:
            continue
