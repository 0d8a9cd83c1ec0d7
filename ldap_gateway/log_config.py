"""Настройка логирования приложения.

- Консольный handler: всегда (docker logs / stdout).
- Файловый handler: если задан LOG_DIR, ротация ежедневно (midnight),
  хранение log_retention_days файлов.
- Уровень: LOG_LEVEL (по умолчанию INFO).
"""
from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler

_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Отслеживаем установленные handlers, чтобы при реконфигурации удалять старые.
_handlers: list[logging.Handler] = []


def setup_logging(level: str = "INFO", log_dir: str = "", retention_days: int = 30) -> None:
    level_str = (level or "INFO").strip().upper()
    if level_str not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level_str = "INFO"
    log_level = getattr(logging, level_str, logging.INFO)
    retention_days = max(1, min(365, int(retention_days or 30)))

    root = logging.getLogger()
    for h in _handlers:
        root.removeHandler(h)
        h.close()
    _handlers.clear()

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    ch = logging.StreamHandler()
    ch.setFormatter(formatter)
    _handlers.append(ch)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        fh = TimedRotatingFileHandler(
            os.path.join(log_dir, "ldap_gateway.log"),
            when="midnight",
            interval=1,
            backupCount=retention_days,
            encoding="utf-8",
            utc=True,
        )
        fh.suffix = "%Y-%m-%d"
        fh.setFormatter(formatter)
        _handlers.append(fh)

    for h in _handlers:
        h.setLevel(log_level)
        root.addHandler(h)
    root.setLevel(log_level)

    # Подавляем слишком шумные логгеры
    logging.getLogger("uvicorn.access").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("ldap3").setLevel(max(log_level, logging.WARNING))

    logging.getLogger("ldap_gateway").info(
        "Логирование настроено: уровень=%s, каталог=%s", level_str, log_dir or "-",
    )
