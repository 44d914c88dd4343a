# reminder_engine/core/logging.py
# JSON-логировка в stdout: движок пишет на заданном уровне, библиотеки тише

from __future__ import annotations
import logging
import sys

_JSON_FMT = (
    '{"level":"%(levelname)s","ts":"%(asctime)s",'
    '"name":"%(name)s","msg":"%(message)s"}'
)

# свои логгеры: проходы планировщика, переходы напоминаний, сбои каналов
_OWN = ("reminder_engine",)

# тик планировщика раз в минуту, polling бота, SQL; без DEBUG держим на WARNING
_NOISY = ("apscheduler.scheduler", "apscheduler.executors", "aiogram.event", "aiosqlite", "sqlalchemy.engine")


def setup_logging(level: str = "INFO") -> None:
    level = level.upper()
    logger = logging.getLogger()
    logger.handlers.clear()
    logger.setLevel(level)

    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter(_JSON_FMT))
    logger.addHandler(h)

    for name in _OWN:
        logging.getLogger(name).setLevel(level)
    quiet = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in _NOISY:
        logging.getLogger(name).setLevel(quiet)
