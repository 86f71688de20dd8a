# tests/test_logger.py
from logging.handlers import RotatingFileHandler

from logger import ROOT_LOGGER, get_logger


def test_module_loggers_share_one_file_handler():
    a = get_logger("matcher")
    b = get_logger("price_updater")
    get_logger("matcher")

    assert a.name == f"{ROOT_LOGGER}.matcher"
    assert a.parent is b.parent
    assert a.handlers == []
    assert sum(isinstance(h, RotatingFileHandler) for h in a.parent.handlers) == 1
