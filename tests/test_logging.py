import logging

from prov_engine.common.logging import get_logger, set_level


def test_handler_attached_once():
    a = get_logger("test_once")
    b = get_logger("test_once")
    assert a is b
    assert len(a.handlers) == 1
    assert a.name == "prov_engine.test_once"


def test_set_level_applies_to_known_loggers():
    log = get_logger("test_level")
    set_level("DEBUG")
    assert log.level == logging.DEBUG
    set_level("not-a-level")
    assert log.level == logging.INFO
    set_level(logging.WARNING)
    assert log.level == logging.WARNING
    set_level("INFO")
