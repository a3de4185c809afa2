"""
Тесты фасада логирования.
"""

import logging


def test_callback_receives_records():
    """Callback получает уровень и текст, исключение оформляется с контекстом."""
    from nodeflow import log

    records = []
    log.set_level(logging.DEBUG)
    log.set_callback(lambda level, message: records.append((level, message)))
    try:
        log.warn("disk almost full")
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            log.error(e, "Save failed")
    finally:
        log.set_callback(None)
        log.set_level(logging.NOTSET)

    assert records[0] == (logging.WARNING, "disk almost full")
    level, message = records[1]
    assert level == logging.ERROR
    assert message.startswith("Save failed: RuntimeError: boom\n")
    assert "Traceback" in message


def test_callback_removed():
    """После set_callback(None) сообщения в callback не приходят."""
    from nodeflow import log

    records = []
    log.set_callback(lambda level, message: records.append(message))
    log.set_callback(None)
    log.error("ignored")

    assert records == []
