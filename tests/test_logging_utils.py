import logging

from scraper_orchestrator.logging_utils import ContextFormatter, configure_logging


def test_context_formatter_appends_extra_fields():
    record = logging.makeLogRecord(
        {"name": "scraper", "levelno": logging.INFO, "levelname": "INFO", "msg": "Restored", "restored": 2}
    )

    assert ContextFormatter("%(message)s").format(record) == 'Restored {"restored": 2}'


def test_context_formatter_leaves_plain_records_alone():
    record = logging.makeLogRecord({"msg": "Queue shutting down %s", "args": ("now",)})

    assert ContextFormatter("%(message)s").format(record) == "Queue shutting down now"


def test_configure_logging_writes_rotating_file(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    log_file = tmp_path / "logs" / "orchestrator.log"
    try:
        configure_logging(log_file, "debug")
        logging.getLogger("scraper_orchestrator.test").info("Hello", extra={"execution_id": "exec-1"})
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

    text = log_file.read_text()
    assert "| INFO | scraper_orchestrator.test | Hello" in text
    assert '{"execution_id": "exec-1"}' in text
