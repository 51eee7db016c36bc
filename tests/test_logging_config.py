import logging

from attendance_kiosk.logging_config import configure_logging


def test_runtime_log_written_to_configured_directory(tmp_path):
    log_dir = tmp_path / "kiosk-logs"
    configure_logging("INFO", log_dir, retention_days=3)

    logging.getLogger("attendance_kiosk.registration").info("enrolled E-1")
    for handler in logging.getLogger().handlers:
        handler.flush()

    runtime_log = log_dir / "kiosk-runtime.log"
    assert runtime_log.exists()
    assert "enrolled E-1" in runtime_log.read_text(encoding="utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING

    file_handlers = [h for h in logging.getLogger().handlers if hasattr(h, "backupCount")]
    assert [h.backupCount for h in file_handlers] == [3]
    for handler in file_handlers:
        handler.close()
