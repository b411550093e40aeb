import os
import sys
import logging
import logging.handlers

from webpbridge.wbconfig import CFG
from webpbridge.utils.constants import LOGS_DIR

LOG_FILE = "webpbridge.log"


def _level(name, fallback):
    return getattr(logging, str(name).upper(), fallback)


def setuplogs():
    log_dir = CFG.paths.log_dir or LOGS_DIR
    os.makedirs(log_dir, exist_ok=True)

    if os.environ.get('WEBPBRIDGE_DEBUG'):
        file_level = console_level = logging.DEBUG
    else:
        file_level = _level(CFG.general.file_log_level, logging.DEBUG)
        console_level = _level(CFG.general.console_log_level, logging.INFO)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=os.path.join(log_dir, LOG_FILE),
        maxBytes=10485760,
        backupCount=5
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    handlers = [file_handler]

    # No console under pythonw / frozen GUI launchers
    if sys.stderr is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(console_level)
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s', datefmt='%H:%M:%S'))
        handlers.append(console_handler)

    logging.basicConfig(level=min(file_level, console_level), handlers=handlers)

    log = logging.getLogger(__name__)
    log.debug(f"Logging to {os.path.join(log_dir, LOG_FILE)}"
              f" (file {logging.getLevelName(file_level)}, console {logging.getLevelName(console_level)})")


def run(argv=None):
    setuplogs()

    if CFG.diagnostics.crash_handler:
        from webpbridge.crash_handler import install_crash_handler
        install_crash_handler()

    from webpbridge import wbcli
    return wbcli.main(argv)


if __name__ == "__main__":
    sys.exit(run())
