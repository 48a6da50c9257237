import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Third-party loggers that are only interesting when something goes wrong.
_NOISY_LOGGERS = ("sqlalchemy.engine", "celery.app.trace", "kombu", "amqp", "httpx")

_configured = False


def setup_logging(level: str | int = logging.INFO) -> None:
    """
    Configure the root logger once: a single stream handler on stderr.

    Safe to call from both the API lifespan and the Celery worker; later calls
    only adjust the level.
    """
    global _configured

    root = logging.getLogger()
    root.setLevel(level)

    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
