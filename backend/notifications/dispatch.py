import logging

logger = logging.getLogger(__name__)


def safe_notify(task, *args):
    """Queue a notification task without failing the caller if the broker is unavailable."""
    try:
        task.delay(*args)
    except Exception:
        logger.info("notifications task %s could not be queued", task.__name__, exc_info=True)
