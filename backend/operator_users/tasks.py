import logging

from celery import shared_task

from operator_users.services import lift_expired_suspensions as _lift_expired_suspensions

logger = logging.getLogger(__name__)


@shared_task(name="operator_users.lift_expired_suspensions")
def lift_expired_suspensions():
    lifted = _lift_expired_suspensions()
    if lifted:
        logger.info("moderation: lifted %s expired suspension(s)", lifted)
    return {"lifted": lifted}
