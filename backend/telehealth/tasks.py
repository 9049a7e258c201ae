import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,   # initial delay in seconds, doubled on each retry
    acks_late=True,           # ack after the run so a worker crash does not lose the payload
    reject_on_worker_lost=True,
)
def replay_intake_submission(self, payload: dict, source: str, request_id: str, client: dict = None):
    """
    Replay an intake delivery whose critical path failed.

    Retry policy:
      - at most 3 retries
      - exponential backoff: 10s → 20s → 40s
      - after the last retry the payload is logged as dead and dropped
    The pipeline is idempotent on the submission id, so a replay that races
    a sender redelivery converges on the same patient and document.
    """
    from telehealth.exceptions import BaseAppException
    from telehealth.webhooks import process_intake_submission

    client = client or {}
    logger.info("[Celery][replay_intake_submission] request_id=%s (attempt %d/%d)",
                request_id, self.request.retries + 1, self.max_retries + 1)

    try:
        result = process_intake_submission(
            payload,
            source=source,
            request_id=request_id,
            ip_address=client.get('ip_address', ''),
            user_agent=client.get('user_agent', ''),
            replay=True,
        )
    except BaseAppException as exc:
        logger.warning("[Celery] replay %s failed (attempt %d): %s %s",
                       request_id, self.request.retries + 1, exc.code, exc.message)

        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.info("[Celery] retrying replay %s in %ds", request_id, countdown)
            raise self.retry(exc=exc, countdown=countdown)

        logger.error("[Celery] replay %s exhausted retries, submission %s is dead-lettered",
                     request_id, payload.get('submissionId') or payload.get('responseId'))
        return None

    logger.info("[Celery] replay %s stored patient %s, %d warning(s)",
                request_id, result.upsert.patient.pk, len(result.warnings))
    return str(result.upsert.patient.pk)
