"""Celery task delivering approved purchase orders to the vendor-facing service."""
import logging

import httpx

from app.core.config import settings
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def _record(action: str, reference_id: str, after: dict) -> None:
    from app.db.session import get_sync_sessionmaker
    from app.services import audit as audit_svc

    with get_sync_sessionmaker()() as db:
        audit_svc.log(
            db=db,
            action=action,
            entity_type="purchase_order",
            entity_id=reference_id,
            after=after,
        )
        db.commit()


@celery_app.task(
    bind=True,
    name="app.workers.delivery_tasks.deliver_purchase_order",
    max_retries=settings.PO_DELIVERY_MAX_RETRIES,
)
def deliver_purchase_order(self, reference_id: str) -> dict:
    """POST the approved PO reference to PO_DELIVERY_URL.

    With no URL configured the delivery is only logged (mock mode, as in
    local development). Transport errors and non-2xx replies are retried;
    once retries are exhausted the failure is audited and the task returns.
    """
    if not settings.PO_DELIVERY_URL:
        logger.info("[MOCK DELIVERY] purchase order %s would be sent to vendor", reference_id)
        return {"reference_id": reference_id, "status": "mocked"}

    try:
        response = httpx.post(
            settings.PO_DELIVERY_URL,
            json={"reference_id": reference_id},
            timeout=settings.PO_DELIVERY_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        if self.request.retries < self.max_retries:
            logger.warning(
                "Delivery of purchase order %s failed (attempt %d): %s",
                reference_id, self.request.retries + 1, exc,
            )
            raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

        logger.error("Giving up delivering purchase order %s: %s", reference_id, exc)
        _record(
            "purchase_order_delivery_failed",
            reference_id,
            {"url": settings.PO_DELIVERY_URL, "error": str(exc), "attempts": self.request.retries + 1},
        )
        return {"reference_id": reference_id, "status": "failed", "error": str(exc)}

    _record(
        "purchase_order_delivered",
        reference_id,
        {"url": settings.PO_DELIVERY_URL, "status_code": response.status_code},
    )
    logger.info("Delivered purchase order %s (HTTP %s)", reference_id, response.status_code)
    return {"reference_id": reference_id, "status": "delivered", "status_code": response.status_code}
