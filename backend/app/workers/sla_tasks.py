"""Celery task for the daily overdue-approval report."""
import logging

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.sla_tasks.report_overdue_workflows")
def report_overdue_workflows():
    """Log every pending workflow whose current step exceeded its escalation hours.

    Runs daily at 9 AM UTC. Escalation hours are reporting metadata only;
    nothing is reassigned or auto-decided.
    """
    logger.info("report_overdue_workflows: starting daily check")
    try:
        from app.db.session import get_sync_sessionmaker
        from app.services import workflow as workflow_svc

        stats = {"overdue": 0}
        with get_sync_sessionmaker()() as db:
            for item in workflow_svc.find_overdue_workflows(db):
                stats["overdue"] += 1
                wf = item.workflow
                logger.warning(
                    "OVERDUE: %s %s (workflow %s) waiting %.1fh at level %d, escalation after %dh",
                    wf.category, wf.reference_code, wf.id,
                    item.hours_waiting, wf.current_level, item.escalation_hours,
                )

        logger.info("report_overdue_workflows: complete, overdue=%d", stats["overdue"])
        return stats

    except Exception as exc:
        logger.exception("report_overdue_workflows failed: %s", exc)
        return {"status": "error", "error": str(exc)}
