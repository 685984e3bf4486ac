"""
Background scheduler - runs periodic jobs inside the FastAPI process.

Jobs:
  - Pending rescoring (every RESCORE_INTERVAL_MINUTES): rescores every node
    whose metrics ledger moved past its active opportunity
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from nodescore.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_pending_rescore():
    from nodescore.infrastructure.db.session import get_session_factory
    from nodescore.application.opportunity_engine import OpportunityEngine

    Session = get_session_factory()
    db = Session()
    try:
        report = OpportunityEngine(db).rescore_pending(limit=get_settings().RESCORE_BATCH_LIMIT)
        if report.failed:
            logger.warning("Pending rescoring: %d node(s) failed", len(report.failed))
    except Exception:
        logger.exception("Pending rescoring job failed")
    finally:
        db.close()


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()

    scheduler.add_job(
        _run_pending_rescore,
        "interval",
        minutes=settings.RESCORE_INTERVAL_MINUTES,
        id="pending_rescore",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info("Scheduler started: pending_rescore (every %d min)", settings.RESCORE_INTERVAL_MINUTES)


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
