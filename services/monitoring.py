"""
Monitoring Service
Job execution logs, system alerts and maintenance counters
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from config import settings
from tools.clock import utcnow


logger = logging.getLogger(__name__)

TRACKING_ID = "medication_system"


class MonitoringService:
    """
    Writes operational records. Every write here is best effort: a failure
    is logged and never propagates to the job that asked for it.
    """

    def __init__(self, config=None):
        self.config = config or settings

    def raise_alert(
        self,
        db: Session,
        alert_type: str,
        message: str,
        severity: models.AlertSeverity = models.AlertSeverity.WARNING,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[models.SystemAlert]:
        """Persist a system alert"""
        try:
            alert = models.SystemAlert(
                alert_type=alert_type,
                severity=severity,
                source=source,
                message=message,
                details=details or {},
                created_at=utcnow(),
            )
            db.add(alert)
            db.commit()
            logger.warning(f"System alert [{severity.value}] {alert_type}: {message}")
            return alert
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to record system alert {alert_type}: {e}")
            return None

    def record_execution(
        self,
        db: Session,
        job_name: str,
        executed_at,
        duration_ms: int,
        success: bool,
        timed_out: bool = False,
        stats: Optional[Dict[str, Any]] = None,
        errors: Optional[List[str]] = None,
    ) -> Optional[models.JobExecutionLog]:
        """Persist one execution log row for a job tick"""
        try:
            entry = models.JobExecutionLog(
                job_name=job_name,
                execution_time=executed_at,
                duration_ms=duration_ms,
                success=success,
                timed_out=timed_out,
                stats=stats or {},
                errors=list(errors or [])[:50],
            )
            db.add(entry)
            db.commit()
            return entry
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to record execution log for {job_name}: {e}")
            return None

    def evaluate_tick(
        self,
        db: Session,
        job_name: str,
        processed: int,
        error_count: int,
        duration_ms: int,
        deliveries_attempted: int = 0,
        deliveries_succeeded: int = 0,
    ) -> List[str]:
        """
        Raise alerts for error rate, delivery rate and execution time.

        Returns:
            List of alert types raised
        """
        raised = []
        cfg = self.config

        if processed > 0:
            error_rate = error_count / processed * 100
            if error_rate > cfg.ERROR_RATE_ALERT_PERCENT:
                severity = (
                    models.AlertSeverity.CRITICAL
                    if error_rate > cfg.ERROR_RATE_CRITICAL_PERCENT
                    else models.AlertSeverity.WARNING
                )
                self.raise_alert(
                    db,
                    "high_error_rate",
                    f"{job_name} error rate {error_rate:.1f}% ({error_count}/{processed})",
                    severity=severity,
                    source=job_name,
                    details={"error_rate": round(error_rate, 2), "errors": error_count, "processed": processed},
                )
                raised.append("high_error_rate")

        if deliveries_attempted > 0:
            delivery_rate = deliveries_succeeded / deliveries_attempted * 100
            if delivery_rate < cfg.DELIVERY_RATE_ALERT_PERCENT:
                severity = (
                    models.AlertSeverity.CRITICAL
                    if delivery_rate < cfg.DELIVERY_RATE_CRITICAL_PERCENT
                    else models.AlertSeverity.WARNING
                )
                self.raise_alert(
                    db,
                    "low_delivery_rate",
                    f"{job_name} delivery rate {delivery_rate:.1f}% "
                    f"({deliveries_succeeded}/{deliveries_attempted})",
                    severity=severity,
                    source=job_name,
                    details={"delivery_rate": round(delivery_rate, 2)},
                )
                raised.append("low_delivery_rate")

        budget_ms = cfg.TICK_TIMEOUT_SECONDS * 1000
        if duration_ms > budget_ms * cfg.PERFORMANCE_ALERT_RATIO:
            self.raise_alert(
                db,
                "performance",
                f"{job_name} took {duration_ms}ms of a {budget_ms}ms budget",
                source=job_name,
                details={"duration_ms": duration_ms, "budget_ms": budget_ms},
            )
            raised.append("performance")

        return raised

    def increment_tracking(
        self,
        db: Session,
        counters: Dict[str, int],
        last_cascade_delete: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Add counters to the medication_system tracking document"""
        try:
            tracking = db.query(models.MigrationTracking).filter(
                models.MigrationTracking.id == TRACKING_ID
            ).first()
            if not tracking:
                tracking = models.MigrationTracking(id=TRACKING_ID, statistics={})
                db.add(tracking)

            statistics = dict(tracking.statistics or {})
            for key, value in counters.items():
                statistics[key] = statistics.get(key, 0) + value
            tracking.statistics = statistics

            if last_cascade_delete is not None:
                tracking.last_cascade_delete = last_cascade_delete
            tracking.updated_at = utcnow()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Failed to update migration tracking: {e}")


monitoring_service = MonitoringService()
