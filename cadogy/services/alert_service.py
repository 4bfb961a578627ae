from typing import Optional
from datetime import datetime
from sqlalchemy import or_
from sqlalchemy.orm import Session
from cadogy.models.system_alert import SystemAlert
from cadogy.utils.dates import utcnow


class AlertService:
    @staticmethod
    def create_alert(
        db: Session,
        title: str,
        description: str,
        severity: str = "info",
        type: str = "system",
        user_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        link: Optional[str] = None,
        link_text: Optional[str] = None,
    ) -> SystemAlert:
        alert = SystemAlert(
            title=title,
            description=description,
            severity=severity,
            type=type,
            user_id=user_id if type == "user" else None,
            is_active=True,
            start_date=start_date or utcnow(),
            end_date=end_date,
            link=link,
            link_text=link_text,
        )
        db.add(alert)
        db.commit()
        db.refresh(alert)
        return alert

    @staticmethod
    def list_alerts(db: Session) -> list[SystemAlert]:
        return db.query(SystemAlert).order_by(SystemAlert.start_date.desc(), SystemAlert.id.desc()).all()

    @staticmethod
    def active_alerts(db: Session, user_id: int) -> list[SystemAlert]:
        """System-wide alerts plus those targeted at `user_id` that are currently in their window"""
        now = utcnow()
        return (
            db.query(SystemAlert)
            .filter(
                SystemAlert.is_active.is_(True),
                SystemAlert.start_date <= now,
                or_(SystemAlert.end_date.is_(None), SystemAlert.end_date >= now),
                or_(
                    SystemAlert.type == "system",
                    (SystemAlert.type == "user") & (SystemAlert.user_id == user_id),
                ),
            )
            .order_by(SystemAlert.start_date.desc(), SystemAlert.id.desc())
            .all()
        )


alert_service = AlertService()
