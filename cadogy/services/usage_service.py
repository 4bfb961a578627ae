"""
API usage logging and the aggregates shown on the dashboards.

Aggregation buckets timestamps in Python so the same code runs on
PostgreSQL and SQLite without dialect-specific date functions.
"""
import calendar
import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from cadogy.models.api_usage import ApiUsage
from cadogy.models.subscription import Subscription
from cadogy.models.user import User
from cadogy.utils.dates import ensure_utc, utcnow

# Free tier used when the user has no subscription
DEFAULT_QUOTA = 5000
DEFAULT_CYCLE_DAYS = 30


def _month_start(value: datetime, months_back: int) -> datetime:
    year, month = value.year, value.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return value.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageService:
    @staticmethod
    def log_request(
        db: Session,
        user_id: int,
        api_key_id: Optional[int],
        endpoint: str,
        method: str,
        status_code: int,
        response_time_ms: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ApiUsage:
        usage = ApiUsage(
            user_id=user_id,
            api_key_id=api_key_id,
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            response_time_ms=response_time_ms,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(usage)
        db.query(Subscription).filter(Subscription.user_id == user_id).update(
            {Subscription.current_usage: Subscription.current_usage + 1}, synchronize_session=False
        )
        db.commit()
        return usage

    @staticmethod
    def total_calls(db: Session, user_id: int) -> int:
        return db.query(func.count(ApiUsage.id)).filter(ApiUsage.user_id == user_id).scalar() or 0

    @staticmethod
    def usage_by_endpoint(db: Session, user_id: int) -> list[dict[str, Any]]:
        rows = (
            db.query(ApiUsage.endpoint, func.count(ApiUsage.id).label("count"))
            .filter(ApiUsage.user_id == user_id)
            .group_by(ApiUsage.endpoint)
            .order_by(func.count(ApiUsage.id).desc())
            .all()
        )
        total = sum(row.count for row in rows)
        return [
            {
                "endpoint": row.endpoint,
                "count": row.count,
                "percentage": round(row.count / total * 100, 1) if total else 0,
            }
            for row in rows
        ]

    @staticmethod
    def _timestamps_since(db: Session, since: datetime, user_id: Optional[int] = None) -> list[datetime]:
        query = db.query(ApiUsage.timestamp).filter(ApiUsage.timestamp >= since)
        if user_id is not None:
            query = query.filter(ApiUsage.user_id == user_id)
        return [ensure_utc(row.timestamp) for row in query.all()]

    @staticmethod
    def daily_usage(db: Session, user_id: Optional[int] = None, days: int = 7) -> list[dict[str, Any]]:
        """Requests per UTC day for the last `days` days, today included, zero-filled"""
        today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        start = today - timedelta(days=days - 1)
        counts = Counter(ts.date().isoformat() for ts in UsageService._timestamps_since(db, start, user_id))
        series = []
        for offset in range(days):
            day = (start + timedelta(days=offset)).date().isoformat()
            series.append({"date": day, "requests": counts.get(day, 0)})
        return series

    @staticmethod
    def monthly_usage(db: Session, user_id: int, months: int = 6) -> list[dict[str, Any]]:
        """Requests per calendar month for the last `months` months, current month included"""
        now = utcnow()
        start = _month_start(now, months - 1)
        counts = Counter((ts.year, ts.month) for ts in UsageService._timestamps_since(db, start, user_id))
        series = []
        for offset in range(months - 1, -1, -1):
            month = _month_start(now, offset)
            series.append({
                "month": calendar.month_abbr[month.month],
                "requests": counts.get((month.year, month.month), 0),
            })
        return series

    @staticmethod
    def billing_cycle(db: Session, user_id: int) -> dict[str, Any]:
        now = utcnow()
        subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
        if subscription is None:
            return {
                "totalCalls": 0,
                "remainingQuota": DEFAULT_QUOTA,
                "usagePercentage": 0,
                "daysRemaining": DEFAULT_CYCLE_DAYS,
                "quota": DEFAULT_QUOTA,
                "resetDate": now + timedelta(days=DEFAULT_CYCLE_DAYS),
            }

        end_date = ensure_utc(subscription.end_date)
        seconds_left = (end_date - now).total_seconds()
        days_remaining = max(0, math.ceil(seconds_left / 86400))
        quota = subscription.monthly_quota or 0
        used = subscription.current_usage or 0
        return {
            "totalCalls": used,
            "remainingQuota": max(0, quota - used),
            "usagePercentage": round(used / quota * 100, 1) if quota else 0,
            "daysRemaining": days_remaining,
            "quota": quota,
            "resetDate": end_date,
        }

    @staticmethod
    def user_stats(db: Session, user_id: int) -> dict[str, Any]:
        return {
            "totalCalls": UsageService.total_calls(db, user_id),
            "usage": UsageService.usage_by_endpoint(db, user_id),
            "daily": UsageService.daily_usage(db, user_id),
            "monthly": UsageService.monthly_usage(db, user_id),
            "billing": UsageService.billing_cycle(db, user_id),
        }

    @staticmethod
    def admin_stats(db: Session) -> dict[str, Any]:
        since = utcnow() - timedelta(days=30)
        total_users = db.query(func.count(User.id)).scalar() or 0
        last_30_days = db.query(func.count(ApiUsage.id)).filter(ApiUsage.timestamp >= since).scalar() or 0
        total_requests = db.query(func.count(ApiUsage.id)).scalar() or 0
        monthly_revenue = (
            db.query(func.coalesce(func.sum(Subscription.monthly_price), 0.0))
            .filter(Subscription.status == "active", Subscription.monthly_price > 0)
            .scalar()
        )

        recent = (
            db.query(ApiUsage, User)
            .outerjoin(User, User.id == ApiUsage.user_id)
            .order_by(ApiUsage.timestamp.desc(), ApiUsage.id.desc())
            .limit(5)
            .all()
        )
        recent_activity = [
            {
                "id": usage.id,
                "endpoint": usage.endpoint,
                "method": usage.method,
                "status": usage.status_code,
                "timestamp": ensure_utc(usage.timestamp),
                "user": {"id": user.id, "name": user.name or user.email} if user else None,
            }
            for usage, user in recent
        ]

        daily = UsageService.daily_usage(db, days=30)
        return {
            "totalUsers": total_users,
            "apiRequests": {"last30Days": last_30_days, "total": total_requests},
            "revenue": {"monthly": float(monthly_revenue or 0), "currency": "USD"},
            "dailyApiUsage": [{"date": day["date"], "count": day["requests"]} for day in daily],
            "recentActivity": recent_activity,
            "systemStatus": {"api": "operational", "database": "operational", "authentication": "operational"},
        }


usage_service = UsageService()
