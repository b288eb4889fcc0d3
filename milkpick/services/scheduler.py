# milkpick/services/scheduler.py
"""
Time-driven sweeps, run by cron through `flask jobs ...`.

Each sweep walks its items one at a time and commits per item. A failing
item is rolled back, logged and skipped; the next scheduled run picks it up.
"""
from __future__ import annotations
import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone

from flask import current_app
from sqlalchemy import and_, or_

from ..extensions import db
from ..models import Farm, Order, Subscription, User
from .cadence import next_date, utc_today
from .notification_service import (
    send_customer_summary, send_farmer_summary, send_late_pickup, send_pickup_reminder,
)
from .order_service import ensure_order
from .pickup_service import grace_period_hours

log = logging.getLogger(__name__)


def _catch_up_limit() -> int:
    try:
        return max(1, int(current_app.config.get("CATCH_UP_LIMIT", 10)))
    except (TypeError, ValueError):
        return 10


def due_subscriptions(today: date):
    return (Subscription.query
            .filter(Subscription.active.is_(True))
            .filter(or_(Subscription.next_order_date <= today,
                        and_(Subscription.next_order_date.is_(None), Subscription.start_date <= today)))
            .order_by(Subscription.id)
            .all())


def _catch_up(subscription: Subscription, today: date, limit: int) -> tuple[int, date | None]:
    cursor = subscription.next_order_date or subscription.start_date
    created = 0
    steps = 0
    while cursor is not None and cursor <= today and steps < limit:
        try:
            ensure_order(subscription, cursor)
            created += 1
        except Exception as e:
            db.session.rollback()
            log.error("Order generation failed for subscription %s on %s: %s", subscription.id, cursor, e)
            break
        cursor = next_date(cursor, subscription.frequency)
        steps += 1
    return created, cursor


def run_due_sweep(today: date | None = None) -> dict:
    """Materialize due occurrences of every active subscription (bounded catch-up)."""
    today = today or utc_today()
    limit = _catch_up_limit()
    created = updated = 0

    for sub_id in [s.id for s in due_subscriptions(today)]:
        try:
            subscription = db.session.get(Subscription, sub_id)
            made, cursor = _catch_up(subscription, today, limit)
            created += made
            if cursor is not None and cursor != subscription.next_order_date:
                subscription.next_order_date = cursor
                db.session.commit()
                updated += 1
        except Exception as e:
            db.session.rollback()
            log.exception("Due sweep failed for subscription %s: %s", sub_id, e)

    log.info("Due sweep %s: created=%s updated=%s", today, created, updated)
    return {"created": created, "updated": updated}


def mark_late_orders(now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    grace = timedelta(hours=grace_period_hours())
    cutoff_date = (now - grace).date()

    candidates = (Order.query
                  .with_entities(Order.id, Order.scheduled_date)
                  .filter(Order.status.in_(("pending", "confirmed")))
                  .filter(Order.scheduled_date <= cutoff_date)
                  .all())

    updated = 0
    for order_id, scheduled in candidates:
        due = datetime.combine(scheduled, time.min, tzinfo=timezone.utc) + grace
        if now <= due:
            continue
        try:
            changed = (Order.query
                       .filter(Order.id == order_id, Order.status.in_(("pending", "confirmed")))
                       .update({"status": "late"}, synchronize_session=False))
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            log.error("Could not mark order %s late: %s", order_id, e)
            continue
        if not changed:
            continue
        updated += 1
        try:
            send_late_pickup(db.session.get(Order, order_id))
        except Exception as e:
            log.error("Late pickup notification failed for order %s: %s", order_id, e)

    log.info("Late sweep at %s: updated=%s", now.isoformat(), updated)
    return {"updated": updated}


def send_pickup_reminders(today: date | None = None) -> dict:
    today = today or utc_today()
    tomorrow = today + timedelta(days=1)
    orders = (Order.query
              .filter(Order.scheduled_date == tomorrow)
              .filter(Order.status.in_(("pending", "confirmed")))
              .order_by(Order.id)
              .all())
    sent = 0
    for order in orders:
        try:
            send_pickup_reminder(order)
            sent += 1
        except Exception as e:
            db.session.rollback()
            log.error("Pickup reminder failed for order %s: %s", order.id, e)
    return {"sent": sent}


def send_weekly_summaries(today: date | None = None) -> dict:
    today = today or utc_today()
    end = today + timedelta(days=7)
    orders = (Order.query
              .filter(Order.scheduled_date >= today, Order.scheduled_date <= end)
              .filter(Order.status != "cancelled")
              .order_by(Order.scheduled_date, Order.id)
              .all())

    by_customer = defaultdict(list)
    by_farm = defaultdict(list)
    for order in orders:
        by_customer[order.customer_id].append(order)
        by_farm[order.farm_id].append(order)

    customers = farmers = 0
    for customer_id, items in by_customer.items():
        try:
            customer = db.session.get(User, customer_id)
            if customer:
                send_customer_summary(customer, items)
                customers += 1
        except Exception as e:
            db.session.rollback()
            log.error("Weekly summary failed for customer %s: %s", customer_id, e)

    for farm_id, items in by_farm.items():
        try:
            farm = db.session.get(Farm, farm_id)
            farmer = db.session.get(User, farm.farmer_id) if farm else None
            if farmer:
                send_farmer_summary(farmer, farm, items)
                farmers += 1
        except Exception as e:
            db.session.rollback()
            log.error("Weekly summary failed for farm %s: %s", farm_id, e)

    return {"customers": customers, "farmers": farmers}
