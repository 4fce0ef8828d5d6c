# Overview: Service-layer operations for admin analytics; read-only aggregations over orders, products and customers.

"""
Analytics Service

All functions are read-only. Revenue always excludes cancelled orders and is
reported in integer paisa.

FAN-OUT: all_analytics() runs six independent sections on a thread pool.
Each worker pushes its own app context (and therefore its own scoped
session). If any section fails the whole call raises ReportError; partial
results are never returned.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Brand, Category, Order, OrderItem, Product, User
from ..models.auth import ROLE_USER
from pasal.time_utils import days_ago, to_utc_z, utcnow


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90, "365d": 365}
GROUP_BY_FORMATS = {
    "day": ("%Y-%m-%d", "YYYY-MM-DD"),
    "week": ("%Y-W%W", 'IYYY-"W"IW'),
    "month": ("%Y-%m", "YYYY-MM"),
}

EXCLUDED_REVENUE_STATUS = "cancelled"

SECTIONS = (
    "dashboard",
    "sales",
    "products",
    "customers",
    "recent_activity",
    "performance",
)


def percentage_change(current, previous) -> float:
    """
    (current - previous) / previous * 100, rounded to 2 dp.

    A zero, negative or non-numeric baseline yields 0.
    """
    if isinstance(previous, bool) or not isinstance(previous, (int, float)):
        return 0
    if isinstance(current, bool) or not isinstance(current, (int, float)):
        return 0
    if math.isnan(previous) or math.isnan(current) or previous <= 0:
        return 0
    return round((current - previous) / previous * 100, 2)


def _bucket(column, group_by: str):
    if group_by not in GROUP_BY_FORMATS:
        raise ReportError("group_by must be day, week, or month")
    sqlite_fmt, pg_fmt = GROUP_BY_FORMATS[group_by]
    if db.engine.dialect.name == "postgresql":
        return func.to_char(column, pg_fmt)
    return func.strftime(sqlite_fmt, column)


def _revenue_filter(query):
    return query.filter(Order.status != EXCLUDED_REVENUE_STATUS)


def _revenue_between(start: datetime | None, end: datetime | None) -> int:
    query = _revenue_filter(db.session.query(func.coalesce(func.sum(Order.total_paisa), 0)))
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at < end)
    return int(query.scalar() or 0)


def _count_between(model, start: datetime | None, end: datetime | None, *conditions) -> int:
    query = db.session.query(func.count(model.id)).filter(*conditions)
    if start is not None:
        query = query.filter(model.created_at >= start)
    if end is not None:
        query = query.filter(model.created_at < end)
    return int(query.scalar() or 0)


# =============================================================================
# SECTIONS
# =============================================================================

def dashboard_stats() -> dict:
    return {
        "total_orders": _count_between(Order, None, None),
        "total_products": _count_between(Product, None, None),
        "total_customers": _count_between(User, None, None, User.role == ROLE_USER),
        "total_revenue_paisa": _revenue_between(None, None),
        "pending_orders": _count_between(Order, None, None, Order.status == "pending"),
        "delivered_orders": _count_between(Order, None, None, Order.status == "delivered"),
        "total_categories": _count_between(Category, None, None),
        "total_brands": _count_between(Brand, None, None),
    }


def sales_analytics(period: str = "30d", group_by: str = "day", *, now: datetime | None = None) -> dict:
    if period not in PERIOD_DAYS:
        raise ReportError(f"period must be one of {', '.join(PERIOD_DAYS)}")
    start = days_ago(PERIOD_DAYS[period], now=now)
    bucket = _bucket(Order.created_at, group_by)

    rows = _revenue_filter(
        db.session.query(
            bucket.label("period"),
            func.count(Order.id).label("order_count"),
            func.coalesce(func.sum(Order.total_paisa), 0).label("revenue_paisa"),
        )
    ).filter(Order.created_at >= start).group_by("period").order_by("period").all()

    return {
        "period": period,
        "group_by": group_by,
        "start": to_utc_z(start),
        "rows": [
            {
                "period": row.period,
                "order_count": int(row.order_count or 0),
                "revenue_paisa": int(row.revenue_paisa or 0),
            }
            for row in rows
        ],
        "category_revenue": category_revenue(start=start),
    }


def monthly_revenue(months: int = 6, *, detailed: bool = False, now: datetime | None = None) -> list[dict]:
    """Calendar-month revenue for the last `months` months, oldest first."""
    now = now or utcnow()
    year, month = now.year, now.month
    data = []
    for offset in range(months - 1, -1, -1):
        y, m = year, month - offset
        while m <= 0:
            m += 12
            y -= 1
        start = datetime(y, m, 1)
        end = datetime(y + 1, 1, 1) if m == 12 else datetime(y, m + 1, 1)
        entry = {"name": start.strftime("%b"), "month": start.strftime("%Y-%m"), "revenue_paisa": _revenue_between(start, end)}
        if detailed:
            entry["orders"] = _count_between(Order, start, end)
            entry["customers"] = _count_between(User, start, end, User.role == ROLE_USER)
        data.append(entry)
    return data


def category_revenue(*, start: datetime | None = None) -> list[dict]:
    query = _revenue_filter(
        db.session.query(
            Category.id.label("category_id"),
            Category.name.label("name"),
            func.coalesce(func.sum(OrderItem.line_total_paisa), 0).label("revenue_paisa"),
            func.count(func.distinct(Order.id)).label("order_count"),
        )
        .select_from(OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .join(Category, Category.id == Product.category_id)
    )
    if start is not None:
        query = query.filter(Order.created_at >= start)
    rows = query.group_by(Category.id, Category.name).order_by(func.sum(OrderItem.line_total_paisa).desc()).all()
    return [
        {
            "category_id": row.category_id,
            "name": row.name,
            "revenue_paisa": int(row.revenue_paisa or 0),
            "order_count": int(row.order_count or 0),
        }
        for row in rows
    ]


def top_selling_products(limit: int = 10) -> list[dict]:
    rows = _revenue_filter(
        db.session.query(
            Product.id.label("product_id"),
            Product.name.label("name"),
            func.coalesce(func.sum(OrderItem.quantity), 0).label("total_sold"),
            func.coalesce(func.sum(OrderItem.line_total_paisa), 0).label("revenue_paisa"),
        )
        .select_from(OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
    ).group_by(Product.id, Product.name).order_by(
        func.sum(OrderItem.quantity).desc(), Product.id.asc()
    ).limit(limit).all()
    # JSON columns cannot be grouped on every backend
    images = {
        p.id: (p.images or [None])[0]
        for p in db.session.query(Product).filter(Product.id.in_([row.product_id for row in rows]))
    } if rows else {}
    return [
        {
            "product_id": row.product_id,
            "name": row.name,
            "image": images.get(row.product_id),
            "total_sold": int(row.total_sold or 0),
            "revenue_paisa": int(row.revenue_paisa or 0),
        }
        for row in rows
    ]


def low_stock_products(threshold: int | None = None, limit: int = 10) -> list[dict]:
    if threshold is None:
        threshold = current_app.config["LOW_STOCK_THRESHOLD"]
    products = (
        db.session.query(Product)
        .filter(Product.stock < threshold)
        .order_by(Product.stock.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {"product_id": p.id, "name": p.name, "image": (p.images or [None])[0], "stock": p.stock}
        for p in products
    ]


def category_distribution() -> list[dict]:
    rows = (
        db.session.query(Category.name.label("name"), func.count(Product.id).label("count"))
        .join(Product, Product.category_id == Category.id)
        .group_by(Category.id, Category.name)
        .order_by(func.count(Product.id).desc())
        .all()
    )
    return [{"name": row.name, "count": int(row.count)} for row in rows]


def product_analytics() -> dict:
    return {
        "top_selling_products": top_selling_products(),
        "low_stock_products": low_stock_products(),
        "category_distribution": category_distribution(),
    }


def customer_analytics(*, now: datetime | None = None) -> dict:
    start = days_ago(30, now=now)
    growth = (
        db.session.query(_bucket(User.created_at, "day").label("day"), func.count(User.id).label("count"))
        .filter(User.role == ROLE_USER, User.created_at >= start)
        .group_by("day")
        .order_by("day")
        .all()
    )
    top = _revenue_filter(
        db.session.query(
            User.id.label("user_id"),
            User.name.label("name"),
            User.email.label("email"),
            func.coalesce(func.sum(Order.total_paisa), 0).label("total_spent_paisa"),
            func.count(Order.id).label("order_count"),
        ).join(Order, Order.user_id == User.id)
    ).group_by(User.id, User.name, User.email).order_by(func.sum(Order.total_paisa).desc()).limit(10).all()
    statuses = db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all()

    return {
        "new_customers": _count_between(User, start, None, User.role == ROLE_USER),
        "customer_growth": [{"day": row.day, "count": int(row.count)} for row in growth],
        "top_customers": [
            {
                "user_id": row.user_id,
                "name": row.name,
                "email": row.email,
                "total_spent_paisa": int(row.total_spent_paisa or 0),
                "order_count": int(row.order_count or 0),
            }
            for row in top
        ],
        "order_status_distribution": {status: int(count) for status, count in statuses},
    }


def recent_activity(limit: int = 5) -> dict:
    orders = db.session.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
    users = (
        db.session.query(User)
        .filter(User.role == ROLE_USER)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(limit)
        .all()
    )
    products = db.session.query(Product).order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).all()
    return {
        "recent_orders": [
            {
                "id": o.id,
                "order_number": o.order_number,
                "status": o.status,
                "total_paisa": o.total_paisa,
                "customer": {"name": o.user.name, "email": o.user.email} if o.user else None,
                "created_at": to_utc_z(o.created_at),
            }
            for o in orders
        ],
        "recent_users": [
            {"id": u.id, "name": u.name, "email": u.email, "created_at": to_utc_z(u.created_at)}
            for u in users
        ],
        "recent_products": [
            {
                "id": p.id,
                "name": p.name,
                "image": (p.images or [None])[0],
                "category": p.category.name if p.category else None,
                "created_at": to_utc_z(p.created_at),
            }
            for p in products
        ],
    }


def _period_totals(start: datetime, end: datetime) -> dict:
    revenue, orders = _revenue_filter(
        db.session.query(func.coalesce(func.sum(Order.total_paisa), 0), func.count(Order.id))
    ).filter(Order.created_at >= start, Order.created_at < end).one()
    revenue, orders = int(revenue or 0), int(orders or 0)
    return {
        "total_revenue_paisa": revenue,
        "total_orders": orders,
        "avg_order_value_paisa": round(revenue / orders) if orders else 0,
    }


def performance_metrics(*, now: datetime | None = None) -> dict:
    """Current 30 days against the 30 days before."""
    now = now or utcnow()
    current_start = now - timedelta(days=30)
    previous_start = now - timedelta(days=60)
    current = _period_totals(current_start, now + timedelta(seconds=1))
    previous = _period_totals(previous_start, current_start)
    return {
        "current": current,
        "previous": previous,
        "changes": {
            "revenue": percentage_change(current["total_revenue_paisa"], previous["total_revenue_paisa"]),
            "orders": percentage_change(current["total_orders"], previous["total_orders"]),
            "avg_order_value": percentage_change(current["avg_order_value_paisa"], previous["avg_order_value_paisa"]),
        },
    }


def admin_stats(*, now: datetime | None = None) -> dict:
    """Totals plus the change of the last 30 days against the 30 days before."""
    now = now or utcnow()
    last_start = now - timedelta(days=30)
    prev_start = now - timedelta(days=60)
    upper = now + timedelta(seconds=1)
    customer = User.role == ROLE_USER

    def _change(last: int, prev: int) -> float:
        return percentage_change(last, prev)

    return {
        "total_revenue_paisa": _revenue_between(None, None),
        "total_orders": _count_between(Order, None, None),
        "total_products": _count_between(Product, None, None),
        "total_customers": _count_between(User, None, None, customer),
        "revenue_change": _change(_revenue_between(last_start, upper), _revenue_between(prev_start, last_start)),
        "orders_change": _change(_count_between(Order, last_start, upper), _count_between(Order, prev_start, last_start)),
        "products_change": _change(_count_between(Product, last_start, upper), _count_between(Product, prev_start, last_start)),
        "customers_change": _change(
            _count_between(User, last_start, upper, customer), _count_between(User, prev_start, last_start, customer)
        ),
    }


def _initials(name: str) -> str:
    parts = name.split()
    if len(parts) > 1:
        return (parts[0][0] + parts[1][0]).upper()
    return name[:2].upper()


def recent_sales(limit: int = 5) -> list[dict]:
    orders = _revenue_filter(db.session.query(Order)).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
    sales = []
    for order in orders:
        user = order.user
        sales.append({
            "id": order.id,
            "order_number": order.order_number,
            "customer": {"name": user.name, "email": user.email, "initials": _initials(user.name)},
            "amount_paisa": order.total_paisa,
            "date": to_utc_z(order.created_at),
        })
    return sales


# =============================================================================
# FAN-OUT
# =============================================================================

def _section(name: str, period: str):
    if name == "dashboard":
        return dashboard_stats()
    if name == "sales":
        return sales_analytics(period)
    if name == "products":
        return product_analytics()
    if name == "customers":
        return customer_analytics()
    if name == "recent_activity":
        return recent_activity()
    if name == "performance":
        return performance_metrics()
    raise ReportError(f"Unknown analytics section: {name}")


def get_section(name: str, period: str = "30d"):
    if name not in SECTIONS:
        raise ReportError(f"section must be one of {', '.join(SECTIONS)}")
    return _section(name, period)


def all_analytics(period: str = "30d") -> dict:
    """Run every section concurrently; any failure fails the whole report."""
    if period not in PERIOD_DAYS:
        raise ReportError(f"period must be one of {', '.join(PERIOD_DAYS)}")

    app = current_app._get_current_object()
    max_workers = int(app.config.get("ANALYTICS_MAX_WORKERS", len(SECTIONS)))

    if max_workers <= 1:
        return {name: _section(name, period) for name in SECTIONS}

    def _run(name: str):
        with app.app_context():
            try:
                return _section(name, period)
            finally:
                db.session.remove()

    results = {}
    with ThreadPoolExecutor(max_workers=min(max_workers, len(SECTIONS))) as pool:
        futures = {name: pool.submit(_run, name) for name in SECTIONS}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except ReportError:
                raise
            except Exception as exc:
                app.logger.exception("Analytics section %s failed", name)
                raise ReportError(f"Failed to compute {name} analytics") from exc
    return results

