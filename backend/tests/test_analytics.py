"""
Admin analytics tests.

Revenue excludes cancelled orders; every amount is paisa.
"""

import math
from datetime import datetime, timedelta

import pytest

from pasal.models import Order
from pasal.services import analytics_service, order_service
from pasal.services.analytics_service import ReportError, percentage_change
from pasal.time_utils import utcnow

from conftest import cart_item


def cod_order(shopper, address, product, quantity=1):
    return order_service.create_order(
        shopper.id, address_id=address.id, items=[cart_item(product, quantity=quantity)],
    )


def backdate(db_session, order, days):
    order.created_at = utcnow() - timedelta(days=days)
    db_session.commit()


@pytest.mark.parametrize("current,previous,expected", [
    (150, 100, 50.0),
    (50, 100, -50.0),
    (1, 3, -66.67),
    (100, 100, 0.0),
    (10, 0, 0),
    (10, -5, 0),
    (10, None, 0),
    ("10", 5, 0),
    (10, math.nan, 0),
    (True, 1, 0),
])
def test_percentage_change(current, previous, expected):
    assert percentage_change(current, previous) == expected


class TestSections:

    def test_dashboard_excludes_cancelled_revenue(self, shopper, address, product, db_session):
        kept = cod_order(shopper, address, product)
        dropped = cod_order(shopper, address, product)
        order_service.cancel_user_order(shopper.id, dropped.id)

        stats = analytics_service.dashboard_stats()
        assert stats["total_orders"] == 2
        assert stats["total_revenue_paisa"] == kept.total_paisa == 110_000
        assert stats["pending_orders"] == 1
        assert stats["total_customers"] == 1
        assert stats["total_categories"] == 1

    def test_sales_by_day_and_category(self, shopper, address, product, product_b):
        cod_order(shopper, address, product, quantity=2)
        cod_order(shopper, address, product_b)

        sales = analytics_service.sales_analytics("7d", "day")
        assert len(sales["rows"]) == 1
        assert sales["rows"][0]["order_count"] == 2
        assert sales["rows"][0]["revenue_paisa"] == 210_000 + 60_000
        assert sales["category_revenue"] == [
            {"category_id": product.category_id, "name": "Fashion", "revenue_paisa": 200_000, "order_count": 1},
        ]

    @pytest.mark.parametrize("period,group_by", [("1y", "day"), ("30d", "hour")])
    def test_sales_rejects_bad_arguments(self, db_session, period, group_by):
        with pytest.raises(ReportError):
            analytics_service.sales_analytics(period, group_by)

    def test_monthly_revenue_crosses_year(self, db_session):
        months = analytics_service.monthly_revenue(3, now=datetime(2026, 1, 10))
        assert [m["month"] for m in months] == ["2025-11", "2025-12", "2026-01"]
        assert [m["name"] for m in months] == ["Nov", "Dec", "Jan"]
        assert all(m["revenue_paisa"] == 0 for m in months)

    def test_monthly_revenue_detailed(self, shopper, address, product):
        cod_order(shopper, address, product)
        latest = analytics_service.monthly_revenue(detailed=True)[-1]
        assert latest["revenue_paisa"] == 110_000
        assert latest["orders"] == 1
        assert latest["customers"] == 1

    def test_products_section(self, shopper, address, product, product_b):
        cod_order(shopper, address, product_b, quantity=3)
        cod_order(shopper, address, product)

        section = analytics_service.product_analytics()
        top = section["top_selling_products"]
        assert [(p["name"], p["total_sold"]) for p in top] == [("Dhaka Topi", 3), ("Pashmina Shawl", 1)]
        assert [p["name"] for p in section["low_stock_products"]] == ["Dhaka Topi"]
        assert section["category_distribution"] == [{"name": "Fashion", "count": 1}]

    def test_customers_section(self, shopper, other_shopper, address, product):
        cod_order(shopper, address, product)
        section = analytics_service.customer_analytics()
        assert section["new_customers"] == 2
        assert section["top_customers"][0]["email"] == shopper.email
        assert section["order_status_distribution"] == {"pending": 1}

    def test_performance_compares_windows(self, shopper, address, product, db_session):
        old = cod_order(shopper, address, product)
        backdate(db_session, old, 45)
        cod_order(shopper, address, product)
        cod_order(shopper, address, product)

        metrics = analytics_service.performance_metrics()
        assert metrics["current"]["total_orders"] == 2
        assert metrics["previous"]["total_orders"] == 1
        assert metrics["changes"]["orders"] == 100.0
        assert metrics["changes"]["revenue"] == 100.0
        assert metrics["changes"]["avg_order_value"] == 0.0

    def test_recent_activity(self, shopper, address, product):
        cod_order(shopper, address, product)
        activity = analytics_service.recent_activity()
        assert activity["recent_orders"][0]["customer"]["name"] == "Sita Sharma"
        assert [u["email"] for u in activity["recent_users"]] == [shopper.email]
        assert activity["recent_products"][0]["category"] == "Fashion"

    def test_unknown_section(self, db_session):
        with pytest.raises(ReportError):
            analytics_service.get_section("weather")


class TestAdminAnalyticsEndpoints:

    def test_stats(self, client, admin_headers, shopper, address, product, db_session):
        old = cod_order(shopper, address, product)
        backdate(db_session, old, 40)
        cod_order(shopper, address, product)

        resp = client.get("/api/admin/stats", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["total_revenue_paisa"] == 220_000
        assert resp.json["total_orders"] == 2
        assert resp.json["revenue_change"] == 0.0
        assert resp.json["customers_change"] == 0

    def test_all_sections_concurrently(self, client, admin_headers, shopper, address, product):
        cod_order(shopper, address, product)
        resp = client.get("/api/admin/analytics/all?period=7d", headers=admin_headers)
        assert resp.status_code == 200
        assert set(resp.json) == set(analytics_service.SECTIONS)
        assert resp.json["dashboard"]["total_orders"] == 1
        assert resp.json["sales"]["period"] == "7d"

    def test_all_sections_serial(self, client, admin_headers, app_config):
        app_config(ANALYTICS_MAX_WORKERS=1)
        resp = client.get("/api/admin/analytics/all", headers=admin_headers)
        assert resp.status_code == 200
        assert set(resp.json) == set(analytics_service.SECTIONS)

    def test_invalid_period(self, client, admin_headers):
        resp = client.get("/api/admin/analytics/all?period=2w", headers=admin_headers)
        assert resp.status_code == 400

    def test_one_failing_section_fails_report(self, client, admin_headers, monkeypatch):
        def boom():
            raise RuntimeError("product query exploded")

        monkeypatch.setattr(analytics_service, "product_analytics", boom)
        resp = client.get("/api/admin/analytics/all", headers=admin_headers)
        assert resp.status_code == 500
        assert resp.json == {"error": "Failed to compute products analytics"}

    def test_single_section(self, client, admin_headers):
        resp = client.get("/api/admin/analytics?section=performance", headers=admin_headers)
        assert resp.status_code == 200
        assert "changes" in resp.json["performance"]

        resp = client.get("/api/admin/analytics?section=monthly_revenue&detailed=true", headers=admin_headers)
        assert len(resp.json["monthly_revenue"]) == 6
        assert "orders" in resp.json["monthly_revenue"][0]

        assert client.get("/api/admin/analytics?section=weather", headers=admin_headers).status_code == 400

    def test_recent_sales_skip_cancelled(self, client, admin_headers, shopper, address, product, db_session):
        kept = cod_order(shopper, address, product)
        dropped = cod_order(shopper, address, product)
        order_service.cancel_user_order(shopper.id, dropped.id)

        resp = client.get("/api/admin/recent-sales?limit=10", headers=admin_headers)
        sales = resp.json["sales"]
        assert [s["id"] for s in sales] == [kept.id]
        assert sales[0]["customer"]["initials"] == "SS"
        assert db_session.query(Order).count() == 2
