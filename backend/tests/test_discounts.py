"""
Discount code tests.

Amounts are paisa; percentage values are basis points (2000 = 20%).
"""

from datetime import timedelta

import pytest

from pasal.models import Discount
from pasal.services import discount_service
from pasal.services.discount_service import DiscountError
from pasal.time_utils import to_utc_z, utcnow
from pasal.validation import NotFoundError


def make_discount(**fields) -> Discount:
    data = {"code": "SAVE20", "discount_type": "percentage", "value": 2000}
    data.update(fields)
    return discount_service.create_discount(data)


# =============================================================================
# AMOUNT CALCULATION
# =============================================================================


class TestDiscountAmount:

    def test_percentage_capped_by_max(self, db_session):
        """20% off Rs. 4,000 capped at Rs. 500 gives Rs. 500."""
        make_discount(max_discount_paisa=50_000)
        quote = discount_service.validate_discount("SAVE20", 400_000, [])
        assert quote.amount_paisa == 50_000
        assert quote.to_dict()["discount_amount_paisa"] == 50_000

    def test_percentage_under_cap(self, db_session):
        make_discount(max_discount_paisa=50_000)
        assert discount_service.validate_discount("SAVE20", 100_000, []).amount_paisa == 20_000

    def test_percentage_rounds_half_up(self, db_session):
        make_discount(value=1500)
        assert discount_service.validate_discount("SAVE20", 999, []).amount_paisa == 150

    def test_fixed_never_exceeds_subtotal(self, db_session):
        make_discount(code="FLAT1000", discount_type="fixed", value=100_000)
        assert discount_service.validate_discount("FLAT1000", 40_000, []).amount_paisa == 40_000

    def test_code_is_case_insensitive(self, db_session):
        make_discount()
        assert discount_service.validate_discount("  save20 ", 10_000, []).discount.code == "SAVE20"


# =============================================================================
# VALIDATION RULES
# =============================================================================


class TestDiscountRules:

    def test_unknown_code(self, db_session):
        with pytest.raises(NotFoundError, match="Invalid discount code"):
            discount_service.validate_discount("NOPE", 10_000, [])

    def test_inactive(self, db_session):
        make_discount(is_active=False)
        with pytest.raises(DiscountError, match="inactive or expired"):
            discount_service.validate_discount("SAVE20", 10_000, [])

    def test_expired(self, db_session):
        make_discount(end_date=to_utc_z(utcnow() - timedelta(days=1)))
        with pytest.raises(DiscountError, match="inactive or expired"):
            discount_service.validate_discount("SAVE20", 10_000, [])

    def test_not_started(self, db_session):
        make_discount(start_date=to_utc_z(utcnow() + timedelta(days=1)))
        with pytest.raises(DiscountError, match="inactive or expired"):
            discount_service.validate_discount("SAVE20", 10_000, [])

    def test_usage_limit_reached(self, db_session):
        discount = make_discount(usage_limit=1)
        discount_service.apply_discount(discount.id)
        with pytest.raises(DiscountError, match="usage limit"):
            discount_service.validate_discount("SAVE20", 10_000, [])

    def test_minimum_purchase(self, db_session):
        make_discount(min_purchase_paisa=100_000)
        with pytest.raises(DiscountError) as excinfo:
            discount_service.validate_discount("SAVE20", 99_999, [])
        assert str(excinfo.value) == "Minimum purchase of Rs. 1,000 required for this discount"

    def test_product_allow_list(self, product, product_b):
        make_discount(applicable_product_ids=[product.id])
        with pytest.raises(DiscountError, match="does not apply"):
            discount_service.validate_discount("SAVE20", 50_000, [{"product_id": product_b.id}])
        quote = discount_service.validate_discount(
            "SAVE20", 150_000, [{"product_id": product.id}, {"product_id": product_b.id}]
        )
        assert quote.amount_paisa == 30_000

    def test_category_allow_list(self, product, product_b, category):
        make_discount(applicable_category_ids=[category.id])
        assert discount_service.validate_discount("SAVE20", 100_000, [{"product_id": product.id}])
        with pytest.raises(DiscountError):
            discount_service.validate_discount("SAVE20", 50_000, [{"product_id": product_b.id}])


# =============================================================================
# HTTP
# =============================================================================


class TestDiscountEndpoints:

    def test_validate_is_public(self, client, db_session):
        make_discount(max_discount_paisa=50_000)
        resp = client.post("/api/discounts/validate", json={"code": "SAVE20", "subtotal_paisa": 400_000})
        assert resp.status_code == 200
        assert resp.json["valid"] is True
        assert resp.json["discount_amount_paisa"] == 50_000

    def test_validate_unknown_code(self, client, db_session):
        resp = client.post("/api/discounts/validate", json={"code": "NOPE", "subtotal_paisa": 1000})
        assert resp.status_code == 404
        assert resp.json == {"valid": False, "error": "Invalid discount code"}

    def test_validate_requires_integer_subtotal(self, client, db_session):
        make_discount()
        resp = client.post("/api/discounts/validate", json={"code": "SAVE20", "subtotal_paisa": "abc"})
        assert resp.status_code == 400

    def test_apply_increments_until_exhausted(self, client, shopper_headers):
        discount = make_discount(usage_limit=2)
        for expected in (1, 2):
            resp = client.post("/api/discounts/apply", headers=shopper_headers, json={"discount_id": discount.id})
            assert resp.status_code == 200
            assert resp.json["discount"]["usage_count"] == expected
        resp = client.post("/api/discounts/apply", headers=shopper_headers, json={"discount_id": discount.id})
        assert resp.status_code == 400

    def test_apply_requires_auth(self, client, db_session):
        assert client.post("/api/discounts/apply", json={"discount_id": 1}).status_code == 401


class TestAdminDiscounts:

    def test_create_and_duplicate(self, client, admin_headers):
        body = {"code": "dashain20", "discount_type": "percentage", "value": 2000}
        resp = client.post("/api/admin/discounts", headers=admin_headers, json=body)
        assert resp.status_code == 201
        assert resp.json["discount"]["code"] == "DASHAIN20"
        assert resp.json["discount"]["usage_count"] == 0

        resp = client.post("/api/admin/discounts", headers=admin_headers, json=body)
        assert resp.status_code == 409
        assert resp.json["error"] == "Discount code already exists"

    @pytest.mark.parametrize("body", [
        {"code": "BAD", "discount_type": "percentage", "value": 20_000},
        {"code": "BAD1", "discount_type": "bogus", "value": 10},
        {"code": "BAD2", "discount_type": "fixed", "value": 0},
        {"code": "no spaces", "discount_type": "fixed", "value": 100},
        {"code": "DATES", "discount_type": "fixed", "value": 100,
         "start_date": "2026-05-01T00:00:00Z", "end_date": "2026-04-01T00:00:00Z"},
    ])
    def test_create_validation(self, client, admin_headers, body):
        assert client.post("/api/admin/discounts", headers=admin_headers, json=body).status_code == 400

    def test_allow_list_ids_are_coerced(self, client, admin_headers, product, category):
        body = {
            "code": "TIHAR10", "discount_type": "percentage", "value": 1000,
            "applicable_product_ids": [str(product.id), product.id],
            "applicable_category_ids": [f" {category.id} "],
        }
        resp = client.post("/api/admin/discounts", headers=admin_headers, json=body)
        assert resp.status_code == 201
        assert resp.json["discount"]["applicable_product_ids"] == [product.id]
        assert resp.json["discount"]["applicable_category_ids"] == [category.id]

    @pytest.mark.parametrize("ids,status", [(["abc"], 400), ("1,2", 400), ([9999], 404)])
    def test_allow_list_bad_ids(self, client, admin_headers, ids, status):
        body = {"code": "BADIDS", "discount_type": "fixed", "value": 100, "applicable_product_ids": ids}
        assert client.post("/api/admin/discounts", headers=admin_headers, json=body).status_code == status

    def test_update_toggle_delete(self, client, admin_headers):
        discount = make_discount()
        resp = client.put(f"/api/admin/discounts/{discount.id}", headers=admin_headers, json={"value": 1500})
        assert resp.status_code == 200
        assert resp.json["discount"]["value"] == 1500

        resp = client.patch(f"/api/admin/discounts/{discount.id}/toggle-status", headers=admin_headers)
        assert resp.json["discount"]["is_active"] is False
        resp = client.patch(f"/api/admin/discounts/{discount.id}/toggle-status", headers=admin_headers)
        assert resp.json["discount"]["is_active"] is True

        discount_id = discount.id
        assert client.delete(f"/api/admin/discounts/{discount_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/admin/discounts/{discount_id}", headers=admin_headers).status_code == 404

    def test_list_filters(self, client, admin_headers):
        make_discount()
        make_discount(code="OLD10", is_active=False)
        resp = client.get("/api/admin/discounts?status=inactive", headers=admin_headers)
        assert [d["code"] for d in resp.json["items"]] == ["OLD10"]
