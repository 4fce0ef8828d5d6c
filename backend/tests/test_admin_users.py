"""
Admin user management tests.

Any admin manages shopper accounts; only a superadmin grants, revokes or
manages admin roles. Superadmins never appear through /api/admin/users.
"""

import pytest

from pasal.models import Product, Review, SessionToken, User, WishlistItem
from pasal.models.auth import ROLE_SUPERADMIN
from pasal.services.auth_service import create_user

from conftest import PASSWORD, auth_headers, cart_item, get_auth_token


@pytest.fixture
def superadmin(db_session):
    return create_user(name="Owner", email="owner@example.com", password=PASSWORD, role=ROLE_SUPERADMIN)


@pytest.fixture
def superadmin_headers(client, superadmin):
    return auth_headers(get_auth_token(client, superadmin.email, PASSWORD))


def new_user(**overrides):
    data = {"name": "Gita Rai", "email": "gita@example.com", "password": PASSWORD}
    data.update(overrides)
    return data


# =============================================================================
# LISTING AND LOOKUP
# =============================================================================


class TestListUsers:

    def test_lists_everyone_below_superadmin(self, client, admin_headers, shopper, superadmin):
        resp = client.get("/api/admin/users", headers=admin_headers)
        assert resp.status_code == 200
        emails = {u["email"] for u in resp.json["items"]}
        assert emails == {"sita@example.com", "admin@example.com"}
        assert resp.json["count"] == 2

    def test_filters(self, client, admin_headers, shopper, other_shopper):
        resp = client.get("/api/admin/users?role=admin", headers=admin_headers)
        assert [u["email"] for u in resp.json["items"]] == ["admin@example.com"]

        resp = client.get("/api/admin/users?search=hari", headers=admin_headers)
        assert [u["email"] for u in resp.json["items"]] == ["hari@example.com"]

    def test_bad_role_filter(self, client, admin_headers):
        resp = client.get("/api/admin/users?role=superadmin", headers=admin_headers)
        assert resp.status_code == 400

    def test_superadmin_is_hidden(self, client, admin_headers, superadmin):
        resp = client.get(f"/api/admin/users/{superadmin.id}", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json["error"] == "User not found"

    def test_get_user(self, client, admin_headers, shopper):
        resp = client.get(f"/api/admin/users/{shopper.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["user"]["email"] == shopper.email
        assert "password_hash" not in resp.json["user"]

    def test_shoppers_are_refused(self, client, shopper_headers):
        resp = client.get("/api/admin/users", headers=shopper_headers)
        assert resp.status_code == 401


# =============================================================================
# CREATE
# =============================================================================


class TestCreateUser:

    def test_admin_creates_shopper(self, client, admin_headers):
        resp = client.post("/api/admin/users", headers=admin_headers, json=new_user())
        assert resp.status_code == 201
        assert resp.json["user"]["role"] == "user"
        assert get_auth_token(client, "gita@example.com", PASSWORD) is not None

    def test_admin_cannot_create_admin(self, client, admin_headers, db_session):
        resp = client.post("/api/admin/users", headers=admin_headers, json=new_user(role="admin"))
        assert resp.status_code == 401
        assert resp.json["error"] == "Only a superadmin can grant admin roles"
        assert db_session.query(User).filter_by(email="gita@example.com").count() == 0

    def test_superadmin_creates_admin(self, client, superadmin_headers):
        resp = client.post("/api/admin/users", headers=superadmin_headers, json=new_user(role="admin"))
        assert resp.status_code == 201
        assert resp.json["user"]["role"] == "admin"

    def test_superadmin_role_is_not_assignable(self, client, superadmin_headers):
        resp = client.post("/api/admin/users", headers=superadmin_headers, json=new_user(role="superadmin"))
        assert resp.status_code == 400

    @pytest.mark.parametrize("overrides", [
        {"name": ""},
        {"email": None},
        {"password": ""},
        {"email": "not-an-email"},
        {"password": "short"},
    ])
    def test_validation(self, client, admin_headers, overrides):
        resp = client.post("/api/admin/users", headers=admin_headers, json=new_user(**overrides))
        assert resp.status_code == 400

    def test_duplicate_email(self, client, admin_headers, shopper):
        resp = client.post("/api/admin/users", headers=admin_headers, json=new_user(email="SITA@example.com"))
        assert resp.status_code == 409
        assert resp.json["error"] == "User with this email already exists"


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateUser:

    def test_update_name_and_email(self, client, admin_headers, shopper):
        resp = client.put(f"/api/admin/users/{shopper.id}", headers=admin_headers, json={
            "name": "Sita K. Sharma",
            "email": "sita.sharma@example.com",
        })
        assert resp.status_code == 200
        assert resp.json["user"]["name"] == "Sita K. Sharma"
        assert resp.json["user"]["email"] == "sita.sharma@example.com"

    def test_email_in_use(self, client, admin_headers, shopper, other_shopper):
        resp = client.put(f"/api/admin/users/{shopper.id}", headers=admin_headers, json={"email": other_shopper.email})
        assert resp.status_code == 409
        assert resp.json["error"] == "Email already in use"

    def test_unknown_field(self, client, admin_headers, shopper):
        resp = client.put(f"/api/admin/users/{shopper.id}", headers=admin_headers, json={"password_hash": "x"})
        assert resp.status_code == 400

    def test_admin_cannot_promote(self, client, admin_headers, shopper, db_session):
        resp = client.put(f"/api/admin/users/{shopper.id}", headers=admin_headers, json={"role": "admin"})
        assert resp.status_code == 401
        assert db_session.get(User, shopper.id).role == "user"

    def test_admin_cannot_edit_other_admin(self, client, admin_headers, db_session):
        colleague = create_user(name="Second Admin", email="admin2@example.com", password=PASSWORD, role="admin")
        resp = client.put(f"/api/admin/users/{colleague.id}", headers=admin_headers, json={"is_active": False})
        assert resp.status_code == 401
        assert db_session.get(User, colleague.id).is_active is True

    def test_superadmin_promotes_and_demotes(self, client, superadmin_headers, shopper, db_session):
        resp = client.put(f"/api/admin/users/{shopper.id}", headers=superadmin_headers, json={"role": "admin"})
        assert resp.status_code == 200
        assert resp.json["user"]["role"] == "admin"

        resp = client.put(f"/api/admin/users/{shopper.id}", headers=superadmin_headers, json={"role": "user"})
        assert resp.status_code == 200
        assert db_session.get(User, shopper.id).role == "user"

    def test_cannot_change_own_role(self, client, admin_headers, admin_user):
        resp = client.put(f"/api/admin/users/{admin_user.id}", headers=admin_headers, json={"role": "user"})
        assert resp.status_code == 400
        assert resp.json["error"] == "Cannot change your own role"

    def test_cannot_deactivate_self(self, client, admin_headers, admin_user):
        resp = client.put(f"/api/admin/users/{admin_user.id}", headers=admin_headers, json={"is_active": False})
        assert resp.status_code == 400
        assert resp.json["error"] == "Cannot deactivate your own account"

    def test_deactivation_revokes_sessions(self, client, admin_headers, shopper, shopper_headers, db_session):
        resp = client.put(f"/api/admin/users/{shopper.id}", headers=admin_headers, json={"is_active": False})
        assert resp.status_code == 200
        assert resp.json["user"]["is_active"] is False

        assert client.get("/api/user/profile", headers=shopper_headers).status_code == 401
        live = db_session.query(SessionToken).filter_by(user_id=shopper.id, is_revoked=False).count()
        assert live == 0
        assert get_auth_token(client, shopper.email, PASSWORD) is None

    def test_is_active_must_be_boolean(self, client, admin_headers, shopper):
        resp = client.put(f"/api/admin/users/{shopper.id}", headers=admin_headers, json={"is_active": "no"})
        assert resp.status_code == 400


# =============================================================================
# DELETE
# =============================================================================


class TestDeleteUser:

    def test_delete_clears_owned_rows(self, client, admin_headers, shopper, shopper_headers,
                                      other_headers, product, db_session):
        client.post("/api/user/wishlist", headers=shopper_headers, json={"product_id": product.id})
        client.post(f"/api/products/{product.id}/reviews", headers=shopper_headers,
                    json={"rating": 1, "content": "Not what I expected at all."})
        client.post(f"/api/products/{product.id}/reviews", headers=other_headers,
                    json={"rating": 5, "content": "Soft and warm, exactly as pictured."})
        assert db_session.get(Product, product.id).review_count == 2

        resp = client.delete(f"/api/admin/users/{shopper.id}", headers=admin_headers)
        assert resp.status_code == 200

        assert db_session.get(User, shopper.id) is None
        assert db_session.query(WishlistItem).filter_by(user_id=shopper.id).count() == 0
        assert db_session.query(Review).filter_by(user_id=shopper.id).count() == 0
        assert db_session.query(SessionToken).filter_by(user_id=shopper.id).count() == 0
        refreshed = db_session.get(Product, product.id)
        assert refreshed.review_count == 1
        assert refreshed.rating == 5.0

    def test_user_with_orders_is_kept(self, client, admin_headers, shopper, shopper_headers,
                                      address, product, db_session):
        placed = client.post("/api/orders", headers=shopper_headers, json={
            "address_id": address.id, "payment_method": "cod", "items": [cart_item(product)],
        })
        assert placed.status_code == 201

        resp = client.delete(f"/api/admin/users/{shopper.id}", headers=admin_headers)
        assert resp.status_code == 409
        assert db_session.get(User, shopper.id) is not None

    def test_cannot_delete_self(self, client, admin_headers, admin_user):
        resp = client.delete(f"/api/admin/users/{admin_user.id}", headers=admin_headers)
        assert resp.status_code == 400

    def test_admin_cannot_delete_admin(self, client, admin_headers, db_session):
        colleague = create_user(name="Second Admin", email="admin2@example.com", password=PASSWORD, role="admin")
        resp = client.delete(f"/api/admin/users/{colleague.id}", headers=admin_headers)
        assert resp.status_code == 401

    def test_superadmin_deletes_admin(self, client, superadmin_headers, admin_user, db_session):
        resp = client.delete(f"/api/admin/users/{admin_user.id}", headers=superadmin_headers)
        assert resp.status_code == 200
        assert db_session.get(User, admin_user.id) is None

    def test_superadmin_cannot_be_deleted(self, client, admin_headers, superadmin):
        resp = client.delete(f"/api/admin/users/{superadmin.id}", headers=admin_headers)
        assert resp.status_code == 404
