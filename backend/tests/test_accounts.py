"""
Profile, notification preference and address book tests.

The address book must keep at most one default address per user through
every add/update/delete sequence.
"""

import pytest

from pasal.services import address_service
from pasal.services.address_service import AddressError

from conftest import address_payload


def _default_ids(addresses):
    return [a["id"] for a in addresses if a["is_default"]]


# =============================================================================
# PROFILE
# =============================================================================


class TestProfile:

    def test_get_profile(self, client, shopper, shopper_headers):
        resp = client.get("/api/user/profile", headers=shopper_headers)
        assert resp.status_code == 200
        assert resp.json["user"]["email"] == shopper.email

    def test_update_profile(self, client, shopper_headers):
        resp = client.put("/api/user/profile", headers=shopper_headers, json={
            "name": "Sita S.",
            "phone": "9812345678",
            "vendor_profile": {"store_name": "Sita's Shop", "is_approved": True},
        })
        assert resp.status_code == 200
        user = resp.json["user"]
        assert user["name"] == "Sita S."
        assert user["vendor_profile"]["store_name"] == "Sita's Shop"
        assert user["vendor_profile"]["is_approved"] is False

    def test_role_not_writable(self, client, shopper_headers):
        resp = client.put("/api/user/profile", headers=shopper_headers, json={"role": "admin"})
        assert resp.status_code == 400


class TestNotificationPreferences:

    def test_defaults(self, client, shopper_headers):
        resp = client.get("/api/user/notifications", headers=shopper_headers)
        assert resp.status_code == 200
        assert resp.json["preferences"]["order_updates"] is True
        assert resp.json["preferences"]["marketing"] is False

    def test_update_known_keys(self, client, shopper_headers):
        resp = client.put("/api/user/notifications", headers=shopper_headers, json={
            "preferences": {"marketing": True},
        })
        assert resp.status_code == 200
        assert resp.json["preferences"]["marketing"] is True
        assert resp.json["preferences"]["email"] is True

    @pytest.mark.parametrize("body", [{"unknown_switch": True}, {"marketing": "yes"}])
    def test_rejects_bad_preferences(self, client, shopper_headers, body):
        resp = client.put("/api/user/notifications", headers=shopper_headers, json=body)
        assert resp.status_code == 400


# =============================================================================
# ADDRESSES
# =============================================================================


class TestAddressBook:

    def test_first_address_becomes_default(self, client, shopper_headers):
        resp = client.post("/api/user/addresses", headers=shopper_headers, json=address_payload())
        assert resp.status_code == 201
        addresses = resp.json["addresses"]
        assert len(addresses) == 1
        assert addresses[0]["is_default"] is True

    def test_new_default_clears_previous(self, client, shopper_headers):
        client.post("/api/user/addresses", headers=shopper_headers, json=address_payload())
        resp = client.post("/api/user/addresses", headers=shopper_headers, json=address_payload(
            full_name="Office Desk", address_type="office", is_default=True,
        ))
        addresses = resp.json["addresses"]
        assert len(addresses) == 2
        assert _default_ids(addresses) == [addresses[1]["id"]]

    def test_non_default_add_keeps_existing_default(self, client, shopper_headers):
        first = client.post("/api/user/addresses", headers=shopper_headers, json=address_payload()).json
        resp = client.post("/api/user/addresses", headers=shopper_headers, json=address_payload(full_name="Second"))
        assert _default_ids(resp.json["addresses"]) == [first["addresses"][0]["id"]]

    def test_set_default_endpoint(self, client, shopper, shopper_headers):
        a = address_service.add_address(shopper.id, address_payload())
        b = address_service.add_address(shopper.id, address_payload(full_name="Second"))
        resp = client.post(f"/api/user/addresses/{b.id}/default", headers=shopper_headers)
        assert resp.status_code == 200
        assert _default_ids(resp.json["addresses"]) == [b.id]
        assert a.id not in _default_ids(resp.json["addresses"])

    def test_unsetting_only_default_leaves_none(self, client, shopper, shopper_headers):
        a = address_service.add_address(shopper.id, address_payload())
        resp = client.put(f"/api/user/addresses/{a.id}", headers=shopper_headers, json={"is_default": False})
        assert resp.status_code == 200
        assert _default_ids(resp.json["addresses"]) == []

    def test_deleting_default_promotes_first_remaining(self, client, shopper, shopper_headers):
        a = address_service.add_address(shopper.id, address_payload())
        b = address_service.add_address(shopper.id, address_payload(full_name="Second"))
        c = address_service.add_address(shopper.id, address_payload(full_name="Third"))
        resp = client.delete(f"/api/user/addresses/{a.id}", headers=shopper_headers)
        assert resp.status_code == 200
        assert [x["id"] for x in resp.json["addresses"]] == [b.id, c.id]
        assert _default_ids(resp.json["addresses"]) == [b.id]

    def test_single_default_invariant_over_sequence(self, shopper):
        ids = [address_service.add_address(shopper.id, address_payload(full_name=f"Addr {i}")).id for i in range(4)]
        address_service.set_default_address(shopper.id, ids[2])
        address_service.update_address(shopper.id, ids[3], {"is_default": True})
        address_service.delete_address(shopper.id, ids[0])
        address_service.add_address(shopper.id, address_payload(full_name="Late", is_default=True))
        assert address_service.count_defaults(shopper.id) == 1

    def test_cannot_touch_other_users_address(self, client, shopper, other_headers):
        a = address_service.add_address(shopper.id, address_payload())
        resp = client.delete(f"/api/user/addresses/{a.id}", headers=other_headers)
        assert resp.status_code == 404

    def test_coordinates_round_trip(self, client, shopper_headers):
        resp = client.post("/api/user/addresses", headers=shopper_headers, json=address_payload(
            coordinates={"lat": 27.7172, "lng": 85.324},
        ))
        assert resp.json["addresses"][0]["coordinates"] == {"lat": 27.7172, "lng": 85.324}

    @pytest.mark.parametrize("overrides", [
        {"phone": "0123456789"},
        {"phone": "9512345678"},
        {"full_name": "A"},
        {"postal_code": "4460"},
        {"address_type": "warehouse"},
        {"coordinates": {"lat": 95, "lng": 85}},
        {"coordinates": {"lat": 27, "lng": 190}},
    ])
    def test_validation(self, shopper, overrides):
        with pytest.raises(AddressError):
            address_service.add_address(shopper.id, address_payload(**overrides))

    def test_invalid_phone_via_api(self, client, shopper_headers):
        resp = client.post("/api/user/addresses", headers=shopper_headers, json=address_payload(phone="12345"))
        assert resp.status_code == 400
        assert "Nepali phone number" in resp.json["error"]
