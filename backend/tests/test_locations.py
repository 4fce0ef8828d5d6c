"""
Delivery location tests: public lookup and tree, admin maintenance.

Paths follow the parent chain and are rewritten for the whole subtree when a
node is renamed or moved.
"""

import pytest

from pasal.models import Location
from pasal.services import location_service


@pytest.fixture
def nepal_tree(db_session):
    """Nepal > Bagmati > Kathmandu > {Thamel, Baneshwor}; Nepal > Gandaki > Pokhara."""
    nepal = location_service.create_location({"name": "Nepal", "type": "country"})
    bagmati = location_service.create_location({"name": "Bagmati", "type": "province", "parent_id": nepal.id})
    gandaki = location_service.create_location({"name": "Gandaki", "type": "province", "parent_id": nepal.id})
    kathmandu = location_service.create_location({"name": "Kathmandu", "type": "city", "parent_id": bagmati.id})
    pokhara = location_service.create_location({"name": "Pokhara", "type": "city", "parent_id": gandaki.id})
    thamel = location_service.create_location({
        "name": "Thamel", "type": "landmark", "parent_id": kathmandu.id, "shipping_price_paisa": 10_000,
    })
    baneshwor = location_service.create_location({
        "name": "Baneshwor", "type": "landmark", "parent_id": kathmandu.id, "shipping_price_paisa": 12_000,
    })
    return {
        "nepal": nepal, "bagmati": bagmati, "gandaki": gandaki, "kathmandu": kathmandu,
        "pokhara": pokhara, "thamel": thamel, "baneshwor": baneshwor,
    }


# =============================================================================
# PUBLIC LOOKUP
# =============================================================================


class TestPublicLookup:

    def test_paths(self, nepal_tree):
        assert nepal_tree["thamel"].path == "Nepal/Bagmati/Kathmandu/Thamel"
        assert nepal_tree["nepal"].path == "Nepal"

    def test_list_by_type_sorted_by_name(self, client, nepal_tree):
        resp = client.get("/api/locations?type=landmark")
        assert resp.status_code == 200
        assert [loc["name"] for loc in resp.json["locations"]] == ["Baneshwor", "Thamel"]
        assert resp.json["locations"][0]["parent"]["name"] == "Kathmandu"
        assert resp.json["count"] == 2

    def test_list_by_parent(self, client, nepal_tree):
        resp = client.get(f"/api/locations?parent={nepal_tree['nepal'].id}")
        assert [loc["name"] for loc in resp.json["locations"]] == ["Bagmati", "Gandaki"]

        resp = client.get("/api/locations?parent=root")
        assert [loc["name"] for loc in resp.json["locations"]] == ["Nepal"]

    def test_search_is_case_insensitive(self, client, nepal_tree):
        resp = client.get("/api/locations?search=kHaR")
        assert [loc["name"] for loc in resp.json["locations"]] == ["Pokhara"]

    @pytest.mark.parametrize("query", ["type=village", "parent=abc", "parent=0"])
    def test_bad_filters(self, client, nepal_tree, query):
        resp = client.get(f"/api/locations?{query}")
        assert resp.status_code == 400

    def test_tree(self, client, nepal_tree):
        resp = client.get("/api/locations/tree")
        assert resp.status_code == 200
        roots = resp.json["locations"]
        assert [r["name"] for r in roots] == ["Nepal"]
        provinces = roots[0]["children"]
        assert [p["name"] for p in provinces] == ["Bagmati", "Gandaki"]
        kathmandu = provinces[0]["children"][0]
        assert [c["name"] for c in kathmandu["children"]] == ["Baneshwor", "Thamel"]
        assert kathmandu["children"][1]["shipping_price_paisa"] == 10_000

    def test_shipping_price_only_on_landmarks(self, nepal_tree):
        city = location_service.create_location({
            "name": "Lalitpur", "type": "city", "parent_id": nepal_tree["bagmati"].id, "shipping_price_paisa": 5_000,
        })
        assert city.shipping_price_paisa == 0


# =============================================================================
# ADMIN
# =============================================================================


class TestAdminLocations:

    def test_requires_admin(self, client, shopper_headers):
        assert client.get("/api/admin/locations", headers=shopper_headers).status_code == 401
        assert client.post("/api/admin/locations", headers=shopper_headers, json={"name": "Nepal", "type": "country"}).status_code == 401

    def test_create_and_list_by_path(self, client, admin_headers, admin_user, nepal_tree, db_session):
        resp = client.post("/api/admin/locations", headers=admin_headers, json={
            "name": "Lakeside", "type": "landmark", "parent_id": nepal_tree["pokhara"].id,
            "shipping_price_paisa": "15000",
        })
        assert resp.status_code == 201
        assert resp.json["location"]["path"] == "Nepal/Gandaki/Pokhara/Lakeside"
        assert resp.json["location"]["shipping_price_paisa"] == 15_000
        assert db_session.get(Location, resp.json["location"]["id"]).created_by_user_id == admin_user.id

        listing = client.get("/api/admin/locations", headers=admin_headers).json["locations"]
        paths = [loc["path"] for loc in listing]
        assert paths == sorted(paths)
        assert len(paths) == 8

    @pytest.mark.parametrize("body, status", [
        ({"type": "city"}, 400),
        ({"name": "Nowhere"}, 400),
        ({"name": "Nowhere", "type": "village"}, 400),
        ({"name": "Nowhere", "type": "city", "parent_id": 99999}, 400),
        ({"name": "Kath/mandu", "type": "country"}, 400),
        ({"name": "Gorkha", "type": "landmark", "shipping_price_paisa": -1}, 400),
    ])
    def test_create_validation(self, client, admin_headers, body, status):
        resp = client.post("/api/admin/locations", headers=admin_headers, json=body)
        assert resp.status_code == status

    def test_parent_not_found_message(self, client, admin_headers):
        resp = client.post("/api/admin/locations", headers=admin_headers,
                           json={"name": "Nowhere", "type": "city", "parent_id": 99999})
        assert resp.json["error"] == "Parent location not found"

    def test_child_must_be_deeper_than_parent(self, client, admin_headers, nepal_tree):
        resp = client.post("/api/admin/locations", headers=admin_headers, json={
            "name": "Koshi", "type": "province", "parent_id": nepal_tree["kathmandu"].id,
        })
        assert resp.status_code == 400

    def test_duplicate_sibling_name(self, client, admin_headers, nepal_tree):
        resp = client.post("/api/admin/locations", headers=admin_headers, json={
            "name": "thamel", "type": "landmark", "parent_id": nepal_tree["kathmandu"].id,
        })
        assert resp.status_code == 409

    def test_rename_rewrites_subtree_paths(self, client, admin_headers, nepal_tree, db_session):
        resp = client.put(f"/api/admin/locations/{nepal_tree['kathmandu'].id}", headers=admin_headers,
                          json={"name": "Kathmandu Metro"})
        assert resp.status_code == 200
        assert db_session.get(Location, nepal_tree["thamel"].id).path == "Nepal/Bagmati/Kathmandu Metro/Thamel"

    def test_move_under_other_parent(self, client, admin_headers, nepal_tree, db_session):
        resp = client.put(f"/api/admin/locations/{nepal_tree['kathmandu'].id}", headers=admin_headers,
                          json={"parent_id": nepal_tree["gandaki"].id})
        assert resp.status_code == 200
        assert db_session.get(Location, nepal_tree["baneshwor"].id).path == "Nepal/Gandaki/Kathmandu/Baneshwor"

    def test_cannot_move_under_own_descendant(self, client, admin_headers, nepal_tree):
        resp = client.put(f"/api/admin/locations/{nepal_tree['nepal'].id}", headers=admin_headers,
                          json={"type": "country", "parent_id": nepal_tree["thamel"].id})
        assert resp.status_code == 400

    def test_type_must_stay_above_children(self, client, admin_headers, nepal_tree):
        resp = client.put(f"/api/admin/locations/{nepal_tree['bagmati'].id}", headers=admin_headers,
                          json={"type": "city"})
        assert resp.status_code == 400
        assert resp.json["error"] == "Location type must stay above its children"

    def test_delete_removes_subtree(self, client, admin_headers, nepal_tree, db_session):
        resp = client.delete(f"/api/admin/locations/{nepal_tree['bagmati'].id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["deleted"] == 4
        names = {name for (name,) in db_session.query(Location.name)}
        assert names == {"Nepal", "Gandaki", "Pokhara"}

    def test_delete_missing(self, client, admin_headers):
        resp = client.delete("/api/admin/locations/99999", headers=admin_headers)
        assert resp.status_code == 404
