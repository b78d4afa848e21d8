# tests/test_properties_api.py

"""
Tests for the property endpoints: approval workflow, visibility, caching,
inquiries and leads.
"""

from __future__ import annotations

import json

import pytest

from basira.main import app, get_image_deleter
from basira.models import Property
from basira.roles import PermissionFlag, Role

from conftest import RecordingDeleter, auth_headers


def _payload(**overrides):
    body = {
        "title": "Garden villa in New Cairo",
        "description": "Spacious villa with a private garden and pool.",
        "property_type": "villa",
        "listing_status": "for-sale",
        "price": 9_000_000,
        "location": "New Cairo",
    }
    body.update(overrides)
    return body


@pytest.fixture
def deleter():
    rec = RecordingDeleter()
    app.dependency_overrides[get_image_deleter] = lambda: rec
    return rec


# -----------------------
# Approval workflow
# -----------------------
def test_leader_auto_approves_agent_waits(client, make_user):
    leader = make_user(Role.SALES_TEAM_LEADER)
    agent = make_user(Role.SALES_AGENT)

    resp = client.post("/properties", json=_payload(), headers=auth_headers(leader))
    assert resp.status_code == 201
    assert resp.json()["message"] == "Property created and approved successfully"
    created = resp.json()["property"]
    assert created["approval_status"] == "approved"
    assert created["approved_by_id"] == leader.id
    assert created["approval_date"] is not None

    resp = client.post("/properties", json=_payload(title="Agent listing"), headers=auth_headers(agent))
    pending = resp.json()["property"]
    assert resp.json()["message"] == "Property submitted for approval"
    assert pending["approval_status"] == "pending"
    assert pending["approved_by_id"] is None

    queue = client.get("/properties/pending", headers=auth_headers(leader)).json()
    assert [p["id"] for p in queue["items"]] == [pending["id"]]

    approved = client.put(f"/properties/{pending['id']}/approve", headers=auth_headers(leader))
    assert approved.status_code == 200
    assert approved.json()["property"]["approval_status"] == "approved"
    assert approved.json()["property"]["approved_by_id"] == leader.id

    again = client.put(f"/properties/{pending['id']}/approve", headers=auth_headers(leader))
    assert again.status_code == 400
    assert again.json()["detail"] == "Property is not pending approval"


def test_plain_user_submits_for_review(client, make_user):
    user = make_user(Role.USER)
    resp = client.post("/properties", json=_payload(), headers=auth_headers(user))
    assert resp.status_code == 201
    assert resp.json()["property"]["approval_status"] == "pending"

    mine = client.get("/properties/my-submissions", headers=auth_headers(user)).json()
    assert mine["pagination"]["total"] == 1


def test_agent_with_stripped_snapshot_cannot_submit(client, make_user):
    agent = make_user(Role.SALES_AGENT, permissions={f.value: False for f in PermissionFlag})
    resp = client.post("/properties", json=_payload(), headers=auth_headers(agent))
    assert resp.status_code == 403


def test_agent_cannot_moderate(client, make_user, make_property):
    agent = make_user(Role.SALES_AGENT)
    prop = make_property(make_user(Role.USER), approval_status="pending")
    assert client.put(f"/properties/{prop.id}/approve", headers=auth_headers(agent)).status_code == 403
    assert client.get("/properties/pending", headers=auth_headers(agent)).status_code == 403


def test_approve_missing_property(client, make_user):
    admin = make_user(Role.ADMIN)
    assert client.put("/properties/999/approve", headers=auth_headers(admin)).status_code == 404


def test_agent_edit_sends_listing_back_to_review(client, make_user, make_property):
    leader = make_user(Role.SALES_TEAM_LEADER)
    agent = make_user(Role.SALES_AGENT)
    prop = make_property(agent, approved_by_id=leader.id, rejection_reason="old")

    resp = client.put(f"/properties/{prop.id}", json={"price": 8_500_000}, headers=auth_headers(agent))
    assert resp.status_code == 200
    assert resp.json()["message"] == "Property updated and submitted for approval"
    out = resp.json()["property"]
    assert out["price"] == 8_500_000
    assert out["approval_status"] == "pending"
    assert out["submitted_by_id"] == agent.id
    assert out["approved_by_id"] is None
    assert out["approval_date"] is None
    assert out["rejection_reason"] is None


def test_leader_edit_keeps_approval_state(client, make_user, make_property):
    leader = make_user(Role.SALES_TEAM_LEADER)
    agent = make_user(Role.SALES_AGENT)
    prop = make_property(agent, approved_by_id=leader.id)

    resp = client.put(f"/properties/{prop.id}", json={"title": "Renamed listing"}, headers=auth_headers(leader))
    assert resp.json()["message"] == "Property updated successfully"
    out = resp.json()["property"]
    assert out["approval_status"] == "approved"
    assert out["approved_by_id"] == leader.id


def test_edit_replaces_images(client, make_user, make_property):
    admin = make_user(Role.ADMIN)
    prop = make_property(admin, images=["old1", "old2"])
    resp = client.put(
        f"/properties/{prop.id}",
        json={"images": [{"url": "https://img.example.com/new.jpg", "public_id": "new"}]},
        headers=auth_headers(admin),
    )
    assert [(i["url"], i["sort_order"]) for i in resp.json()["property"]["images"]] == [
        ("https://img.example.com/new.jpg", 0)
    ]


@pytest.mark.parametrize("role", [Role.SALES_AGENT, Role.USER])
def test_edit_refused_for_non_creators(client, make_user, make_property, role):
    owner = make_user(Role.SALES_AGENT)
    prop = make_property(owner)
    other = make_user(role)
    resp = client.put(f"/properties/{prop.id}", json={"price": 1}, headers=auth_headers(other))
    assert resp.status_code == 403


def test_reject_user_submission_purges_images(client, make_user, deleter):
    deleter.fail_on = {"b"}
    leader = make_user(Role.SALES_TEAM_LEADER)
    user = make_user(Role.USER)
    images = [{"url": f"https://img.example.com/{pid}.jpg", "public_id": pid} for pid in ("a", "b")]
    created = client.post("/properties", json=_payload(images=images), headers=auth_headers(user)).json()["property"]

    resp = client.put(
        f"/properties/{created['id']}/reject",
        json={"reason": "Blurry photos"},
        headers=auth_headers(leader),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["deleted_images"] == 1
    assert body["property"]["approval_status"] == "rejected"
    assert body["property"]["rejection_reason"] == "Blurry photos"
    assert body["property"]["images"] == []
    assert deleter.calls == ["a", "b"]


def test_reject_without_body_uses_default_reason(client, make_user, make_property, deleter):
    admin = make_user(Role.ADMIN)
    agent = make_user(Role.SALES_AGENT)
    prop = make_property(agent, approval_status="pending", images=["keep"])

    resp = client.put(f"/properties/{prop.id}/reject", headers=auth_headers(admin))
    body = resp.json()
    assert body["property"]["rejection_reason"] == "No reason provided"
    assert body["deleted_images"] == 0
    assert len(body["property"]["images"]) == 1
    assert deleter.calls == []


# -----------------------
# Visibility / lifecycle
# -----------------------
def test_pending_detail_hidden_from_public(client, make_user, make_property):
    user = make_user(Role.USER)
    admin = make_user(Role.ADMIN)
    prop = make_property(user, approval_status="pending")

    assert client.get(f"/properties/{prop.id}").status_code == 404
    assert client.get(f"/properties/{prop.id}", headers=auth_headers(make_user(Role.USER))).status_code == 404
    assert client.get(f"/properties/{prop.id}", headers=auth_headers(user)).status_code == 200
    assert client.get(f"/properties/{prop.id}", headers=auth_headers(admin)).status_code == 200


def _titles(resp):
    return [p["title"] for p in resp.json()["items"]]


def test_public_list_filters(client, make_user, make_property):
    admin = make_user(Role.ADMIN)
    make_property(admin, title="Cheap flat", price=500_000)
    make_property(admin, title="Big villa", property_type="villa", price=12_000_000, is_featured=True)
    make_property(admin, title="Sold flat", listing_status="sold")
    make_property(admin, title="Pending flat", approval_status="pending")

    assert sorted(_titles(client.get("/properties"))) == ["Big villa", "Cheap flat"]
    assert _titles(client.get("/properties?type=villa")) == ["Big villa"]
    assert _titles(client.get("/properties?max_price=1000000")) == ["Cheap flat"]
    assert _titles(client.get("/properties?featured=true")) == ["Big villa"]
    assert _titles(client.get("/properties?sort_by=price&sort_order=asc")) == ["Cheap flat", "Big villa"]

    admin_view = client.get("/properties?approval_status=pending", headers=auth_headers(admin)).json()
    assert [p["title"] for p in admin_view["items"]] == ["Pending flat"]


def test_archive_and_restore(client, make_user, make_property):
    leader = make_user(Role.SALES_TEAM_LEADER)
    agent = make_user(Role.SALES_AGENT)
    prop = make_property(agent)

    assert client.post(f"/properties/{prop.id}/archive", headers=auth_headers(agent)).status_code == 403
    assert client.post(f"/properties/{prop.id}/archive", headers=auth_headers(leader)).status_code == 200
    assert client.get("/properties").json()["pagination"]["total"] == 0
    assert client.get(f"/properties/{prop.id}").status_code == 404

    archived = client.get("/properties?archived=true", headers=auth_headers(leader)).json()
    assert [p["id"] for p in archived["items"]] == [prop.id]

    client.post(f"/properties/{prop.id}/restore", headers=auth_headers(leader))
    assert client.get("/properties").json()["pagination"]["total"] == 1


def test_delete_property(client, make_user, make_property, deleter, db):
    leader = make_user(Role.SALES_TEAM_LEADER)
    prop = make_property(leader, images=["x", "y"])

    assert client.delete(f"/properties/{prop.id}", headers=auth_headers(make_user(Role.SALES_AGENT))).status_code == 403
    assert client.delete(f"/properties/{prop.id}", headers=auth_headers(leader)).status_code == 200
    assert deleter.calls == ["x", "y"]
    assert db.get(Property, prop.id) is None
    assert client.get(f"/properties/{prop.id}").status_code == 404


# -----------------------
# Caching
# -----------------------
def test_list_is_cached_until_invalidated(client, make_user, make_property):
    leader = make_user(Role.SALES_TEAM_LEADER)
    make_property(leader, title="First listing")
    assert client.get("/properties").json()["pagination"]["total"] == 1

    # Rows written behind the API's back stay invisible until the cache moves.
    make_property(leader, title="Second listing")
    assert client.get("/properties").json()["pagination"]["total"] == 1
    assert client.get("/properties?_t=123").json()["pagination"]["total"] == 2
    assert client.get("/properties").json()["pagination"]["total"] == 2

    make_property(leader, title="Third listing")
    assert client.get("/properties").json()["pagination"]["total"] == 2
    client.post("/properties", json=_payload(), headers=auth_headers(leader))
    assert client.get("/properties").json()["pagination"]["total"] == 4


def test_list_cache_is_per_role(client, make_user, make_property):
    admin = make_user(Role.ADMIN)
    make_property(admin, approval_status="pending")
    assert client.get("/properties").json()["pagination"]["total"] == 0
    assert client.get("/properties", headers=auth_headers(admin)).json()["pagination"]["total"] == 1


def test_detail_views_count_through_cache(client, make_user, make_property, db):
    admin = make_user(Role.ADMIN)
    prop = make_property(admin)

    assert client.get(f"/properties/{prop.id}").json()["property"]["views"] == 1
    assert client.get(f"/properties/{prop.id}").json()["property"]["views"] == 2
    assert client.get(f"/properties/{prop.id}", headers=auth_headers(admin)).json()["property"]["views"] == 2
    assert db.get(Property, prop.id).views == 2


def test_detail_refreshed_after_approval(client, make_user, make_property):
    admin = make_user(Role.ADMIN)
    prop = make_property(make_user(Role.SALES_AGENT), approval_status="pending")
    assert client.get(f"/properties/{prop.id}", headers=auth_headers(admin)).json()["property"]["approval_status"] == "pending"

    client.put(f"/properties/{prop.id}/approve", headers=auth_headers(admin))
    assert client.get(f"/properties/{prop.id}", headers=auth_headers(admin)).json()["property"]["approval_status"] == "approved"
    assert client.get(f"/properties/{prop.id}").status_code == 200


def test_stats_cached_and_invalidated_on_write(client, make_user, make_property):
    admin = make_user(Role.ADMIN)
    make_property(admin, price=1_000_000)
    stats = client.get("/properties/stats/overview", headers=auth_headers(admin)).json()
    assert stats["overview"]["total_properties"] == 1
    assert stats["overview"]["average_price"] == 1_000_000

    make_property(admin)
    assert client.get("/properties/stats/overview", headers=auth_headers(admin)).json()["overview"]["total_properties"] == 1

    client.post("/properties", json=_payload(), headers=auth_headers(admin))
    stats = client.get("/properties/stats/overview", headers=auth_headers(admin)).json()
    assert stats["overview"]["total_properties"] == 3
    assert {"value": "villa", "count": 1} in stats["by_type"]


def test_stats_require_staff(client, make_user):
    assert client.get("/properties/stats/overview", headers=auth_headers(make_user(Role.USER))).status_code == 403


def test_cache_clear(client, make_user, make_property, property_cache):
    agent = make_user(Role.SALES_AGENT)
    make_property(agent)
    client.get("/properties")
    assert property_cache.size() == 1

    assert client.post("/properties/cache/clear", headers=auth_headers(make_user(Role.USER))).status_code == 403
    assert client.post("/properties/cache/clear").status_code == 401
    assert client.post("/properties/cache/clear", headers=auth_headers(agent)).status_code == 200
    assert property_cache.size() == 0


# -----------------------
# Paging / validation
# -----------------------
def test_limit_is_clamped(client, make_user):
    admin = make_user(Role.ADMIN)
    assert client.get("/properties?limit=500").json()["pagination"]["limit"] == 50
    assert client.get("/properties").json()["pagination"]["limit"] == 12
    assert client.get("/properties?limit=500", headers=auth_headers(admin)).json()["pagination"]["limit"] == 200


def test_empty_list_has_one_page(client):
    assert client.get("/properties").json()["pagination"] == {"page": 1, "limit": 12, "total": 0, "pages": 1}


def test_invalid_payload(client, make_user):
    leader = make_user(Role.SALES_TEAM_LEADER)
    resp = client.post("/properties", json=_payload(property_type="castle", price=-1), headers=auth_headers(leader))
    assert resp.status_code == 400
    body = resp.json()
    assert body["detail"] == "Validation failed"
    assert {e["loc"][-1] for e in body["errors"]} == {"property_type", "price"}


# -----------------------
# Inquiries / leads
# -----------------------
def test_inquiry_flow(client, make_user, make_property):
    manager = make_user(Role.SALES_MANAGER)
    agent = make_user(Role.SALES_AGENT)
    prop = make_property(agent)
    hidden = make_property(agent, approval_status="pending")

    inquiry = {"name": "Buyer", "email": "Buyer@Example.com", "message": "Is it still available?"}
    resp = client.post(f"/properties/{prop.id}/inquiry", json=inquiry)
    assert resp.status_code == 201
    inquiry_id = resp.json()["inquiry"]["id"]
    assert resp.json()["inquiry"]["email"] == "buyer@example.com"
    assert client.post(f"/properties/{hidden.id}/inquiry", json=inquiry).status_code == 404

    assert client.get("/inquiries", headers=auth_headers(agent)).status_code == 403
    listed = client.get("/inquiries", headers=auth_headers(manager)).json()
    assert listed["pagination"]["total"] == 1

    resp = client.put(
        f"/inquiries/{inquiry_id}",
        json={"status": "contacted", "assigned_to_id": agent.id},
        headers=auth_headers(manager),
    )
    assert resp.status_code == 200
    assert resp.json()["inquiry"]["assigned_to_id"] == agent.id
    assert resp.json()["inquiry"]["status"] == "contacted"

    plain = make_user(Role.USER)
    resp = client.put(f"/inquiries/{inquiry_id}", json={"assigned_to_id": plain.id}, headers=auth_headers(manager))
    assert resp.status_code == 400


def test_lead_flow(client, make_user):
    leader = make_user(Role.SALES_TEAM_LEADER)
    manager = make_user(Role.SALES_MANAGER)
    agent = make_user(Role.SALES_AGENT)

    resp = client.post("/inquiries/lead", json={"name": "Prospect", "phone": "+201234567"})
    assert resp.status_code == 201
    lead_id = resp.json()["lead"]["id"]
    assert resp.json()["lead"]["source"] == "website"

    assert client.get("/inquiries/leads", headers=auth_headers(agent)).status_code == 403
    assert client.get("/inquiries/leads", headers=auth_headers(leader)).json()["pagination"]["total"] == 1

    resp = client.put(f"/inquiries/lead/{lead_id}", json={"assigned_to_id": manager.id}, headers=auth_headers(leader))
    assert resp.status_code == 403
    resp = client.put(
        f"/inquiries/lead/{lead_id}",
        json={"assigned_to_id": agent.id, "status": "qualified", "notes": "Call back Sunday"},
        headers=auth_headers(leader),
    )
    assert resp.json()["lead"]["assigned_to_id"] == agent.id
    assert resp.json()["lead"]["status"] == "qualified"


def test_moderation_log(client, make_user):
    admin = make_user(Role.ADMIN)
    created = client.post("/properties", json=_payload(), headers=auth_headers(admin)).json()["property"]
    logs = client.get("/admin/logs?entity_type=property", headers=auth_headers(admin)).json()
    assert [(row["action"], row["entity_id"]) for row in logs["items"]] == [("create", created["id"])]


def test_non_finite_price_rejected(client, make_user, db):
    admin = make_user(Role.ADMIN)
    body = json.dumps(_payload(price=0)).replace('"price": 0', '"price": 1e309')
    resp = client.post(
        "/properties",
        content=body,
        headers={**auth_headers(admin), "Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Validation failed"
    assert db.query(Property).count() == 0

    assert client.get("/properties?min_price=inf").status_code == 400
    assert client.get("/properties?max_price=nan").status_code == 400


def test_out_of_range_ids_and_pages(client, make_user):
    admin = make_user(Role.ADMIN)
    headers = auth_headers(admin)
    huge = 10**20

    assert client.get(f"/properties/{huge}").status_code == 400
    assert client.get("/properties/0").status_code == 400
    assert client.get(f"/properties/{2**63 - 1}").status_code == 404
    for method, path in [
        ("put", f"/properties/{huge}/approve"),
        ("put", f"/properties/{huge}/reject"),
        ("post", f"/properties/{huge}/archive"),
        ("post", f"/properties/{huge}/restore"),
        ("delete", f"/properties/{huge}"),
        ("get", f"/users/{huge}"),
        ("delete", f"/users/{huge}"),
    ]:
        assert client.request(method, path, headers=headers).status_code == 400, path
    assert client.put(f"/inquiries/{huge}", json={}, headers=headers).status_code == 400
    assert client.put(f"/inquiries/lead/{huge}", json={}, headers=headers).status_code == 400
    assert client.put("/inquiries/999", json={}, headers=headers).status_code == 404
    assert client.put("/inquiries/lead/999", json={}, headers=headers).status_code == 404

    assert client.get("/properties", params={"page": 10**19}).status_code == 400
    assert client.get("/users", params={"page": 10**19}, headers=headers).status_code == 400
    assert client.get("/properties", params={"page": 2}).json()["items"] == []


def test_out_of_range_body_integers(client, make_user, make_property):
    manager = make_user(Role.SALES_MANAGER)
    prop = make_property(manager)
    inquiry = client.post(
        f"/properties/{prop.id}/inquiry", json={"name": "Buyer", "email": "b@example.com"}
    ).json()["inquiry"]
    resp = client.put(f"/inquiries/{inquiry['id']}", json={"assigned_to_id": 10**20}, headers=auth_headers(manager))
    assert resp.status_code == 400
    resp = client.post("/properties", json=_payload(bedrooms=10**20), headers=auth_headers(manager))
    assert resp.status_code == 400
