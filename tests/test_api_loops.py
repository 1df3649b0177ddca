"""API tests for the loop routes."""
from __future__ import annotations

from datetime import timedelta

from core.models import ActivityLog
from core.utils import today as current_date


def _create(client, headers, **fields):
    body = {"type": "Listing", "property_address": "12 Main St", **fields}
    response = client.post("/loops", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestLoopCrud:
    """Create, read, update and delete over HTTP."""

    def test_create_loop(self, client, agent_user, auth_headers, notifier, db_session):
        data = _create(client, auth_headers(agent_user), client_name="Dana", sale=250000)

        assert data["success"] is True
        assert data["loop"]["creator_id"] == agent_user.id
        assert data["loop"]["status"] == "active"
        assert data["loop"]["urgency"]["level"] == "none"
        notifier.notify_loop_created.assert_called_once()
        assert db_session.query(ActivityLog).filter_by(loop_id=data["id"]).count() == 1

    def test_create_requires_type_and_address(self, client, agent_user, auth_headers):
        response = client.post("/loops", json={"type": "Listing"}, headers=auth_headers(agent_user))

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "validation_error",
            "message": "Type and property address are required",
        }

    def test_unknown_body_field_rejected(self, client, agent_user, auth_headers):
        response = client.post(
            "/loops",
            json={"type": "Listing", "property_address": "1 Elm", "creator_id": 7},
            headers=auth_headers(agent_user),
        )
        assert response.status_code == 422

    def test_unknown_detail_key_rejected(self, client, agent_user, auth_headers):
        response = client.post(
            "/loops",
            json={"type": "Listing", "property_address": "1 Elm", "details": {"shoe_size": 9}},
            headers=auth_headers(agent_user),
        )
        assert response.status_code == 400
        assert response.json()["details"] == {"unknown_keys": ["shoe_size"]}

    def test_get_loop_with_urgency(self, client, agent_user, auth_headers):
        end = (current_date() + timedelta(days=2)).isoformat()
        created = _create(client, auth_headers(agent_user), end_date=end)

        response = client.get(f"/loops/{created['id']}", headers=auth_headers(agent_user))

        assert response.status_code == 200
        assert response.json()["loop"]["urgency"]["level"] == "due-soon"

    def test_get_missing_loop(self, client, admin_user, auth_headers):
        response = client.get("/loops/424242", headers=auth_headers(admin_user))
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_other_agent_forbidden(self, client, agent_user, other_agent, auth_headers):
        created = _create(client, auth_headers(agent_user))
        response = client.get(f"/loops/{created['id']}", headers=auth_headers(other_agent))
        assert response.status_code == 403

    def test_partial_update(self, client, agent_user, auth_headers, notifier):
        created = _create(client, auth_headers(agent_user), notes="keep")

        response = client.put(
            f"/loops/{created['id']}", json={"status": "closing"}, headers=auth_headers(agent_user)
        )

        data = response.json()
        assert data["changed"] is True
        assert data["loop"]["status"] == "closing"
        assert data["loop"]["notes"] == "keep"
        notifier.notify_loop_updated.assert_called_once()

    def test_empty_update_is_quiet(self, client, agent_user, auth_headers, notifier):
        created = _create(client, auth_headers(agent_user))

        response = client.put(f"/loops/{created['id']}", json={}, headers=auth_headers(agent_user))

        assert response.json()["changed"] is False
        assert response.json()["loop"]["updated_at"] == created["loop"]["updated_at"]
        notifier.notify_loop_updated.assert_not_called()

    def test_delete_admin_only(self, client, agent_user, admin_user, auth_headers):
        created = _create(client, auth_headers(agent_user))

        assert client.delete(f"/loops/{created['id']}", headers=auth_headers(agent_user)).status_code == 403
        assert client.delete(f"/loops/{created['id']}", headers=auth_headers(admin_user)).status_code == 200
        assert client.get(f"/loops/{created['id']}", headers=auth_headers(admin_user)).status_code == 404

    def test_archive_hides_from_default_list(self, client, agent_user, admin_user, auth_headers):
        created = _create(client, auth_headers(agent_user))
        client.put(f"/loops/{created['id']}/archive", headers=auth_headers(admin_user))

        live = client.get("/loops", headers=auth_headers(agent_user)).json()
        archived = client.get("/loops?archived=true", headers=auth_headers(agent_user)).json()

        assert live["count"] == 0
        assert [l["id"] for l in archived["loops"]] == [created["id"]]


class TestLoopListing:
    """Listing, browse and dashboard routes."""

    def test_agent_only_sees_own(self, client, agent_user, other_agent, admin_user, auth_headers):
        _create(client, auth_headers(agent_user))
        _create(client, auth_headers(other_agent))

        mine = client.get(f"/loops?creator_id={other_agent.id}", headers=auth_headers(agent_user)).json()
        everything = client.get("/loops", headers=auth_headers(admin_user)).json()

        assert [l["creator_id"] for l in mine["loops"]] == [agent_user.id]
        assert everything["count"] == 2

    def test_bad_sort_and_limit_tolerated(self, client, agent_user, auth_headers):
        _create(client, auth_headers(agent_user))
        response = client.get(
            "/loops", params={"sort": "id; DROP TABLE loops", "limit": "abc"},
            headers=auth_headers(agent_user),
        )
        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_browse_with_toolbar_status(self, client, agent_user, auth_headers):
        _create(client, auth_headers(agent_user), status="closing")
        _create(client, auth_headers(agent_user), status="active")

        response = client.get(
            "/loops/browse", params={"status": "in-progress"}, headers=auth_headers(agent_user)
        )

        assert [l["status"] for l in response.json()["loops"]] == ["closing"]

    def test_stats(self, client, agent_user, auth_headers):
        end = (current_date() + timedelta(days=1)).isoformat()
        _create(client, auth_headers(agent_user), sale=100.0, end_date=end)

        stats = client.get("/loops/stats", headers=auth_headers(agent_user)).json()["stats"]

        assert stats["total"] == 1
        assert stats["total_sales"] == 100.0
        assert stats["closing_soon"] == 1

    def test_closing_and_overdue(self, client, agent_user, auth_headers):
        soon = _create(client, auth_headers(agent_user), end_date=current_date().isoformat())
        late = _create(
            client, auth_headers(agent_user),
            end_date=(current_date() - timedelta(days=3)).isoformat(),
        )

        closing = client.get("/loops/closing", headers=auth_headers(agent_user)).json()["loops"]
        overdue = client.get("/loops/overdue", headers=auth_headers(agent_user)).json()["loops"]

        assert [l["id"] for l in closing] == [soon["id"]]
        assert [l["id"] for l in overdue] == [late["id"]]
        assert overdue[0]["urgency"]["badge"] == "OVERDUE: 3 DAYS"

    def test_details_groups(self, client, agent_user, auth_headers):
        groups = client.get("/loops/details-groups", headers=auth_headers(agent_user)).json()["groups"]
        assert groups[0]["title"] == "Property Address"


class TestLoopFiles:
    """Images and documents."""

    def test_upload_and_replace_images(self, client, agent_user, auth_headers, tmp_path):
        created = _create(client, auth_headers(agent_user))
        url = f"/loops/{created['id']}/images"

        first = client.post(
            url, files=[("images", ("front.jpg", b"\xff\xd8\xff", "image/jpeg"))],
            headers=auth_headers(agent_user),
        )
        assert first.status_code == 201
        old_name = first.json()["images"][0]["filename"]
        assert (tmp_path / "images" / old_name).exists()

        second = client.post(
            url,
            files=[("images", ("back.png", b"\x89PNG", "image/png"))],
            data={"replace_images": "true"},
            headers=auth_headers(agent_user),
        )
        images = second.json()["images"]
        assert [img["original_name"] for img in images] == ["back.png"]
        assert not (tmp_path / "images" / old_name).exists()

    def test_reject_non_image(self, client, agent_user, auth_headers):
        created = _create(client, auth_headers(agent_user))
        response = client.post(
            f"/loops/{created['id']}/images",
            files=[("images", ("notes.txt", b"hello", "text/plain"))],
            headers=auth_headers(agent_user),
        )
        assert response.status_code == 400

    def test_delete_image(self, client, agent_user, auth_headers):
        created = _create(client, auth_headers(agent_user))
        uploaded = client.post(
            f"/loops/{created['id']}/images",
            files=[("images", ("front.jpg", b"\xff\xd8\xff", "image/jpeg"))],
            headers=auth_headers(agent_user),
        ).json()
        name = uploaded["images"][0]["filename"]

        response = client.delete(f"/loops/{created['id']}/images/{name}", headers=auth_headers(agent_user))

        assert response.json()["images"] == []

    def test_document_lifecycle(self, client, agent_user, auth_headers):
        created = _create(client, auth_headers(agent_user))
        base = f"/loops/{created['id']}/documents"

        uploaded = client.post(
            base, files=[("documents", ("contract.pdf", b"%PDF-1.4", "application/pdf"))],
            headers=auth_headers(agent_user),
        )
        assert uploaded.status_code == 201
        assert uploaded.json()["uploaded"] == 1
        doc_id = uploaded.json()["documents"][0]["id"]

        listed = client.get(base, headers=auth_headers(agent_user)).json()["documents"]
        assert [d["id"] for d in listed] == [doc_id]

        download = client.get(f"{base}/{doc_id}/download", headers=auth_headers(agent_user))
        assert download.status_code == 200
        assert download.content == b"%PDF-1.4"

        deleted = client.delete(f"{base}/{doc_id}", headers=auth_headers(agent_user))
        assert deleted.status_code == 200
        assert client.get(base, headers=auth_headers(agent_user)).json()["documents"] == []


class TestTasksAndCompliance:
    """Task and compliance routes."""

    def test_task_flow(self, client, agent_user, auth_headers):
        created = _create(client, auth_headers(agent_user))
        base = f"/loops/{created['id']}/tasks"

        added = client.post(base, json={"title": "Order inspection"}, headers=auth_headers(agent_user))
        assert added.status_code == 201
        task_id = added.json()["taskId"]

        updated = client.put(f"{base}/{task_id}", json={"completed": True}, headers=auth_headers(agent_user))
        assert updated.json()["task"]["completed"] is True

        blank = client.post(base, json={"title": "  "}, headers=auth_headers(agent_user))
        assert blank.status_code == 400

        assert client.delete(f"{base}/{task_id}", headers=auth_headers(agent_user)).status_code == 200
        assert client.get(base, headers=auth_headers(agent_user)).json()["tasks"] == []

    def test_compliance_cycle(self, client, agent_user, admin_user, auth_headers):
        created = _create(client, auth_headers(agent_user))
        base = f"/loops/{created['id']}/compliance"

        requested = client.post(f"{base}/request", headers=auth_headers(agent_user))
        assert requested.json()["compliance_status"] == "pending"

        refused = client.put(f"{base}/approve", headers=auth_headers(agent_user))
        assert refused.status_code == 403
        assert refused.json()["message"] == "Only admins can approve compliance"

        approved = client.put(f"{base}/approve", headers=auth_headers(admin_user))
        assert approved.json()["compliance_status"] == "approved"

    def test_activity_feed(self, client, agent_user, auth_headers):
        created = _create(client, auth_headers(agent_user))
        client.put(f"/loops/{created['id']}", json={"notes": "hi"}, headers=auth_headers(agent_user))

        feed = client.get(f"/loops/{created['id']}/activity", headers=auth_headers(agent_user)).json()

        assert feed["count"] == 2
        assert feed["logs"][0]["action"] == "LOOP_UPDATED"


class TestFailedRequestsKeepFiles:
    """A request that errors out leaves stored files in place."""

    def _fail_activity_log(self, monkeypatch):
        from sqlalchemy.exc import SQLAlchemyError

        from services.activity import ActivityLogService

        def _boom(*args, **kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(ActivityLogService, "log", _boom)

    def test_document_delete(self, client, agent_user, auth_headers, tmp_path, monkeypatch):
        created = _create(client, auth_headers(agent_user))
        base = f"/loops/{created['id']}/documents"
        doc = client.post(
            base, files=[("documents", ("contract.pdf", b"%PDF-1.4", "application/pdf"))],
            headers=auth_headers(agent_user),
        ).json()["documents"][0]

        self._fail_activity_log(monkeypatch)
        response = client.delete(f"{base}/{doc['id']}", headers=auth_headers(agent_user))

        assert response.status_code == 500
        assert response.json()["error"] == "database_error"
        assert (tmp_path / "documents" / doc["filename"]).exists()

    def test_image_delete(self, client, agent_user, auth_headers, tmp_path, monkeypatch):
        created = _create(client, auth_headers(agent_user))
        name = client.post(
            f"/loops/{created['id']}/images",
            files=[("images", ("front.jpg", b"\xff\xd8\xff", "image/jpeg"))],
            headers=auth_headers(agent_user),
        ).json()["images"][0]["filename"]

        self._fail_activity_log(monkeypatch)
        response = client.delete(f"/loops/{created['id']}/images/{name}", headers=auth_headers(agent_user))

        assert response.status_code == 500
        assert (tmp_path / "images" / name).exists()

    def test_successful_delete_removes_file(self, client, agent_user, auth_headers, tmp_path):
        created = _create(client, auth_headers(agent_user))
        name = client.post(
            f"/loops/{created['id']}/images",
            files=[("images", ("front.jpg", b"\xff\xd8\xff", "image/jpeg"))],
            headers=auth_headers(agent_user),
        ).json()["images"][0]["filename"]

        client.delete(f"/loops/{created['id']}/images/{name}", headers=auth_headers(agent_user))

        assert not (tmp_path / "images" / name).exists()
