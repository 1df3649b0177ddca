"""Tests for loop creation, updates, deletion and archiving."""
from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select

from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.models import Loop, LoopDocument, LoopTask
from domain.loops import LoopService, normalize_field, serialize_loop


class TestCreateLoop:
    """LoopService.create_loop."""

    def test_requires_type_and_address(self, db_session, agent_user):
        service = LoopService(db_session)
        with pytest.raises(ValidationError) as exc:
            service.create_loop({"type": "Listing"}, agent_user)
        assert exc.value.message == "Type and property address are required"

        with pytest.raises(ValidationError):
            service.create_loop({"type": "  ", "property_address": "1 Elm"}, agent_user)

    def test_defaults(self, db_session, agent_user):
        loop = LoopService(db_session).create_loop(
            {"type": "Listing", "property_address": " 1 Elm St ", "sale": "250000"},
            agent_user,
        )

        assert loop.id is not None
        assert loop.property_address == "1 Elm St"
        assert loop.status == "active"
        assert loop.compliance_status == "none"
        assert loop.archived is False
        assert loop.creator_id == agent_user.id
        assert loop.sale == 250000.0

    def test_rejects_bad_status(self, db_session, agent_user):
        with pytest.raises(ValidationError):
            LoopService(db_session).create_loop(
                {"type": "Listing", "property_address": "1 Elm", "status": "vibing"},
                agent_user,
            )


class TestNormalizeField:
    """Per-field coercion."""

    def test_blank_dates_become_none(self):
        assert normalize_field("end_date", "") is None
        assert normalize_field("end_date", "2025-06-30") == date(2025, 6, 30)

    def test_bad_date_rejected(self):
        with pytest.raises(ValidationError):
            normalize_field("start_date", "next tuesday")

    def test_bad_sale_rejected(self):
        with pytest.raises(ValidationError):
            normalize_field("sale", "lots")

    def test_participants_keep_known_keys(self):
        result = normalize_field("participants", [{"id": 1, "name": "Ann", "role": "x"}])
        assert result == [{"id": 1, "name": "Ann", "email": None}]


class TestSerializeLoop:
    """API-shaped loop rows."""

    def test_empty_details_kept(self, agent_user, make_loop):
        loop = make_loop(agent_user, details={})
        assert serialize_loop(loop)["details"] == {}

    def test_missing_details_is_none(self, agent_user, make_loop):
        loop = make_loop(agent_user)
        assert serialize_loop(loop)["details"] is None


class TestUpdateLoop:
    """LoopService.update_loop."""

    def test_partial_update_leaves_other_fields(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user, client_name="Dana", notes="keep me")

        updated, applied = LoopService(db_session).update_loop(
            loop.id, {"client_name": "Eve"}, agent_user
        )

        assert applied == {"client_name": "Eve"}
        assert updated.client_name == "Eve"
        assert updated.notes == "keep me"

    def test_empty_update_changes_nothing(self, db_session, agent_user, make_loop):
        stamp = datetime(2025, 1, 1, tzinfo=timezone.utc)
        loop = make_loop(agent_user, created_at=stamp, notes="same")
        before = loop.updated_at

        _, applied = LoopService(db_session).update_loop(loop.id, {}, agent_user)
        assert applied == {}
        assert loop.updated_at == before

        _, applied = LoopService(db_session).update_loop(loop.id, {"notes": "same"}, agent_user)
        assert applied == {}
        assert loop.updated_at == before

    def test_unknown_field_rejected(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        with pytest.raises(ValidationError):
            LoopService(db_session).update_loop(loop.id, {"creator_id": 99}, agent_user)

    def test_other_agent_forbidden(self, db_session, agent_user, other_agent, make_loop):
        loop = make_loop(agent_user)
        with pytest.raises(ForbiddenError):
            LoopService(db_session).update_loop(loop.id, {"notes": "x"}, other_agent)
        assert loop.notes is None

    def test_admin_may_update_any(self, db_session, agent_user, admin_user, make_loop):
        loop = make_loop(agent_user)
        _, applied = LoopService(db_session).update_loop(loop.id, {"status": "closing"}, admin_user)
        assert applied == {"status": "closing"}

    def test_missing_loop(self, db_session, admin_user):
        with pytest.raises(NotFoundError):
            LoopService(db_session).update_loop(424242, {"notes": "x"}, admin_user)


class TestAccess:
    """Visibility rules."""

    def test_detail_for_owner(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        detail = LoopService(db_session).get_loop_detail(loop.id, agent_user)
        assert detail["id"] == loop.id
        assert detail["creator_name"] == "Bob Agent"

    def test_detail_forbidden_for_other_agent(self, db_session, agent_user, other_agent, make_loop):
        loop = make_loop(agent_user)
        with pytest.raises(ForbiddenError):
            LoopService(db_session).get_loop_detail(loop.id, other_agent)


class TestImages:
    """Image list maintenance."""

    def test_remove_image(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user, images=[{"filename": "a.jpg"}, {"filename": "b.jpg"}])

        removed = LoopService(db_session).remove_image(loop.id, "a.jpg", agent_user)

        assert removed == {"filename": "a.jpg"}
        assert loop.images == [{"filename": "b.jpg"}]

    def test_remove_from_empty_list(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        with pytest.raises(NotFoundError) as exc:
            LoopService(db_session).remove_image(loop.id, "a.jpg", agent_user)
        assert exc.value.message == "No images found for this loop"

    def test_remove_unknown_image(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user, images=[{"filename": "a.jpg"}])
        with pytest.raises(NotFoundError) as exc:
            LoopService(db_session).remove_image(loop.id, "zzz.jpg", agent_user)
        assert exc.value.message == "Image not found"

    def test_last_image_clears_list(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user, images=[{"filename": "a.jpg"}])
        LoopService(db_session).remove_image(loop.id, "a.jpg", agent_user)
        assert loop.images is None


class TestDeleteLoop:
    """LoopService.delete_loop."""

    def test_agent_cannot_delete(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        with pytest.raises(ForbiddenError):
            LoopService(db_session).delete_loop(loop.id, agent_user)
        assert db_session.get(Loop, loop.id) is not None

    def test_delete_cascades_rows(self, db_session, admin_user, agent_user, make_loop):
        loop = make_loop(agent_user, images=[{"filename": "loop-1.jpg"}])
        db_session.add(LoopTask(loop_id=loop.id, title="Inspect"))
        db_session.add(LoopDocument(
            loop_id=loop.id, filename="doc-1.pdf", original_name="contract.pdf",
            size=10, mimetype="application/pdf",
        ))
        db_session.flush()

        deleted = LoopService(db_session).delete_loop(loop.id, admin_user)

        assert deleted.image_files == ["loop-1.jpg"]
        assert deleted.document_files == ["doc-1.pdf"]
        assert db_session.get(Loop, loop.id) is None
        assert db_session.scalar(select(func.count(LoopTask.id))) == 0
        assert db_session.scalar(select(func.count(LoopDocument.id))) == 0

    def test_delete_missing(self, db_session, admin_user):
        with pytest.raises(NotFoundError):
            LoopService(db_session).delete_loop(424242, admin_user)


class TestArchive:
    """Archive and unarchive."""

    def test_round_trip(self, db_session, admin_user, agent_user, make_loop):
        loop = make_loop(agent_user)
        service = LoopService(db_session)

        assert service.archive_loop(loop.id, admin_user).archived is True
        assert service.unarchive_loop(loop.id, admin_user).archived is False

    def test_agent_cannot_archive(self, db_session, agent_user, make_loop):
        loop = make_loop(agent_user)
        with pytest.raises(ForbiddenError) as exc:
            LoopService(db_session).archive_loop(loop.id, agent_user)
        assert exc.value.message == "Only admins can archive loops"
        assert loop.archived is False
