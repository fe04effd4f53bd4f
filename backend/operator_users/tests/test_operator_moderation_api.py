from unittest.mock import patch

import pytest
from django.contrib.auth.models import Group

from operator_core.models import OperatorAuditEvent
from operator_users.models import Appeal, ModerationAction
from operator_users.services import submit_appeal, suspend_user
from users.models import GuestProfile, HostProfile

pytestmark = [pytest.mark.django_db, pytest.mark.usefixtures("enable_operator_routes")]


@pytest.fixture(autouse=True)
def _quiet_notifications():
    with patch("operator_users.services.safe_notify"):
        yield


@pytest.fixture
def moderator(operator_user):
    operator_user.groups.add(Group.objects.get_or_create(name="operator_moderator")[0])
    return operator_user


def test_support_role_cannot_moderate(ops_client, operator_user, guest_user):
    resp = ops_client(operator_user).post(
        f"/api/operator/users/{guest_user.pk}/moderate/",
        {"action": "WARN", "role": "guest", "reason": "Late return"},
        format="json",
    )

    assert resp.status_code == 403


def test_user_list_filters_suspended(ops_client, operator_user, guest_user, host_user):
    suspend_user(guest_user, role="guest", level="SOFT", reason="Smoking", violation_type="smoking")

    resp = ops_client(operator_user).get("/api/operator/users/", {"suspended": "true"})

    assert resp.status_code == 200
    assert [row["id"] for row in resp.data["results"]] == [guest_user.pk]
    assert resp.data["results"][0]["guest_standing"]["suspension_level"] == "SOFT"


def test_suspend_escalates_and_audits(ops_client, moderator, guest_user):
    resp = ops_client(moderator).post(
        f"/api/operator/users/{guest_user.pk}/moderate/",
        {
            "action": "SUSPEND",
            "role": "guest",
            "level": "HARD",
            "violation_type": "identity_fraud",
            "reason": "Forged licence",
        },
        format="json",
    )

    assert resp.status_code == 201, resp.data
    assert resp.data["action"]["applied_roles"] == ["guest", "host"]
    assert resp.data["standing"]["host"]["suspension_level"] == "HARD"
    event = OperatorAuditEvent.objects.get(action="operator.user.suspend")
    assert event.entity_type == OperatorAuditEvent.EntityType.USER
    assert event.entity_id == str(guest_user.pk)
    assert event.reason == "Forged licence"
    assert event.before_json["guest"]["suspension_level"] is None
    assert event.after_json["guest"]["suspension_level"] == "HARD"
    assert event.meta_json["roles"] == ["guest", "host"]


def test_unknown_violation_is_conflict(ops_client, moderator, guest_user):
    resp = ops_client(moderator).post(
        f"/api/operator/users/{guest_user.pk}/moderate/",
        {
            "action": "SUSPEND",
            "role": "guest",
            "level": "SOFT",
            "violation_type": "tailgating",
            "reason": "Reported by host",
        },
        format="json",
    )

    assert resp.status_code == 409
    assert resp.data["code"] == "unknown_violation_type"
    assert not OperatorAuditEvent.objects.exists()


def test_unknown_violation_with_explicit_role_choice(ops_client, moderator, guest_user):
    resp = ops_client(moderator).post(
        f"/api/operator/users/{guest_user.pk}/moderate/",
        {
            "action": "SUSPEND",
            "role": "guest",
            "level": "SOFT",
            "violation_type": "tailgating",
            "escalation": "role",
            "reason": "Reported by host",
        },
        format="json",
    )

    assert resp.status_code == 201
    assert resp.data["action"]["applied_roles"] == ["guest"]
    assert not HostProfile.objects.filter(user=guest_user).exists()


def test_suspend_requires_level(ops_client, moderator, guest_user):
    resp = ops_client(moderator).post(
        f"/api/operator/users/{guest_user.pk}/moderate/",
        {"action": "SUSPEND", "role": "guest", "violation_type": "smoking", "reason": "x"},
        format="json",
    )

    assert resp.status_code == 400
    assert "level" in resp.data


def test_decide_appeal_approve_lifts_and_audits(ops_client, moderator, guest_user):
    action = suspend_user(
        guest_user, role="guest", level="HARD", reason="Smoking", violation_type="smoking"
    ).action
    appeal = submit_appeal(guest_user, action, "Receipt shows I was elsewhere.").appeal

    listed = ops_client(moderator).get("/api/operator/users/appeals/", {"status": "PENDING"})
    assert [row["id"] for row in listed.data["results"]] == [appeal.pk]

    resp = ops_client(moderator).post(
        f"/api/operator/users/appeals/{appeal.pk}/decide/",
        {"decision": "approve", "notes": "Evidence accepted", "reason": "Appeal review"},
        format="json",
    )

    assert resp.status_code == 200
    assert resp.data["status"] == Appeal.Status.APPROVED
    assert not GuestProfile.objects.get(user=guest_user).is_suspended
    event = OperatorAuditEvent.objects.get(action="operator.appeal.approve")
    assert event.entity_type == OperatorAuditEvent.EntityType.APPEAL
    assert event.meta_json["lifted_roles"] == ["guest"]

    again = ops_client(moderator).post(
        f"/api/operator/users/appeals/{appeal.pk}/decide/",
        {"decision": "deny", "reason": "Double click"},
        format="json",
    )
    assert again.status_code == 409
    assert again.data["code"] == "appeal_not_pending"


def test_user_detail_includes_history(ops_client, operator_user, guest_user):
    suspend_user(guest_user, role="guest", level="SOFT", reason="Smoking", violation_type="smoking")

    resp = ops_client(operator_user).get(f"/api/operator/users/{guest_user.pk}/")

    assert resp.status_code == 200
    assert resp.data["moderation_actions"][0]["action"] == ModerationAction.Action.SUSPEND
