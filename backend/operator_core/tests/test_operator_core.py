import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from operator_core.audit import audit
from operator_core.models import OperatorAuditEvent

pytestmark = [pytest.mark.django_db, pytest.mark.usefixtures("enable_operator_routes")]

User = get_user_model()


def test_operator_routes_404_on_public_host(operator_user):
    client = APIClient()
    client.defaults["HTTP_HOST"] = "public.example.com"
    client.force_authenticate(user=operator_user)

    assert client.get("/api/operator/me/").status_code == 404


def test_operator_routes_404_when_disabled(settings, operator_user, ops_client):
    settings.ENABLE_OPERATOR = False

    assert ops_client(operator_user).get("/api/operator/me/").status_code == 404


def test_operator_me_requires_staff(ops_client):
    user = User.objects.create_user(username="op-user", email="op@example.com", password="pass123")

    assert ops_client(user).get("/api/operator/me/").status_code == 403


def test_operator_me_lists_roles(ops_client, operator_user):
    resp = ops_client(operator_user).get("/api/operator/me/")

    assert resp.status_code == 200
    assert resp.data["roles"] == ["operator_support"]
    assert resp.data["is_staff"] is True


def test_audit_requires_reason(operator_user):
    with pytest.raises(ValueError):
        audit(
            actor=operator_user,
            action="operator.claim.approve",
            entity_type=OperatorAuditEvent.EntityType.CLAIM,
            entity_id=1,
            reason="   ",
        )
    assert not OperatorAuditEvent.objects.exists()


def test_audit_list_requires_operator_group(ops_client, staff_user_no_group):
    assert ops_client(staff_user_no_group).get("/api/operator/audit/").status_code == 403


def test_audit_list_filters_by_entity(ops_client, operator_user):
    for entity_type, entity_id in (("claim", 1), ("claim", 2), ("trip_charge", 1)):
        audit(
            actor=operator_user,
            action=f"operator.{entity_type}.test",
            entity_type=entity_type,
            entity_id=entity_id,
            reason="checking filters",
            before={"status": "before"},
        )

    resp = ops_client(operator_user).get(
        "/api/operator/audit/", {"entity_type": "claim", "entity_id": "2"}
    )

    assert resp.status_code == 200
    assert len(resp.data) == 1
    event = resp.data[0]
    assert event["action"] == "operator.claim.test"
    assert event["before"] == {"status": "before"}
    assert event["actor"]["username"] == "operator"
