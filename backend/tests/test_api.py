"""HTTP surface: guard dependency, exception mapping, and the break-glass endpoints."""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from medguard.core.principal import get_current_medical_user, principal_from_headers
from medguard.main import app
from medguard.models.audit_log import MedicalAuditLog
from medguard.models.base import get_db

API = "/api/v1/medical-rbac"
REASON = "Unconscious trauma patient, surgical history needed now"


def _headers(user):
    headers = {
        "X-User-Id": user.id,
        "X-Staff-Id": user.staff_id,
        "X-User-Roles": ",".join(sorted(r.value for r in user.roles)),
    }
    if user.department:
        headers["X-User-Department"] = user.department.value
    if user.specialties:
        headers["X-User-Specialties"] = ",".join(sorted(s.value for s in user.specialties))
    return headers


@pytest.fixture()
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_medical_user] = principal_from_headers
    yield TestClient(app)
    app.dependency_overrides.clear()


def _activate(client, user, patient_id="P1", reason=REASON):
    return client.post(
        f"{API}/emergency-override",
        json={"patient_id": patient_id, "reason": reason},
        headers=_headers(user),
    )


class TestHealthAndAuthentication:
    def test_health_is_unguarded(self, client):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json()["status"] == "healthy"

    def test_missing_principal_is_401_and_not_audited(self, client, db_session):
        res = client.get(f"{API}/patient/P1/records")
        assert res.status_code == 401
        assert res.headers["WWW-Authenticate"] == "Bearer"
        assert res.json()["detail"] == "No authenticated medical user found"
        assert db_session.query(MedicalAuditLog).count() == 0

    def test_unknown_role_header_is_treated_as_unauthenticated(self, client):
        res = client.get(
            f"{API}/patient/P1/records",
            headers={"X-User-Id": "x", "X-User-Roles": "janitor"},
        )
        assert res.status_code == 401


class TestPatientEndpoints:
    def test_nurse_reads_general_records(self, client, nurse, db_session):
        res = client.get(f"{API}/patient/P1/records", headers=_headers(nurse))
        assert res.status_code == 200
        body = res.json()
        assert body["patient_id"] == "P1"
        assert body["resource"] == "medical_records"
        assert body["accessed_by"] == nurse.staff_id
        assert body["emergency_override"] is False

        entry = db_session.query(MedicalAuditLog).one()
        assert entry.id == body["audit_log_id"]
        assert entry.patient_id == "P1"
        assert entry.success is True

    def test_nurse_is_denied_imaging(self, client, nurse, db_session):
        res = client.get(f"{API}/patient/P1/imaging", headers=_headers(nurse))
        assert res.status_code == 403
        assert res.json() == {
            "detail": "Department access denied",
            "resource": "imaging_reports",
            "patient_id": "P1",
        }
        entry = db_session.query(MedicalAuditLog).one()
        assert entry.action == "PERMISSION_DENIED"
        assert entry.failure_reason == "Department access denied"

    def test_lab_tech_cannot_read_prescriptions(self, client, lab_tech):
        res = client.get(f"{API}/patient/P1/prescriptions", headers=_headers(lab_tech))
        assert res.status_code == 403
        assert res.json()["detail"] == "Insufficient permissions"

    def test_lab_tech_reads_lab_results_in_own_department(self, client, lab_tech):
        res = client.get(f"{API}/patient/P1/lab-results", headers=_headers(lab_tech))
        assert res.status_code == 200
        assert res.json()["resource"] == "lab_results"

    def test_my_permissions(self, client, pharmacist):
        res = client.get(f"{API}/my-permissions", headers=_headers(pharmacist))
        assert res.status_code == 200
        body = res.json()
        assert body["roles"] == ["pharmacist"]
        assert body["department"] == "pharmacy"
        assert "dispense_medications" in body["permissions"]
        assert "read_patient_full" not in body["permissions"]


class TestBreakGlassFlow:
    def test_doctor_activates_and_retries(self, client, doctor, db_session):
        res = client.get(f"{API}/patient/P1/surgical-notes", headers=_headers(doctor))
        assert res.status_code == 403
        assert res.json()["detail"] == "Department access denied"

        res = _activate(client, doctor)
        assert res.status_code == 201
        ctx = res.json()
        assert ctx["user_id"] == doctor.id
        assert ctx["patient_id"] == "P1"
        assert ctx["reason"] == REASON
        issued = datetime.fromisoformat(ctx["timestamp"])
        assert datetime.fromisoformat(ctx["expires_at"]) - issued == timedelta(hours=4)

        res = client.get(f"{API}/patient/P1/surgical-notes", headers=_headers(doctor))
        assert res.status_code == 200
        assert res.json()["emergency_override"] is True

        granted = db_session.query(MedicalAuditLog).filter(
            MedicalAuditLog.id == res.json()["audit_log_id"]
        ).one()
        assert granted.is_emergency_override is True

    def test_grant_does_not_cover_other_patients(self, client, doctor):
        _activate(client, doctor, patient_id="P1")
        res = client.get(f"{API}/patient/P2/surgical-notes", headers=_headers(doctor))
        assert res.status_code == 403

    def test_short_reason_is_400(self, client, doctor):
        res = _activate(client, doctor, reason="it is urgent")
        assert res.status_code == 400
        assert res.json()["patient_id"] == "P1"

    def test_missing_reason_is_422(self, client, doctor):
        res = client.post(
            f"{API}/emergency-override",
            json={"patient_id": "P1"},
            headers=_headers(doctor),
        )
        assert res.status_code == 422

    def test_nurse_cannot_activate(self, client, nurse):
        res = _activate(client, nurse)
        assert res.status_code == 403
        assert res.json()["detail"] == "Insufficient role"

    def test_deactivate_closes_the_grant(self, client, doctor):
        _activate(client, doctor)
        res = client.post(
            f"{API}/emergency-override/deactivate",
            json={"patient_id": "P1"},
            headers=_headers(doctor),
        )
        assert res.status_code == 200
        assert res.json() == {"deactivated": 1}
        res = client.get(f"{API}/patient/P1/surgical-notes", headers=_headers(doctor))
        assert res.status_code == 403


class TestReviewAndAudit:
    def test_review_queue(self, client, doctor, admin):
        override_id = _activate(client, doctor).json()["override_id"]

        pending = client.get(f"{API}/emergency-override/pending", headers=_headers(admin))
        assert pending.status_code == 200
        assert [o["id"] for o in pending.json()] == [override_id]

        res = client.post(
            f"{API}/emergency-override/review",
            json={"override_id": override_id, "review_notes": "Chart confirms trauma admission"},
            headers=_headers(admin),
        )
        assert res.status_code == 200
        assert res.json()["reviewed_by"] == admin.id
        assert res.json()["is_active"] is True

        again = client.post(
            f"{API}/emergency-override/review",
            json={"override_id": override_id, "review_notes": "second look"},
            headers=_headers(admin),
        )
        assert again.status_code == 400

        pending = client.get(f"{API}/emergency-override/pending", headers=_headers(admin))
        assert pending.json() == []

    def test_review_unknown_override_is_404(self, client, admin):
        res = client.post(
            f"{API}/emergency-override/review",
            json={"override_id": "missing", "review_notes": "n/a"},
            headers=_headers(admin),
        )
        assert res.status_code == 404

    def test_doctor_cannot_review(self, client, doctor):
        res = client.get(f"{API}/emergency-override/pending", headers=_headers(doctor))
        assert res.status_code == 403

    def test_audit_page_size_is_clamped(self, client, admin):
        res = client.get(f"{API}/audit-logs", params={"limit": 9999}, headers=_headers(admin))
        assert res.status_code == 200
        body = res.json()
        assert body["limit"] == 100
        assert body["page"] == 1
        # The admin's own read of the log is itself audited
        assert body["total"] == 1
        assert body["data"][0]["resource"] == "audit_logs"

    def test_audit_logs_filter_by_patient(self, client, nurse, admin, db_session):
        client.get(f"{API}/patient/P7/records", headers=_headers(nurse))
        client.get(f"{API}/patient/P8/records", headers=_headers(nurse))
        res = client.get(f"{API}/audit-logs", params={"patient_id": "P7"}, headers=_headers(admin))
        assert res.json()["total"] == 1
        assert res.json()["data"][0]["user_id"] == nurse.id

        # The search is audited, but not as an access to P7
        search = db_session.query(MedicalAuditLog).filter(MedicalAuditLog.resource == "audit_logs").one()
        assert search.patient_id is None

    def test_activation_decision_carries_body_patient(self, client, doctor, db_session):
        _activate(client, doctor, patient_id="P7")
        decision = db_session.query(MedicalAuditLog).filter(
            MedicalAuditLog.resource == "emergency_override",
            MedicalAuditLog.action == "READ",
        ).one()
        assert decision.patient_id == "P7"

        res = client.get(f"{API}/audit-logs/patient/P7", headers=_headers(doctor))
        actions = [e["action"] for e in res.json()]
        assert "READ" in actions
        assert "EMERGENCY_OVERRIDE" in actions

    def test_emergency_audit_stream(self, client, doctor, admin):
        _activate(client, doctor)
        client.get(f"{API}/patient/P1/surgical-notes", headers=_headers(doctor))
        res = client.get(f"{API}/audit-logs/emergency", headers=_headers(admin))
        assert res.status_code == 200
        assert sorted(e["action"] for e in res.json()) == ["EMERGENCY_OVERRIDE", "READ"]

    def test_patient_history_for_doctor(self, client, doctor, nurse):
        client.get(f"{API}/patient/P3/records", headers=_headers(nurse))
        res = client.get(f"{API}/audit-logs/patient/P3", headers=_headers(doctor))
        assert res.status_code == 200
        assert [e["user_id"] for e in res.json()] == [doctor.id, nurse.id]

    def test_non_admin_cannot_search_audit_logs(self, client, lab_tech):
        res = client.get(f"{API}/audit-logs", headers=_headers(lab_tech))
        assert res.status_code == 403
        assert res.json()["detail"] == "Insufficient role"
