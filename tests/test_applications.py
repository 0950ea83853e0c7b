"""
Tests for the application lifecycle and its notifications
"""
import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError


@pytest.fixture
def event(university, create_event):
    return create_event(university)


def apply(client, student, event):
    return client.post(f"/api/events/{event['id']}/applications", headers=student["headers"])


class TestApply:
    def test_student_applies(self, client, db, student, event):
        response = apply(client, student, event)

        assert response.status_code == 201
        application = response.json()["application"]
        assert application["status"] == "pending"
        assert application["student_id"] == student["id"]
        assert application["event_id"] == event["id"]

    def test_owner_is_notified(self, client, db, student, university, event):
        application = apply(client, student, event).json()["application"]

        records = list(db["notification"].find({"recipient_id": ObjectId(university["id"])}))
        assert len(records) == 1
        assert records[0]["type"] == "new_application"
        assert records[0]["recipient_kind"] == "university"
        assert records[0]["application_id"] == ObjectId(application["id"])
        assert records[0]["account_id"] == ObjectId(student["id"])

    def test_second_application_is_rejected(self, client, db, student, university, event):
        apply(client, student, event)

        response = apply(client, student, event)

        assert response.status_code == 409
        assert response.json()["message"] == "You have already applied to this event"
        assert db["application"].count_documents({}) == 1
        assert db["notification"].count_documents({"recipient_id": ObjectId(university["id"])}) == 1

    def test_unique_index_backs_the_invariant(self, db, student, event):
        doc = {"student_id": ObjectId(student["id"]), "event_id": ObjectId(event["id"]), "status": "pending"}
        db["application"].insert_one(dict(doc))
        with pytest.raises(DuplicateKeyError):
            db["application"].insert_one(dict(doc))

    def test_university_cannot_apply(self, client, make_user, event):
        other = make_user("university")

        response = apply(client, other, event)

        assert response.status_code == 403

    def test_apply_to_unknown_event(self, client, student):
        response = client.post(f"/api/events/{ObjectId()}/applications", headers=student["headers"])

        assert response.status_code == 404

    def test_list_my_applications(self, client, student, event):
        apply(client, student, event)

        response = client.get("/api/applications/me", headers=student["headers"])

        assert response.status_code == 200
        assert len(response.json()["applications"]) == 1


class TestDecide:
    @pytest.fixture
    def application(self, client, student, event):
        return apply(client, student, event).json()["application"]

    def decide(self, client, who, application, status):
        return client.patch(
            f"/api/applications/{application['id']}/status", json={"status": status}, headers=who["headers"]
        )

    def test_accept_notifies_student_once(self, client, db, student, university, application):
        response = self.decide(client, university, application, "accepted")

        assert response.status_code == 200
        assert response.json()["application"]["status"] == "accepted"
        records = list(db["notification"].find({"recipient_id": ObjectId(student["id"])}))
        assert len(records) == 1
        assert records[0]["type"] == "application_status"
        assert "accepted" in records[0]["message"]

    def test_reject_message_differs(self, client, db, student, university, application):
        self.decide(client, university, application, "rejected")

        record = db["notification"].find_one({"recipient_id": ObjectId(student["id"])})
        assert "not accepted" in record["message"]

    def test_decision_is_final(self, client, db, student, university, application):
        self.decide(client, university, application, "accepted")

        response = self.decide(client, university, application, "rejected")

        assert response.status_code == 400
        assert response.json()["message"] == "Application has already been accepted"
        assert db["application"].find_one({"_id": ObjectId(application["id"])})["status"] == "accepted"
        assert db["notification"].count_documents({"recipient_id": ObjectId(student["id"])}) == 1

    def test_pending_is_not_a_valid_target(self, client, university, application):
        response = self.decide(client, university, application, "pending")

        assert response.status_code == 400

    def test_only_the_owner_decides(self, client, db, make_user, application):
        other = make_user("university")

        response = self.decide(client, other, application, "accepted")

        assert response.status_code == 403
        assert db["application"].find_one({"_id": ObjectId(application["id"])})["status"] == "pending"

    def test_student_cannot_decide(self, client, student, application):
        response = self.decide(client, student, application, "accepted")

        assert response.status_code == 403

    def test_owner_lists_event_applications(self, client, university, event, application):
        response = client.get(f"/api/events/{event['id']}/applications", headers=university["headers"])

        assert response.status_code == 200
        assert [a["id"] for a in response.json()["applications"]] == [application["id"]]
