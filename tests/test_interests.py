"""
Tests for students following universities
"""
from bson import ObjectId


def test_follow_is_idempotent(client, db, student, university):
    url = f"/api/students/interests/{university['id']}"

    first = client.post(url, headers=student["headers"])
    second = client.post(url, headers=student["headers"])

    assert first.status_code == second.status_code == 200
    assert second.json()["interests"] == [university["id"]]
    assert db["account"].find_one({"_id": ObjectId(student["id"])})["interests"] == [ObjectId(university["id"])]


def test_unfollow(client, db, student, university):
    url = f"/api/students/interests/{university['id']}"
    client.post(url, headers=student["headers"])

    response = client.delete(url, headers=student["headers"])

    assert response.status_code == 200
    assert response.json()["interests"] == []


def test_list_followed_universities(client, student, university):
    client.post(f"/api/students/interests/{university['id']}", headers=student["headers"])

    response = client.get("/api/students/interests", headers=student["headers"])

    assert response.status_code == 200
    universities = response.json()["universities"]
    assert [u["id"] for u in universities] == [university["id"]]
    assert "password_hash" not in universities[0]


def test_cannot_follow_a_student(client, make_user, student):
    other = make_user("student")

    response = client.post(f"/api/students/interests/{other['id']}", headers=student["headers"])

    assert response.status_code == 404
    assert response.json()["message"] == "University not found"


def test_universities_cannot_follow(client, make_user, university):
    other = make_user("university")

    response = client.post(f"/api/students/interests/{other['id']}", headers=university["headers"])

    assert response.status_code == 403


def test_unfollowed_university_no_longer_notifies(client, db, student, university, create_event):
    url = f"/api/students/interests/{university['id']}"
    client.post(url, headers=student["headers"])
    client.delete(url, headers=student["headers"])

    create_event(university)

    assert db["notification"].count_documents({"recipient_id": ObjectId(student["id"])}) == 0
