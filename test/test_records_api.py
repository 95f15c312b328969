"""
Issues and lost & found over HTTP: two-phase create, visibility, lifecycle and delete.
"""
import pytest
from sqlalchemy import text

import config
from conftest import auth, register
from storage.image_store import ImageStore

JPEG = b"\xff\xd8\xff\xe0" + b"0" * 256


class FlakyImageStore(ImageStore):
    """Local store that fails every upload whose filename contains 'broken'."""

    def save(self, collection, record_id, index, upload):
        if "broken" in upload.filename:
            raise ConnectionError("object store timed out")
        return super().save(collection, record_id, index, upload)


@pytest.fixture
def flaky_store(client):
    original = client.app.state.image_store
    client.app.state.image_store = FlakyImageStore(
        uploads_dir=original.uploads_dir,
        public_base_url=original.public_base_url,
    )
    yield client.app.state.image_store
    client.app.state.image_store = original


def create_issue(client, token, **fields):
    payload = {"title": "Leaking tap", "category": "Plumbing", "description": "Drips all night"}
    payload.update(fields)
    response = client.post("/api/issues", json=payload, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()["issue"]


def test_create_without_images(client, student):
    user, token = student
    issue = create_issue(client, token, priority="Medium", roomNo="101")
    assert issue["images"] == []
    assert issue["image_url"] is None
    assert issue["status"] == "Reported"
    assert issue["priority"] == "Normal"
    assert issue["reporter_id"] == user["id"]
    assert issue["hostel"] == "Block A Hostel"
    assert issue["room_no"] == "101"
    assert issue["is_public"] is False


def test_multipart_create_with_partial_upload_failure(client, student, flaky_store):
    _, token = student
    files = [
        ("images", ("first.jpg", JPEG, "image/jpeg")),
        ("images", ("broken.jpg", JPEG, "image/jpeg")),
        ("images", ("third.png", JPEG, "image/png")),
    ]
    response = client.post(
        "/api/issues",
        data={"title": "Broken window", "category": "Carpentry", "priority": "High"},
        files=files,
        headers=auth(token),
    )
    assert response.status_code == 201, response.text
    issue = response.json()["issue"]
    assert len(issue["images"]) == 2
    assert issue["images"][0].endswith("-0.jpg")
    assert issue["images"][1].endswith("-2.png")
    assert issue["image_url"] == issue["images"][0]

    # Served back from the uploads directory
    path = issue["images"][0].replace("http://testserver", "")
    assert client.get(path).status_code == 200

    fetched = client.get(f"/api/issues/{issue['id']}", headers=auth(token)).json()["issue"]
    assert fetched["images"] == issue["images"]


def test_invalid_image_type_is_skipped_not_fatal(client, student):
    _, token = student
    response = client.post(
        "/api/issues",
        data={"title": "Noise", "category": "Other"},
        files=[("image", ("notes.txt", b"hello", "text/plain"))],
        headers=auth(token),
    )
    assert response.status_code == 201
    assert response.json()["issue"]["images"] == []


def test_missing_title_or_category(client, student):
    _, token = student
    assert client.post("/api/issues", json={"category": "Plumbing"}, headers=auth(token)).status_code == 400
    assert client.post("/api/issues", json={"title": "Tap"}, headers=auth(token)).status_code == 400


def test_gps_coordinates_are_normalized(client, student):
    _, token = student
    issue = create_issue(client, token, gpsCoordinates={"lat": 12.97, "lng": 77.59, "accuracy": 8})
    assert issue["gps_coordinates"]["latitude"] == 12.97
    assert issue["gps_coordinates"]["longitude"] == 77.59
    response = client.post(
        "/api/issues",
        json={"title": "x", "category": "y", "gpsCoordinates": {"latitude": 200, "longitude": 0}},
        headers=auth(token),
    )
    assert response.status_code == 400


def test_payload_user_id_must_match_token(client, student, other_student):
    _, token = student
    other, _ = other_student
    response = client.post(
        "/api/issues",
        json={"title": "Tap", "category": "Plumbing", "userId": other["id"]},
        headers=auth(token),
    )
    assert response.status_code == 403


def test_private_issues_hidden_from_other_students(client, student, other_student, caretaker):
    _, token = student
    _, other_token = other_student
    _, caretaker_token = caretaker
    issue = create_issue(client, token)

    assert client.get(f"/api/issues/{issue['id']}", headers=auth(other_token)).status_code == 404
    assert client.get("/api/issues", headers=auth(other_token)).json()["issues"] == []
    assert [i["id"] for i in client.get("/api/issues", headers=auth(token)).json()["issues"]] == [issue["id"]]
    assert client.get(f"/api/issues/{issue['id']}", headers=auth(caretaker_token)).status_code == 200

    public = create_issue(client, token, title="Broken stairs light", isPublic="true")
    listed = client.get("/api/issues", headers=auth(other_token)).json()["issues"]
    assert [i["id"] for i in listed] == [public["id"]]


def test_list_filters_and_priority_sort(client, student):
    _, token = student
    low = create_issue(client, token, title="A", priority="Low")
    urgent = create_issue(client, token, title="B", priority="Urgent", category="Electrical")
    normal = create_issue(client, token, title="C")

    issues = client.get("/api/issues", params={"sort": "priority"}, headers=auth(token)).json()["issues"]
    assert [i["id"] for i in issues] == [urgent["id"], normal["id"], low["id"]]
    assert urgent["priority"] == "Emergency"

    electrical = client.get("/api/issues", params={"category": "Electrical"}, headers=auth(token)).json()
    assert [i["id"] for i in electrical["issues"]] == [urgent["id"]]
    reported = client.get("/api/issues", params={"status": "open"}, headers=auth(token)).json()
    assert reported["total"] == 3


def test_priority_sort_ranks_legacy_priority_text_last(client, student, manager):
    _, token = student
    _, manager_token = manager
    legacy = create_issue(client, token, title="Imported from old board")
    low = create_issue(client, token, title="Squeaky door", priority="Low")
    high = create_issue(client, token, title="Sparking socket", priority="High")
    with config.db.get_session() as db:
        db.execute(text("UPDATE issues SET priority = 'Critical' WHERE id = :id"), {"id": legacy["id"]})

    assert client.get("/api/issues", headers=auth(manager_token)).status_code == 200
    response = client.get("/api/issues", params={"sort": "priority"}, headers=auth(manager_token))
    assert response.status_code == 200, response.text
    issues = response.json()["issues"]
    assert [i["id"] for i in issues] == [high["id"], low["id"], legacy["id"]]
    assert issues[-1]["priority"] == "Critical"


def test_student_cannot_change_status(client, student):
    _, token = student
    issue = create_issue(client, token)
    for status in ("Assigned", "Resolved", "Closed", "nonsense"):
        response = client.put(
            f"/api/issues/{issue['id']}/status",
            json={"status": status, "remark": "please"},
            headers=auth(token),
        )
        assert response.status_code == 403


def test_full_lifecycle(client, student, manager):
    _, token = student
    _, manager_token = manager
    caretaker, caretaker_token = register(client, "caretaker")
    other_caretaker, other_token = register(client, "caretaker")
    issue = create_issue(client, token)

    # Remark is mandatory
    response = client.put(
        f"/api/issues/{issue['id']}/assign",
        json={"caretakerId": caretaker["id"]},
        headers=auth(manager_token),
    )
    assert response.status_code == 400

    response = client.put(
        f"/api/issues/{issue['id']}/assign",
        json={"caretakerId": caretaker["id"], "remark": "Please check today"},
        headers=auth(manager_token),
    )
    assert response.status_code == 200, response.text
    assigned = response.json()["issue"]
    assert assigned["status"] == "Assigned"
    assert assigned["assigned_to_id"] == caretaker["id"]
    assert assigned["assigned_at"] is not None

    # Another caretaker may not touch it
    response = client.put(
        f"/api/issues/{issue['id']}/status",
        json={"status": "Resolved", "remark": "done"},
        headers=auth(other_token),
    )
    assert response.status_code == 403

    response = client.put(
        f"/api/issues/{issue['id']}/status",
        json={"status": "Under Construction", "remark": "Replacing washer"},
        headers=auth(caretaker_token),
    )
    assert response.json()["issue"]["status"] == "In Progress"

    response = client.put(
        f"/api/issues/{issue['id']}/status",
        json={"status": "Repaired", "remark": "Fixed"},
        headers=auth(caretaker_token),
    )
    resolved = response.json()["issue"]
    assert resolved["status"] == "Resolved"
    assert resolved["resolved_at"] is not None

    # Caretakers cannot close
    response = client.put(
        f"/api/issues/{issue['id']}/status",
        json={"status": "Closed", "remark": "closing"},
        headers=auth(caretaker_token),
    )
    assert response.status_code == 403

    response = client.put(
        f"/api/issues/{issue['id']}/status",
        json={"status": "Closed", "remark": "Verified with student"},
        headers=auth(manager_token),
    )
    closed = response.json()["issue"]
    assert closed["status"] == "Closed"
    assert [step["to_status"] for step in closed["timeline"]] == [
        "Assigned", "In Progress", "Resolved", "Closed"
    ]
    assert closed["timeline"][0]["remark"] == "Please check today"


def test_illegal_edge_is_rejected(client, student, manager):
    _, token = student
    _, manager_token = manager
    issue = create_issue(client, token)
    response = client.put(
        f"/api/issues/{issue['id']}/status",
        json={"status": "Closed", "remark": "skip ahead"},
        headers=auth(manager_token),
    )
    assert response.status_code == 400


def test_assign_to_unknown_caretaker(client, student, manager):
    _, token = student
    student_user, _ = student
    _, manager_token = manager
    issue = create_issue(client, token)
    response = client.put(
        f"/api/issues/{issue['id']}/assign",
        json={"caretakerId": student_user["id"], "remark": "wrong person"},
        headers=auth(manager_token),
    )
    assert response.status_code == 404


def test_new_caretaker_receives_unassigned_issues(client, student):
    _, token = student
    ids = [create_issue(client, token, title=f"Issue {i}")["id"] for i in range(7)]
    caretaker, caretaker_token = register(client, "caretaker")

    mine = client.get(
        "/api/issues", params={"assigned_to_me": "true"}, headers=auth(caretaker_token)
    ).json()["issues"]
    assert len(mine) == 5
    # Oldest first
    assert sorted(i["id"] for i in mine) == sorted(ids[:5])
    assert all(i["status"] == "Assigned" for i in mine)


def test_delete_is_owner_or_management(client, student, other_student, manager, flaky_store):
    _, token = student
    _, other_token = other_student
    _, manager_token = manager
    response = client.post(
        "/api/issues",
        data={"title": "Cracked tile", "category": "Civil", "isPublic": "true"},
        files=[("image", ("tile.jpg", JPEG, "image/jpeg"))],
        headers=auth(token),
    )
    issue = response.json()["issue"]
    image_path = issue["images"][0].replace("http://testserver", "")
    assert client.get(image_path).status_code == 200

    assert client.delete(f"/api/issues/{issue['id']}", headers=auth(other_token)).status_code == 403
    assert client.delete(f"/api/issues/{issue['id']}", headers=auth(token)).status_code == 200
    assert client.get(f"/api/issues/{issue['id']}", headers=auth(token)).status_code == 404
    assert client.get(image_path).status_code == 404

    other_issue = create_issue(client, other_token)
    assert client.delete(f"/api/issues/{other_issue['id']}", headers=auth(manager_token)).status_code == 200


def test_lost_found_items(client, student, other_student):
    _, token = student
    _, other_token = other_student
    response = client.post(
        "/api/lost-found",
        json={"itemName": "Blue umbrella", "itemType": "lost", "location": "Mess hall"},
        headers=auth(token),
    )
    assert response.status_code == 201, response.text
    item = response.json()["item"]
    assert item["item_type"] == "Lost"
    assert item["item_name"] == "Blue umbrella"
    assert item["is_public"] is True

    # Public by default, so other residents can browse it
    items = client.get("/api/lost-found", headers=auth(other_token)).json()["items"]
    assert [i["id"] for i in items] == [item["id"]]
    found = client.get("/api/lost-found", params={"item_type": "Found"}, headers=auth(other_token)).json()
    assert found["items"] == []

    bad = client.post("/api/lost-found", json={"itemName": "Keys", "itemType": "Stolen"}, headers=auth(token))
    assert bad.status_code == 400


def test_management_stats(client, student, manager):
    _, token = student
    _, manager_token = manager
    create_issue(client, token, priority="High")
    stats = client.get("/api/management/stats", headers=auth(manager_token)).json()
    assert stats["issues"]["total"] == 1
    assert stats["issues"]["by_priority"]["High"] == 1
    assert stats["lost_found"]["total"] == 0
    assert client.get("/api/management/stats", headers=auth(token)).status_code == 403
