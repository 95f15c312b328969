"""
Claims on lost & found items.
"""
from conftest import auth, register


def post_item(client, token, **fields):
    payload = {"itemName": "Black wallet", "itemType": "Found", "location": "Reading room"}
    payload.update(fields)
    response = client.post("/api/lost-found", json=payload, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()["item"]


def test_claim_resolves_item(client, student, other_student, manager):
    _, token = student
    claimer, claimer_token = other_student
    _, manager_token = manager
    item = post_item(client, token)

    response = client.post(
        f"/api/lost-found/{item['id']}/claims",
        json={"proofText": "Has my library card inside"},
        headers=auth(claimer_token),
    )
    assert response.status_code == 201, response.text
    body = response.json()
    claim = body["claim"]
    assert claim["claimed_by"] == claimer["id"]
    assert claim["proof_text"] == "Has my library card inside"
    assert claim["claimer"]["email"] == claimer["email"]
    assert body["item"]["status"] == "Resolved"
    assert body["item"]["resolved_at"] is not None
    assert body["item"]["timeline"][-1]["to_status"] == "Resolved"
    assert body["item"]["timeline"][-1]["actor_id"] == claimer["id"]

    # The reporter sees the claim on the item
    fetched = client.get(f"/api/lost-found/{item['id']}", headers=auth(token)).json()["item"]
    assert [c["id"] for c in fetched["claims"]] == [claim["id"]]

    listed = client.get(f"/api/lost-found/{item['id']}/claims", headers=auth(manager_token)).json()
    assert listed["total"] == 1
    assert listed["claims"][0]["claimer"]["id"] == claimer["id"]


def test_claims_of_others_are_hidden(client, student, other_student):
    _, token = student
    _, claimer_token = other_student
    _, bystander_token = register(client, "student")
    item = post_item(client, token)
    client.post(
        f"/api/lost-found/{item['id']}/claims",
        json={"proof": "Initials R.K. on the strap"},
        headers=auth(claimer_token),
    )

    fetched = client.get(f"/api/lost-found/{item['id']}", headers=auth(bystander_token)).json()["item"]
    assert fetched["claims"] == []
    mine = client.get(f"/api/lost-found/{item['id']}/claims", headers=auth(claimer_token)).json()
    assert mine["total"] == 1


def test_claim_rules(client, student, other_student):
    _, token = student
    _, claimer_token = other_student
    item = post_item(client, token)
    url = f"/api/lost-found/{item['id']}/claims"

    assert client.post(url, json={"proofText": "mine"}, headers=auth(token)).status_code == 400
    assert client.post(url, json={"proofText": "   "}, headers=auth(claimer_token)).status_code == 400
    assert client.post(url, json={"proofText": "Scratch on the back"}, headers=auth(claimer_token)).status_code == 201

    # Already settled
    _, late_token = register(client, "student")
    response = client.post(url, json={"proofText": "It is mine too"}, headers=auth(late_token))
    assert response.status_code == 409
    assert response.json()["success"] is False


def test_private_item_cannot_be_claimed_by_others(client, student, other_student):
    _, token = student
    _, claimer_token = other_student
    item = post_item(client, token, isPublic="false")
    response = client.post(
        f"/api/lost-found/{item['id']}/claims",
        json={"proofText": "Mine"},
        headers=auth(claimer_token),
    )
    assert response.status_code == 404


def test_claimed_item_can_be_closed_and_deleted(client, student, other_student, manager):
    _, token = student
    _, claimer_token = other_student
    _, manager_token = manager
    item = post_item(client, token)
    client.post(
        f"/api/lost-found/{item['id']}/claims",
        json={"proofText": "Photo of it on my phone"},
        headers=auth(claimer_token),
    )

    response = client.put(
        f"/api/lost-found/{item['id']}/status",
        json={"status": "Closed", "remark": "Handed over at the office"},
        headers=auth(manager_token),
    )
    assert response.status_code == 200, response.text
    assert response.json()["item"]["status"] == "Closed"

    assert client.delete(f"/api/lost-found/{item['id']}", headers=auth(manager_token)).status_code == 200
    assert client.get(f"/api/lost-found/{item['id']}/claims", headers=auth(manager_token)).status_code == 404


def test_issues_have_no_claims(client, student, other_student):
    _, token = student
    _, other_token = other_student
    response = client.post(
        "/api/issues",
        json={"title": "Fan broken", "category": "Electrical", "isPublic": "true"},
        headers=auth(token),
    )
    issue = response.json()["issue"]
    assert "claims" not in issue
    response = client.post(
        f"/api/issues/{issue['id']}/claims", json={"proofText": "x"}, headers=auth(other_token)
    )
    assert response.status_code in (404, 405)
