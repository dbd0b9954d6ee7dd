import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_storage
from app.main import app
from app.utils.storage_service import StorageService

PROVIDER_BODY = {
    "name": "Ali Electric Works",
    "city": "Lahore",
    "skillset": "Electrician, wiring",
    "contact_no": "+923001234567",
    "description": "Residential wiring",
    "experience": "5 years",
    "pin": "1234",
}

CONSUMER_BODY = {"name": "Sara Khan", "city": "Lahore", "contact_no": "+923211234567", "pin": "1234"}


@pytest.fixture
def client(tmp_path):
    app.dependency_overrides[get_storage] = lambda: StorageService(provider="local", local_root=str(tmp_path))
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create_provider(client, **overrides):
    response = client.post("/api/sp-create", json={**PROVIDER_BODY, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _create_consumer(client, **overrides):
    response = client.post("/api/consumer-create", json={**CONSUMER_BODY, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _create_conversation(client):
    provider = _create_provider(client)
    consumer = _create_consumer(client)
    response = client.post("/api/conversation", json={"provider_id": provider["id"], "consumer_id": consumer["id"]})
    assert response.status_code == 201, response.text
    return provider, consumer, response.json()["conversation"]


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_create_provider_starts_trial_and_hides_pin(client):
    provider = _create_provider(client)

    assert provider["id"] == 1
    assert provider["status"] == 1
    assert provider["subscription_end_date"] is not None
    assert "pin" not in provider
    assert "pin_hash" not in provider


def test_duplicate_provider_contact_conflicts(client):
    _create_provider(client)
    response = client.post("/api/sp-create", json=PROVIDER_BODY)

    assert response.status_code == 409
    assert response.json()["success"] is False
    assert response.json()["error"] == "CONFLICT"


def test_request_validation_errors_are_structured(client):
    response = client.post("/api/sp-create", json={"name": "A", "pin": "12"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    fields = {detail["field"] for detail in body["details"]}
    assert {"name", "city", "skillset", "contact_no", "pin"} <= fields


def test_provider_crud(client):
    provider = _create_provider(client)

    listed = client.get("/api/sp-list").json()
    assert listed["count"] == 1

    updated = client.put(
        f"/api/sp-update/{provider['id']}", json={**PROVIDER_BODY, "city": "Islamabad", "pin": None}
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["city"] == "Islamabad"

    assert client.delete(f"/api/sp-delete/{provider['id']}").status_code == 200
    missing = client.get(f"/api/sp-get/{provider['id']}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "NOT_FOUND"
    assert client.get("/api/sp-list").json()["count"] == 0

    # Contact number is free again after soft delete
    _create_provider(client)


def test_filter_stats_and_cities(client):
    _create_provider(client)
    _create_provider(client, contact_no="+923331234567", city="Karachi", skillset="Plumbing and fittings", name="Kamal")

    by_city = client.post("/api/sp-filter", json={"city": "lahore"}).json()
    assert [p["name"] for p in by_city["data"]] == ["Ali Electric Works"]

    by_search = client.post("/api/sp-filter", json={"search": "PLUMB"}).json()
    assert [p["name"] for p in by_search["data"]] == ["Kamal"]

    stats = client.get("/api/sp-stats").json()["data"]
    assert stats["total_providers"] == 2
    assert stats["by_city"] == [{"city": "Karachi", "count": 1}, {"city": "Lahore", "count": 1}]

    assert client.get("/api/cities").json()["data"] == ["Karachi", "Lahore"]


def test_provider_signin(client):
    _create_provider(client)

    ok = client.post("/api/sp-signin", json={"contact_no": "+923001234567", "pin": "1234"})
    assert ok.status_code == 200

    wrong = client.post("/api/sp-signin", json={"contact_no": "+923001234567", "pin": "9999"})
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "UNAUTHORIZED"


def test_consumer_signup_and_signin(client):
    consumer = _create_consumer(client)

    assert client.post("/api/consumer-create", json=CONSUMER_BODY).status_code == 409
    signin = client.post("/api/consumer-signin", json={"contact_no": "+923211234567", "pin": "1234"})
    assert signin.json()["data"]["id"] == consumer["id"]
    assert client.get(f"/api/consumer-get/{consumer['id']}").status_code == 200


def test_otp_request_and_verify(client):
    issued = client.post("/api/otp/request", json={"contact_no": "923450000001", "length": 20})
    assert issued.status_code == 201
    code = issued.json()["data"]["code"]
    assert len(code) == 8

    wrong = client.post("/api/otp/verify", json={"contact_no": "923450000001", "code": "x"})
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "INVALID_CODE"

    assert client.post("/api/otp/verify", json={"contact_no": "923450000001", "code": code}).status_code == 200
    replay = client.post("/api/otp/verify", json={"contact_no": "923450000001", "code": code})
    assert replay.status_code == 404


def test_otp_request_validation(client):
    bad = client.post("/api/otp/request", json={"contact_no": "12ab"})
    assert bad.status_code == 400

    no_account = client.post("/api/otp/request", json={"contact_no": "923450000001", "purpose": "SP_SIGNIN"})
    assert no_account.status_code == 404


def test_forgot_password_flow(client):
    _create_provider(client)
    code = client.post(
        "/api/otp/request", json={"contact_no": "923001234567", "purpose": "PIN_RESET"}
    ).json()["data"]["code"]

    reset = client.post(
        "/api/forgot-password", json={"contact_no": "923001234567", "code": code, "new_pin": "4321"}
    )
    assert reset.status_code == 200

    assert client.post("/api/sp-signin", json={"contact_no": "+923001234567", "pin": "4321"}).status_code == 200
    assert client.post("/api/sp-signin", json={"contact_no": "+923001234567", "pin": "1234"}).status_code == 401


def test_subscription_status_and_renewal(client):
    provider = _create_provider(client)

    status = client.get(f"/api/sp-subscription-status/{provider['id']}").json()["data"]
    assert status["is_subscription_active"] is True
    assert status["days_until_expiry"] >= 28

    renewed = client.post(
        f"/api/sp-renew-subscription/{provider['id']}",
        json={"months": 2, "screenshot": "https://cdn.example.com/receipt.png"},
    )
    assert renewed.status_code == 200
    assert renewed.json()["data"]["subscription_end_date"] > provider["subscription_end_date"]

    missing_proof = client.post(f"/api/sp-renew-subscription/{provider['id']}", json={"months": 2})
    assert missing_proof.status_code == 400

    assert client.get("/api/sp-pending").json()["count"] == 0


def test_payment_upload_stores_screenshot_and_renews(client, tmp_path):
    provider = _create_provider(client)

    response = client.post(
        "/api/payment-upload",
        data={"service_provider_id": str(provider["id"]), "amount": "1500"},
        files={"screenshot": ("receipt.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
    )

    assert response.status_code == 201, response.text
    data = response.json()["data"]
    assert data["screenshot_path"].startswith("/screenshots/payments/")
    assert data["screenshot_path"].endswith(".png")
    assert len(list(tmp_path.rglob("*.png"))) == 1


def test_payment_upload_rejects_non_images_and_unknown_providers(client):
    provider = _create_provider(client)

    text_file = client.post(
        "/api/payment-upload",
        data={"service_provider_id": str(provider["id"]), "amount": "1500"},
        files={"screenshot": ("notes.txt", b"hello", "text/plain")},
    )
    assert text_file.status_code == 400

    unknown = client.post(
        "/api/payment-upload",
        data={"service_provider_id": "999", "amount": "1500"},
        files={"screenshot": ("receipt.png", b"\x89PNG", "image/png")},
    )
    assert unknown.status_code == 404


def test_conversation_lifecycle(client):
    provider, consumer, conversation = _create_conversation(client)

    again = client.post("/api/conversation", json={"provider_id": provider["id"], "consumer_id": consumer["id"]})
    assert again.json()["conversation"]["id"] == conversation["id"]

    sent = client.post("/api/message", json={"id": conversation["id"], "content": "Can you come at 5?"})
    assert sent.status_code == 201
    assert sent.json()["message"]["sender_type"] == "consumer"
    assert sent.json()["message"]["sender_id"] == consumer["id"]

    fetched = client.get(f"/api/conversation?id={conversation['id']}&includeMessages=true").json()
    assert [m["content"] for m in fetched["conversation"]["messages"]] == ["Can you come at 5?"]
    assert fetched["pagination"]["total_messages"] == 1

    mine = client.get(f"/api/conversation?userType=service_provider&userId={provider['id']}").json()
    assert [c["id"] for c in mine["conversations"]] == [conversation["id"]]
    assert mine["conversations"][0]["consumer"]["name"] == "Sara Khan"

    read = client.put(
        f"/api/conversation/{conversation['id']}/read",
        json={"user_id": provider["id"], "user_type": "service_provider"},
    )
    assert read.json()["count"] == 1

    done = client.put(f"/api/conversation/{conversation['id']}/status", json={"status": "COMPLETED"})
    assert done.json()["conversation"]["status"] == "COMPLETED"
    reopen = client.put(f"/api/conversation/{conversation['id']}/status", json={"status": "ACTIVE"})
    assert reopen.status_code == 409
    assert reopen.json()["error"] == "INVALID_TRANSITION"

    messages = client.get(f"/api/messages?id={conversation['id']}").json()
    assert messages["count"] == 1


def test_conversation_query_needs_selector(client):
    response = client.get("/api/conversation")
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_negotiation_endpoints(client):
    provider, consumer, conversation = _create_conversation(client)
    provider_ref = {"conversation_id": conversation["id"], "sender_id": provider["id"], "sender_type": "service_provider"}
    consumer_ref = {"conversation_id": conversation["id"], "sender_id": consumer["id"], "sender_type": "consumer"}

    offer = client.post("/api/message/offer", json={**provider_ref, "amount": 1500, "description": "Rewire kitchen"})
    assert offer.status_code == 201
    offer_message = offer.json()["data"]
    assert offer_message["content"] == "Offer: Rewire kitchen - $1500"

    own = client.post("/api/message/accept-offer", json={**provider_ref, "offer_message_id": offer_message["id"]})
    assert own.status_code == 400

    accepted = client.post("/api/message/accept-offer", json={**consumer_ref, "offer_message_id": offer_message["id"]})
    assert accepted.status_code == 201
    assert accepted.json()["data"]["metadata"]["accepted_offer_id"] == offer_message["id"]

    twice = client.post(
        "/api/message/decline-offer", json={**consumer_ref, "offer_message_id": offer_message["id"], "reason": "No"}
    )
    assert twice.status_code == 409

    charge = client.post(
        "/api/message/charge", json={**provider_ref, "amount": 1500, "description": "Labour", "breakdown": ["Labour: 1500"]}
    )
    assert charge.status_code == 201

    payment = client.post("/api/message/payment", json={**consumer_ref, "amount": 1500, "method": "Cash"})
    assert payment.status_code == 201

    general = client.post(
        "/api/message/send", json={**consumer_ref, "content": "Thanks!", "metadata": {"emoji": "thumbs_up"}}
    )
    assert general.json()["data"]["metadata"] == {"emoji": "thumbs_up"}

    outsider = client.post("/api/message/send", json={**consumer_ref, "sender_id": 999, "content": "hi"})
    assert outsider.status_code == 400


def test_offer_sent_through_generic_route_with_naive_expiry(client):
    provider, consumer, conversation = _create_conversation(client)
    offer = client.post(
        "/api/message/send",
        json={
            "conversation_id": conversation["id"],
            "sender_id": provider["id"],
            "sender_type": "service_provider",
            "message_type": "OFFER",
            "content": "Offer: Fix fan - $800",
            "metadata": {"amount": 800, "description": "Fix fan", "validity_hours": 24, "offer_expires_at": "2099-01-01T00:00:00"},
        },
    )
    assert offer.status_code == 201

    accepted = client.post(
        "/api/message/accept-offer",
        json={
            "conversation_id": conversation["id"],
            "sender_id": consumer["id"],
            "sender_type": "consumer",
            "offer_message_id": offer.json()["data"]["id"],
        },
    )
    assert accepted.status_code == 201


def test_websocket_delivery(client):
    provider, consumer, conversation = _create_conversation(client)

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"userId": provider["id"], "userType": "service_provider"}})
        assert ws.receive_json()["event"] == "authenticated"

        ws.send_json({"event": "join_conversation", "data": {"conversationId": conversation["id"]}})
        assert ws.receive_json() == {"event": "joined", "data": {"conversationId": conversation["id"]}}

        online = client.get("/api/online-users").json()
        assert online["count"] == 1
        assert online["data"][0]["user_type"] == "service_provider"

        client.post("/api/message", json={"id": conversation["id"], "content": "Are you available?"})

        new_message = ws.receive_json()
        assert new_message["event"] == "new_message"
        assert new_message["data"]["message"]["content"] == "Are you available?"

        notification = ws.receive_json()
        assert notification["event"] == "notification"
        assert notification["data"]["type"] == "new_message_notification"
        assert notification["data"]["senderName"] == consumer["name"]


def test_websocket_rejects_bad_frames(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"event": "dance"})
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"event": "join_conversation", "data": {"conversationId": 1}})
        assert ws.receive_json()["event"] == "join_error"

        ws.send_json({"event": "authenticate", "data": {"userId": 1, "userType": "consumer"}})
        assert ws.receive_json() == {"event": "auth_error", "data": {"message": "Consumer not found"}}


def test_sms_relay_requires_configuration(client):
    response = client.post("/api/sms/send", json={"recipients": ["923001234567"], "message": "hello"})
    assert response.status_code == 400
