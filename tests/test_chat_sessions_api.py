def _open(client, **extra):
    payload = {"ticket_id": "T-1", "agent_id": "agent-7", **extra}
    resp = client.post("/api/chat/sessions", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _say(client, session_id, content, sender_type="customer"):
    return client.post(
        f"/api/chat/sessions/{session_id}/messages",
        json={"content": content, "sender_type": sender_type},
    )


def test_open_is_idempotent_per_ticket_and_agent(api_client):
    first = _open(api_client)
    again = _open(api_client)

    assert first["id"] == again["id"]
    assert first["status"] == "active"
    assert api_client.get(f"/api/chat/sessions/{first['id']}").json()["id"] == first["id"]


def test_escalation_flow(api_client, harness):
    session_id = _open(api_client)["id"]

    resp = _say(api_client, session_id, "This is absolutely unacceptable, I want a refund now")

    assert resp.status_code == 200
    body = resp.json()
    assert body["escalated"] is True
    assert body["session"]["status"] == "escalated"
    assert body["sentiment_analysis"]["escalation_reason"] == "Escalation keyword detected"

    harness.clock.advance(minutes=5)
    calm = _say(api_client, session_id, "Thanks so much, you were very helpful!").json()
    assert calm["escalated"] is False
    assert calm["session"]["sentiment_analysis"]["current_sentiment"] == "positive"
    assert calm["session"]["sentiment_analysis"]["escalation_triggered"] is True


def test_linked_conversation_is_handed_off(api_client):
    started = api_client.post(
        "/api/widget/conversation", json={"client_id": "C1", "customer_email": "a@x.com"}
    ).json()
    conversation_id = started["conversation"]["id"]
    session_id = _open(api_client, conversation_id=conversation_id)["id"]

    _say(api_client, session_id, "I will sue you")

    conversation = api_client.get(f"/api/conversations/{conversation_id}").json()
    assert conversation["status"] == "escalated"
    assert conversation["handoff_requested"] is True
    transcript = api_client.get(f"/api/conversations/{conversation_id}/messages").json()
    assert transcript["items"][0]["metadata"]["chat_session_id"] == session_id


def test_hold_resume_and_close(api_client, harness):
    session_id = _open(api_client)["id"]

    assert api_client.put(f"/api/chat/sessions/{session_id}/hold").json()["status"] == "on_hold"
    assert api_client.put(f"/api/chat/sessions/{session_id}/hold").status_code == 409
    assert api_client.put(f"/api/chat/sessions/{session_id}/resume").json()["status"] == "active"

    harness.clock.advance(seconds=90)
    closed = api_client.put(
        f"/api/chat/sessions/{session_id}/close",
        json={"notes": "Solved by reset", "author_id": "agent-7"},
    ).json()
    assert closed["status"] == "closed"
    assert closed["duration"] == 90
    assert closed["notes"][0]["text"] == "Solved by reset"

    assert _say(api_client, session_id, "hello?").status_code == 409
    assert api_client.put(f"/api/chat/sessions/{session_id}/resume").status_code == 409


def test_close_without_body(api_client):
    session_id = _open(api_client)["id"]

    resp = api_client.put(f"/api/chat/sessions/{session_id}/close")

    assert resp.status_code == 200
    assert resp.json()["notes"] == []


def test_active_sessions_for_agent(api_client):
    first = _open(api_client)
    _open(api_client, ticket_id="T-2")
    api_client.put(f"/api/chat/sessions/{first['id']}/close")

    body = api_client.get("/api/chat/agent/agent-7/active").json()

    assert body["count"] == 1
    assert body["active_sessions"][0]["ticket_id"] == "T-2"


def test_unknown_session_and_invalid_payloads(api_client):
    assert api_client.get("/api/chat/sessions/nope").status_code == 404
    session_id = _open(api_client)["id"]
    assert _say(api_client, session_id, "hi", sender_type="bot").status_code == 422
    assert _say(api_client, session_id, "   ").status_code == 422


def test_copilot_endpoints(api_client):
    session_id = _open(api_client)["id"]
    _say(api_client, session_id, "My parcel has not arrived")

    suggestions = api_client.post(
        f"/api/chat/sessions/{session_id}/response-suggestions",
        json={"message": "My parcel has not arrived"},
    ).json()
    assert len(suggestions["suggestions"]) == 3

    completions = api_client.post(
        f"/api/chat/sessions/{session_id}/auto-complete",
        json={"current_text": "I have checked"},
    ).json()
    assert completions["partial_text"] == "I have checked"
    assert completions["completions"]

    phrases = api_client.get(
        f"/api/chat/sessions/{session_id}/common-phrases", params={"context": "closing"}
    ).json()
    assert phrases["context"] == "closing"
    assert len(phrases["phrases"]) == 3

    summary = api_client.get(f"/api/chat/sessions/{session_id}/summary").json()
    assert summary["message_count"] == 1


def test_disabled_copilot_features(api_client):
    session_id = _open(api_client, ai_suggestions_enabled=False)["id"]

    resp = api_client.post(
        f"/api/chat/sessions/{session_id}/response-suggestions", json={"message": "help"}
    )

    assert resp.status_code == 400
