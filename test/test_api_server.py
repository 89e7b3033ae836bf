"""
Test HTTP API (FastAPI TestClient)
==================================

Mỗi test gắn một ChatbotPipeline in-memory mới vào api_server.pipeline.
"""

import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from fastapi.testclient import TestClient

import api_server
from knowledge_base import load_knowledge_base, get_default_kb_path
from pipeline import ChatbotPipeline


KB = load_knowledge_base(get_default_kb_path())


def make_client(enable_monitoring: bool = True) -> TestClient:
    api_server.pipeline = ChatbotPipeline(knowledge_base=KB, enable_monitoring=enable_monitoring)
    return TestClient(api_server.app)


def test_health():
    client = make_client()
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["knowledge_base"]["schemes"] == len(KB.schemes)
    assert data["knowledge_base"]["entry_points"] == len(KB.entry_points)
    assert data["redis"] is False


def test_start_session():
    print("=" * 60)
    print("TEST: POST /sessions/{id}/start")
    print("=" * 60)

    client = make_client()
    response = client.post("/sessions/u1/start", json={"lang": "zh"})
    assert response.status_code == 200
    data = response.json()
    assert data["session_id"] == "u1"
    assert data["state"]["lang"] == "zh"
    assert data["state"]["step"] == "choose_domain"
    assert data["message"]["kind"] == "welcome"

    response = client.post("/sessions/u2/start")
    assert response.status_code == 200
    assert response.json()["state"]["lang"] == "en"


def test_message_flow():
    client = make_client()
    client.post("/sessions/u1/start", json={"lang": "en"})

    data = client.post("/sessions/u1/messages", json={"text": "financial aid"}).json()
    assert data["state"]["step"] == "choose_focus"
    assert data["state"]["domain_id"] == "financial"
    assert data["message"]["kind"] == "domain_intro"

    data = client.post("/sessions/u1/messages", json={"text": "lost my job"}).json()
    assert data["state"]["step"] == "refine_and_show"
    assert data["state"]["last_query"] == "lost my job"
    assert data["message"]["kind"] == "results"
    assert data["message"]["cards"]
    print(f"  cards: {[c['id'] for c in data['message']['cards']]}")


def test_empty_message():
    client = make_client()
    client.post("/sessions/u1/start")
    data = client.post("/sessions/u1/messages", json={}).json()
    assert data["message"]["kind"] == "empty_input"
    assert data["state"]["step"] == "choose_domain"


def test_crisis_message():
    client = make_client()
    client.post("/sessions/u1/start")
    data = client.post("/sessions/u1/messages", json={"text": "I want to kill myself"}).json()
    assert data["message"]["kind"] == "sensitive"
    assert data["message"]["escalation"] == {"recommended": True, "reason": "sensitive"}
    assert data["message"]["cards"][0]["focus"] == "entry"


def test_actions():
    client = make_client()
    client.post("/sessions/u1/start")

    data = client.post("/sessions/u1/actions", json={"type": "SET_DOMAIN", "domain_id": "healthcare"}).json()
    assert data["state"]["domain_id"] == "healthcare"
    assert data["state"]["step"] == "choose_focus"

    client.post("/sessions/u1/messages", json={"text": "chas clinic"})
    data = client.post("/sessions/u1/actions", json={"type": "SET_FOCUS", "focus": "steps"}).json()
    assert data["state"]["focus"] == "steps"
    assert data["message"]["kind"] == "results"
    assert all(c["focus"] == "steps" for c in data["message"]["cards"] if c["focus"] != "entry")

    data = client.post("/sessions/u1/actions", json={"type": "bogus"}).json()
    assert data["message"] is None
    assert data["state"]["focus"] == "steps"


def test_action_validation():
    client = make_client()
    response = client.post("/sessions/u1/actions", json={"domain_id": "legal"})
    assert response.status_code == 422


def test_get_state():
    client = make_client()
    assert client.get("/sessions/missing/state").status_code == 404

    client.post("/sessions/u1/start", json={"lang": "zh"})
    response = client.get("/sessions/u1/state")
    assert response.status_code == 200
    assert response.json()["state"]["lang"] == "zh"


def test_escalations():
    client = make_client()
    assert client.post("/sessions/missing/escalations", json={}).status_code == 404

    client.post("/sessions/u1/start")
    client.post("/sessions/u1/actions", json={"type": "SET_DOMAIN", "domain_id": "legal"})
    response = client.post(
        "/sessions/u1/escalations",
        json={"name": "Lim", "contact": "9123 4567", "summary": "need a lawyer"},
    )
    assert response.status_code == 200
    ticket = response.json()
    assert ticket["reason"] == "user_requested"
    assert ticket["domain_id"] == "legal"
    assert ticket["name"] == "Lim"
    assert ticket["ticket_id"]
    assert len(api_server.pipeline.escalation_queue.pending()) == 1


def test_delete_session():
    client = make_client()
    client.post("/sessions/u1/start")
    response = client.delete("/sessions/u1")
    assert response.json() == {"session_id": "u1", "cleared": True}
    assert client.get("/sessions/u1/state").status_code == 404


def test_metrics():
    client = make_client()
    client.post("/sessions/u1/start")
    client.post("/sessions/u1/messages", json={"text": "financial aid"})
    client.post("/sessions/u1/messages", json={"text": "lost my job"})

    data = client.get("/metrics/json").json()
    assert data["total_turns"] == 2
    assert data["turns_by_kind"] == {"domain_intro": 1, "results": 1}

    response = client.get("/metrics/prometheus")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "turns_total 2" in response.text


def test_metrics_disabled():
    client = make_client(enable_monitoring=False)
    assert client.get("/metrics/json").status_code == 404
    assert client.get("/metrics/prometheus").status_code == 404


def main():
    """Run all tests"""
    tests = [
        ("Health", test_health),
        ("Start session", test_start_session),
        ("Message flow", test_message_flow),
        ("Empty message", test_empty_message),
        ("Crisis message", test_crisis_message),
        ("Actions", test_actions),
        ("Action validation", test_action_validation),
        ("Get state", test_get_state),
        ("Escalations", test_escalations),
        ("Delete session", test_delete_session),
        ("Metrics", test_metrics),
        ("Metrics disabled", test_metrics_disabled),
    ]

    results = []
    for name, fn in tests:
        try:
            fn()
            results.append((name, True))
        except AssertionError as e:
            print(f"  ❌ {name}: {e}")
            results.append((name, False))

    passed = sum(1 for _, r in results if r)
    for name, result in results:
        status = "✅ PASSED" if result else "❌ FAILED"
        print(f"  {status}: {name}")
    print(f"\n  Total: {passed}/{len(results)} tests passed")
    return 0 if passed == len(results) else 1


if __name__ == "__main__":
    exit(main())
