"""Manual smoke test against a running server.

Start the backend (``uvicorn app.main:app`` from ``backend/``), then run
``python test_chat.py``. Two users are created over HTTP, they open a
conversation, and a message is sent over the socket and received by both.
"""
import asyncio
import json
import uuid

import httpx
import websockets

BASE_URL = "http://localhost:8000"
WS_URL = "ws://localhost:8000/ws/chat"


def create_user(client, name):
    suffix = uuid.uuid4().hex[:8]
    response = client.post("/users", json={"name": name, "email": f"{name.lower()}-{suffix}@example.com"})
    response.raise_for_status()
    return response.json()


async def identify(ws, user_id):
    await ws.send(json.dumps({"type": "identity_join", "userId": user_id}))
    while True:
        event = json.loads(await ws.recv())
        print(f"[{user_id[:8]}] {event}")
        if event["type"] == "identity_joined":
            return event


async def receive_type(ws, event_type):
    while True:
        event = json.loads(await ws.recv())
        if event["type"] == event_type:
            return event


async def test():
    with httpx.Client(base_url=BASE_URL) as client:
        alice = create_user(client, "Alice")
        bob = create_user(client, "Bob")
        response = client.post(
            "/conversations",
            json={"participants": [bob["id"]]},
            headers={"X-User-Id": alice["id"]},
        )
        response.raise_for_status()
        conversation_id = response.json()["id"]

    async with websockets.connect(WS_URL) as ws_a, websockets.connect(WS_URL) as ws_b:
        await identify(ws_a, alice["id"])
        await identify(ws_b, bob["id"])

        for ws in (ws_a, ws_b):
            await ws.send(json.dumps({"type": "group_join", "conversationId": conversation_id}))
            await receive_type(ws, "group_joined")

        await ws_a.send(json.dumps({
            "type": "send_message",
            "conversationId": conversation_id,
            "text": "Hello from Python!",
        }))

        received = await receive_type(ws_b, "message_received")
        print(f"Bob received: {received['body']} (from {received['sender']['name']})")


if __name__ == "__main__":
    asyncio.run(test())
