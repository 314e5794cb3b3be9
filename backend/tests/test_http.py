"""Tests for the HTTP endpoints: users, conversations, messages and admin."""
from datetime import timedelta

import pytest

from app.storage.schemas import Message, UserRole, utcnow

from conftest import headers_for


@pytest.fixture
def alice(make_user):
    return make_user("Alice")


@pytest.fixture
def bob(make_user):
    return make_user("Bob")


@pytest.fixture
def admin(make_user):
    return make_user("Root", role=UserRole.ADMIN)


@pytest.fixture
def conversation(hub, alice, bob):
    return hub.membership.create_conversation([bob.id], alice.id)


def test_health(api_client):
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "online": 0}


class TestUsers:

    def test_create_user(self, api_client):
        response = api_client.post(
            "/users", json={"name": "Grace", "email": "grace@example.com", "role": "agent"}
        )
        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Grace"
        assert data["role"] == "agent"
        assert data["isActive"] is True
        assert "id" in data

    def test_duplicate_email(self, api_client, alice):
        response = api_client.post("/users", json={"name": "Copy", "email": alice.email})
        assert response.status_code == 400
        assert "already registered" in response.json()["error"]

    def test_invalid_email(self, api_client):
        response = api_client.post("/users", json={"name": "X", "email": "not-an-email"})
        assert response.status_code == 422

    def test_get_user_with_presence(self, api_client, alice, bob):
        response = api_client.get(f"/users/{bob.id}", headers=headers_for(alice))
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == bob.id
        assert data["online"] is False
        assert data["activityStatus"] == "active"

    def test_stale_user_is_offline(self, api_client, hub, alice, bob):
        hub.store.touch_last_seen(bob.id, utcnow() - timedelta(hours=1))
        data = api_client.get(f"/users/{bob.id}", headers=headers_for(alice)).json()
        assert data["activityStatus"] == "offline"

    def test_get_missing_user(self, api_client, alice):
        response = api_client.get("/users/ghost", headers=headers_for(alice))
        assert response.status_code == 404
        assert response.json() == {"error": "User not found"}

    def test_identity_header_is_required(self, api_client, bob):
        assert api_client.get(f"/users/{bob.id}").status_code == 422

    def test_unknown_role_header(self, api_client, alice):
        response = api_client.get(
            f"/users/{alice.id}", headers={"X-User-Id": alice.id, "X-User-Role": "wizard"}
        )
        assert response.status_code == 400

    def test_online_users(self, api_client, alice, bob):
        with api_client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "identity_join", "userId": bob.id})
            ws.receive_json()  # presence_update
            ws.receive_json()  # identity_joined

            response = api_client.get("/users/online", headers=headers_for(alice))
            assert response.json() == {"users": [bob.id], "total": 1}

    def test_own_profile(self, api_client, alice):
        data = api_client.get("/users/me", headers=headers_for(alice)).json()
        assert data["id"] == alice.id
        assert data["address"]["city"] == ""
        assert data["preferences"] == {
            "notifications": True, "emailNotifications": True, "darkMode": False,
        }

    def test_update_profile(self, api_client, hub, alice):
        response = api_client.put(
            "/users/me",
            json={
                "bio": "Support lead",
                "address": {"city": "Lagos", "country": "Nigeria"},
                "preferences": {"darkMode": True},
            },
            headers=headers_for(alice),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Alice"
        assert data["bio"] == "Support lead"
        assert data["address"]["city"] == "Lagos"
        assert data["preferences"]["darkMode"] is True

        stored = hub.store.get_user(alice.id)
        assert stored.address.country == "Nigeria"
        assert stored.preferences.darkMode is True

    def test_update_profile_keeps_role_and_email(self, api_client, hub, alice):
        response = api_client.put(
            "/users/me",
            json={"name": "Alice B.", "role": "admin", "email": "new@example.com"},
            headers=headers_for(alice),
        )
        assert response.status_code == 200
        stored = hub.store.get_user(alice.id)
        assert stored.name == "Alice B."
        assert stored.role == UserRole.CUSTOMER
        assert stored.email == alice.email

    def test_update_profile_rejects_blank_name(self, api_client, alice):
        response = api_client.put("/users/me", json={"name": ""}, headers=headers_for(alice))
        assert response.status_code == 422

    def test_update_profile_without_user_record(self, api_client):
        response = api_client.put(
            "/users/me", json={"bio": "x"}, headers={"X-User-Id": "ghost"}
        )
        assert response.status_code == 404

    def test_search_users(self, api_client, alice, bob, make_user):
        make_user("Bobby")
        response = api_client.get("/users/search/bob", headers=headers_for(alice))
        assert response.status_code == 200
        assert sorted(u["name"] for u in response.json()) == ["Bob", "Bobby"]
        assert set(response.json()[0]) == {"id", "name", "email", "role"}

    def test_search_excludes_the_caller(self, api_client, alice, bob):
        response = api_client.get("/users/search/ALICE", headers=headers_for(alice))
        assert response.json() == []


class TestConversations:

    def test_create_conversation(self, api_client, alice, bob):
        response = api_client.post(
            "/conversations", json={"participants": [bob.id]}, headers=headers_for(alice)
        )
        assert response.status_code == 201
        assert sorted(response.json()["participants"]) == sorted([alice.id, bob.id])

    def test_create_with_only_self(self, api_client, alice):
        response = api_client.post(
            "/conversations", json={"participants": [alice.id]}, headers=headers_for(alice)
        )
        assert response.status_code == 400

    def test_create_with_unknown_user(self, api_client, alice):
        response = api_client.post(
            "/conversations", json={"participants": ["ghost"]}, headers=headers_for(alice)
        )
        assert response.status_code == 404

    def test_list_own_conversations(self, api_client, alice, bob, make_user, conversation):
        carol = make_user("Carol")
        api_client.post("/conversations", json={"participants": [carol.id]}, headers=headers_for(bob))

        alice_view = api_client.get("/conversations", headers=headers_for(alice)).json()
        bob_view = api_client.get("/conversations", headers=headers_for(bob)).json()

        assert [c["id"] for c in alice_view] == [conversation.id]
        assert len(bob_view) == 2


class TestMessages:

    def test_send_and_read_history(self, api_client, alice, bob, conversation):
        for text in ("one", "two", "three"):
            response = api_client.post(
                "/messages",
                json={"conversationId": conversation.id, "text": text},
                headers=headers_for(alice),
            )
            assert response.status_code == 201

        response = api_client.get(f"/messages/{conversation.id}", headers=headers_for(bob))
        assert response.status_code == 200
        data = response.json()
        assert [m["body"] for m in data["messages"]] == ["one", "two", "three"]
        assert data["hasMore"] is False
        assert data["messages"][0]["sender"]["name"] == "Alice"

    def test_history_pagination(self, api_client, hub, alice, conversation):
        for i in range(5):
            api_client.post(
                "/messages",
                json={"conversationId": conversation.id, "text": f"m{i}"},
                headers=headers_for(alice),
            )

        first = api_client.get(
            f"/messages/{conversation.id}", params={"limit": 2}, headers=headers_for(alice)
        ).json()
        assert [m["body"] for m in first["messages"]] == ["m3", "m4"]
        assert first["hasMore"] is True

        rest = api_client.get(
            f"/messages/{conversation.id}",
            params={"limit": 5, "beforeId": first["messages"][0]["id"]},
            headers=headers_for(alice),
        ).json()
        assert [m["body"] for m in rest["messages"]] == ["m0", "m1", "m2"]
        assert rest["hasMore"] is False

    def test_history_keeps_messages_sharing_a_timestamp(self, api_client, hub, alice, conversation):
        stamp = utcnow()
        for i in range(3):
            hub.store.create_message(Message(
                conversationId=conversation.id, senderId=alice.id, body=f"m{i}",
                readBy=[alice.id], createdAt=stamp,
            ))

        bodies, params = [], {"limit": 1}
        for _ in range(10):
            page = api_client.get(
                f"/messages/{conversation.id}", params=params, headers=headers_for(alice)
            ).json()
            bodies = [m["body"] for m in page["messages"]] + bodies
            if not page["hasMore"]:
                break
            params = {"limit": 1, "beforeId": page["messages"][0]["id"]}

        assert bodies == ["m0", "m1", "m2"]

    def test_history_with_unknown_cursor(self, api_client, alice, conversation):
        response = api_client.get(
            f"/messages/{conversation.id}", params={"beforeId": "missing"}, headers=headers_for(alice)
        )
        assert response.status_code == 404

    def test_history_for_outsider(self, api_client, make_user, conversation):
        eve = make_user("Eve")
        response = api_client.get(f"/messages/{conversation.id}", headers=headers_for(eve))
        assert response.status_code == 404

    def test_send_as_outsider(self, api_client, make_user, conversation):
        eve = make_user("Eve")
        response = api_client.post(
            "/messages",
            json={"conversationId": conversation.id, "text": "hi"},
            headers=headers_for(eve),
        )
        assert response.status_code == 403

    def test_send_empty_text(self, api_client, alice, conversation):
        response = api_client.post(
            "/messages",
            json={"conversationId": conversation.id, "text": "   "},
            headers=headers_for(alice),
        )
        assert response.status_code == 400

    def test_mark_read_and_delete(self, api_client, alice, bob, conversation):
        message = api_client.post(
            "/messages",
            json={"conversationId": conversation.id, "text": "bye"},
            headers=headers_for(alice),
        ).json()

        read = api_client.put(f"/messages/{message['id']}/read", headers=headers_for(bob))
        assert read.status_code == 200
        assert read.json()["readBy"] == [alice.id, bob.id]

        forbidden = api_client.delete(f"/messages/{message['id']}", headers=headers_for(bob))
        assert forbidden.status_code == 403

        deleted = api_client.delete(f"/messages/{message['id']}", headers=headers_for(alice))
        assert deleted.status_code == 200
        assert deleted.json()["isDeleted"] is True

        history = api_client.get(f"/messages/{conversation.id}", headers=headers_for(bob)).json()
        assert history["messages"] == []


class TestAdmin:

    def test_non_admin_is_rejected(self, api_client, alice):
        response = api_client.get("/admin/presence", headers=headers_for(alice))
        assert response.status_code == 403

    def test_presence_overview(self, api_client, hub, admin, alice, bob, conversation):
        hub.store.touch_last_seen(bob.id, utcnow() - timedelta(hours=1))
        api_client.post(
            "/messages",
            json={"conversationId": conversation.id, "text": "hello"},
            headers=headers_for(alice),
        )

        data = api_client.get("/admin/presence", headers=headers_for(admin)).json()

        assert data["online"] == 0
        assert data["totalUsers"] == 3
        assert data["activeUsers"] == 2
        assert data["offlineUsers"] == 1
        assert data["totalMessages"] == 1
        assert data["totalConversations"] == 1
        assert data["activityWindowSeconds"] == 300

    def test_list_users_by_status(self, api_client, hub, admin, alice, bob):
        hub.store.touch_last_seen(bob.id, utcnow() - timedelta(hours=1))

        active = api_client.get(
            "/admin/users", params={"status": "active"}, headers=headers_for(admin)
        ).json()
        offline = api_client.get(
            "/admin/users", params={"status": "offline"}, headers=headers_for(admin)
        ).json()
        everyone = api_client.get("/admin/users", headers=headers_for(admin)).json()

        assert {u["id"] for u in active["users"]} == {admin.id, alice.id}
        assert [u["id"] for u in offline["users"]] == [bob.id]
        assert offline["users"][0]["activityStatus"] == "offline"
        assert everyone["total"] == 3

    def test_invalid_status_filter(self, api_client, admin):
        response = api_client.get(
            "/admin/users", params={"status": "sleeping"}, headers=headers_for(admin)
        )
        assert response.status_code == 422

    def test_list_users_by_role_with_pages(self, api_client, admin, alice, make_user):
        agents = [make_user(f"Agent{i}", role=UserRole.AGENT) for i in range(3)]

        first = api_client.get(
            "/admin/users", params={"role": "agent", "limit": 2}, headers=headers_for(admin)
        ).json()
        second = api_client.get(
            "/admin/users", params={"role": "agent", "limit": 2, "page": 2}, headers=headers_for(admin)
        ).json()

        assert first["total"] == 3
        assert first["totalPages"] == 2
        assert first["currentPage"] == 1
        assert len(first["users"]) == 2
        assert second["currentPage"] == 2
        assert len(second["users"]) == 1
        assert {u["id"] for u in first["users"] + second["users"]} == {a.id for a in agents}

    def test_list_users_search(self, api_client, admin, alice, bob):
        data = api_client.get(
            "/admin/users", params={"search": "ALI"}, headers=headers_for(admin)
        ).json()
        assert [u["id"] for u in data["users"]] == [alice.id]
        assert data["total"] == 1

    def test_invalid_role_filter(self, api_client, admin):
        response = api_client.get(
            "/admin/users", params={"role": "wizard"}, headers=headers_for(admin)
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("path", ["/admin/users", "/admin/messages", "/admin/conversations"])
    def test_listings_are_admin_only(self, api_client, alice, path):
        assert api_client.get(path, headers=headers_for(alice)).status_code == 403

    def test_list_all_messages(self, api_client, hub, admin, alice, bob, make_user, conversation):
        for text in ("one", "two", "three"):
            api_client.post(
                "/messages",
                json={"conversationId": conversation.id, "text": text},
                headers=headers_for(alice),
            )
        oops = api_client.post(
            "/messages",
            json={"conversationId": conversation.id, "text": "oops"},
            headers=headers_for(bob),
        ).json()
        api_client.delete(f"/messages/{oops['id']}", headers=headers_for(bob))
        carol = make_user("Carol")
        elsewhere = hub.membership.create_conversation([carol.id], bob.id)
        api_client.post(
            "/messages",
            json={"conversationId": elsewhere.id, "text": "elsewhere"},
            headers=headers_for(carol),
        )

        data = api_client.get(
            "/admin/messages",
            params={"conversationId": conversation.id, "limit": 2},
            headers=headers_for(admin),
        ).json()

        assert [m["body"] for m in data["messages"]] == ["oops", "three"]
        assert data["messages"][0]["isDeleted"] is True
        assert data["messages"][1]["sender"]["name"] == "Alice"
        assert data["total"] == 4
        assert data["totalPages"] == 2

        everything = api_client.get("/admin/messages", headers=headers_for(admin)).json()
        assert everything["total"] == 5
        assert everything["messages"][0]["body"] == "elsewhere"

    def test_list_all_conversations(self, api_client, hub, admin, alice, bob, make_user, conversation):
        carol = make_user("Carol")
        quiet = hub.membership.create_conversation([carol.id], bob.id)
        api_client.post(
            "/messages",
            json={"conversationId": conversation.id, "text": "latest"},
            headers=headers_for(alice),
        )

        data = api_client.get("/admin/conversations", headers=headers_for(admin)).json()

        assert data["total"] == 2
        assert data["currentPage"] == 1
        assert [c["id"] for c in data["conversations"]] == [conversation.id, quiet.id]
        assert data["conversations"][0]["lastMessage"]["body"] == "latest"
        assert data["conversations"][1]["lastMessage"] is None

    def test_deactivated_user_cannot_identify(self, api_client, admin, alice):
        response = api_client.put(
            f"/admin/users/{alice.id}/status", json={"isActive": False}, headers=headers_for(admin)
        )
        assert response.status_code == 200
        assert response.json()["user"]["isActive"] is False

        with api_client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "identity_join", "userId": alice.id})
            assert ws.receive_json()["code"] == "not_authorized"

    def test_update_status_of_missing_user(self, api_client, admin):
        response = api_client.put(
            "/admin/users/ghost/status", json={"isActive": False}, headers=headers_for(admin)
        )
        assert response.status_code == 404

    def test_delete_user_cascades(self, api_client, hub, admin, alice, bob, make_user, conversation):
        carol = make_user("Carol")
        group = hub.membership.create_conversation([bob.id, carol.id], alice.id)
        hi = api_client.post(
            "/messages",
            json={"conversationId": conversation.id, "text": "hi"},
            headers=headers_for(bob),
        ).json()
        api_client.post(
            "/messages",
            json={"conversationId": conversation.id, "text": "hello"},
            headers=headers_for(alice),
        )
        api_client.post(
            "/messages",
            json={"conversationId": group.id, "text": "from bob"},
            headers=headers_for(bob),
        )

        response = api_client.delete(f"/admin/users/{alice.id}", headers=headers_for(admin))

        assert response.status_code == 200
        assert response.json() == {"message": "User deleted successfully"}
        assert hub.store.get_user(alice.id) is None
        assert hub.store.count_messages() == 2
        assert hub.store.find_conversation(group.id, alice.id) is None
        assert sorted(hub.store.get_conversation(group.id).participants) == sorted([bob.id, carol.id])

        # The last-message reference never points at a removed message
        remaining = hub.store.get_conversation(conversation.id)
        assert remaining.participants == [bob.id]
        assert remaining.lastMessageId == hi["id"]
        assert hub.store.get_message(remaining.lastMessageId).body == "hi"

    def test_delete_self_is_rejected(self, api_client, admin):
        response = api_client.delete(f"/admin/users/{admin.id}", headers=headers_for(admin))
        assert response.status_code == 400

    def test_delete_missing_user(self, api_client, admin):
        response = api_client.delete("/admin/users/ghost", headers=headers_for(admin))
        assert response.status_code == 404
