"""
HTTP-level tests for the FastAPI application.

The app runs with an in-memory store and fake Trello/Discord collaborators;
TestClient drives the lifespan, so startup and shutdown run for real.
"""

import json

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from boardrelay.app.api.webhooks.trello import SIGNATURE_HEADER, compute_signature, verify_signature
from boardrelay.app.dependencies import build_services
from boardrelay.app.main import create_app
from boardrelay.config.schemas import AppSettings
from boardrelay.store.memory import InMemoryConfigStore

from fakes import (
    BOARD,
    BOARD_B,
    CHANNEL,
    CHANNEL_B,
    GUILD,
    LIST,
    FakeMessenger,
    FakeTrello,
)

SECRET = "s3cret"


def make_settings(**overrides) -> AppSettings:
    values = {
        "webhook_secret": SecretStr(SECRET),
        "webhook_url": "https://relay.example.com/",
    }
    values.update(overrides)
    return AppSettings(**values)


class App:
    """Bundle of a running TestClient and the fakes behind it."""

    def __init__(self, settings: AppSettings):
        self.store = InMemoryConfigStore()
        self.trello = FakeTrello()
        self.messenger = FakeMessenger()
        self.services = build_services(
            settings, store=self.store, trello=self.trello, messenger=self.messenger
        )
        self.client = TestClient(create_app(services=self.services))

    def signed_post(self, payload, secret: str = SECRET):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        return self.client.post(
            "/webhook/trello",
            content=body,
            headers={SIGNATURE_HEADER: compute_signature(body, secret), "Content-Type": "application/json"},
        )

    def bind_channel(self, guild_id=GUILD, channel_id=CHANNEL, board_id=BOARD, list_id=LIST):
        self.trello.boards.setdefault(board_id, "Roadmap")
        self.trello.lists.setdefault(list_id, "To Do")
        return self.client.put(
            f"/api/v1/guilds/{guild_id}/channels/{channel_id}/mapping",
            json={"board_id": board_id, "list_id": list_id},
            headers={"X-Actor-Id": "42", "X-Actor-Tag": "ada#0001"},
        )


@pytest.fixture
def relay():
    app = App(make_settings())
    with app.client:
        yield app


def card_created(board_id=BOARD):
    return {
        "action": {
            "type": "createCard",
            "data": {"board": {"id": board_id}, "card": {"name": "Fix login"}, "list": {"name": "To Do"}},
            "memberCreator": {"fullName": "Ada"},
        },
        "model": {"id": board_id},
    }


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    def test_health(self, relay):
        response = relay.client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "OK"
        assert "timestamp" in response.json()

    def test_root(self, relay):
        assert relay.client.get("/").json()["service"] == "boardrelay"

    def test_startup_recorded_and_shutdown_flushes(self):
        app = App(make_settings())
        with app.client:
            pass

        actions = {e.action for e in app.store.audit_events}
        assert {"system_startup", "system_shutdown"} <= actions


# =============================================================================
# Inbound Trello webhooks
# =============================================================================


class TestTrelloWebhook:
    def test_signature_helpers(self):
        body = b'{"a": 1}'
        signature = compute_signature(body, SECRET)

        assert verify_signature(body, signature, SECRET) is True
        assert verify_signature(body + b" ", signature, SECRET) is False
        assert verify_signature(body, None, SECRET) is False

    def test_head_probe(self, relay):
        assert relay.client.head("/webhook/trello").status_code == 200

    def test_event_is_delivered_to_mapped_channel(self, relay):
        assert relay.bind_channel().status_code == 200

        response = relay.signed_post(card_created())

        assert response.status_code == 200
        assert response.text == "OK"
        [(channel_id, embed)] = relay.messenger.sent
        assert channel_id == CHANNEL
        assert embed["title"] == "🆕 New Card Created"

    def test_missing_signature_is_rejected(self, relay):
        relay.bind_channel()

        response = relay.client.post("/webhook/trello", json=card_created())

        assert response.status_code == 401
        assert relay.messenger.sent == []
        events = relay.client.get("/api/v1/audit").json()["events"]
        security = [e for e in events if e["category"] == "security"]
        assert security[0]["action"] == "security_webhook_signature_invalid"
        assert security[0]["severity"] == 3

    def test_wrong_secret_is_rejected(self, relay):
        assert relay.signed_post(card_created(), secret="other").status_code == 401

    def test_unsigned_accepted_without_secret(self):
        app = App(make_settings(webhook_secret=None))
        with app.client:
            response = app.client.post("/webhook/trello", json=card_created())
        assert response.status_code == 200

    def test_invalid_json(self, relay):
        assert relay.signed_post(b"{not json").status_code == 400

    def test_missing_action_type(self, relay):
        assert relay.signed_post({"action": {}, "model": {"id": BOARD}}).status_code == 400

    def test_missing_board(self, relay):
        assert relay.signed_post({"action": {"type": "createCard"}}).status_code == 400

    @pytest.mark.parametrize(
        "payload",
        [
            {"action": {"type": "createCard", "data": "oops"}, "model": {"id": BOARD}},
            {"action": {"type": "createCard", "data": {"board": {"id": BOARD}}, "memberCreator": "x"}},
            {"action": {"type": "createCard", "data": {"board": "b"}}},
            {"action": {"type": "createCard", "data": {"board": {"id": 42}}}},
            {"action": {"type": ["createCard"]}, "model": {"id": BOARD}},
            {"action": {"type": "createCard"}, "model": "b"},
        ],
    )
    def test_malformed_payload_is_rejected(self, relay, payload):
        relay.bind_channel()

        assert relay.signed_post(payload).status_code == 400
        assert relay.messenger.sent == []

    def test_partial_delivery_failure_still_returns_ok(self, relay):
        relay.bind_channel(channel_id=CHANNEL)
        relay.bind_channel(channel_id=CHANNEL_B)
        relay.messenger.failing.add(CHANNEL)

        response = relay.signed_post(card_created())

        assert response.status_code == 200
        assert relay.messenger.channels == [CHANNEL_B]

    def test_unwatched_board_delivers_nothing(self, relay):
        relay.bind_channel()

        assert relay.signed_post(card_created(BOARD_B)).status_code == 200
        assert relay.messenger.sent == []


# =============================================================================
# Admin API: guild configuration
# =============================================================================


class TestGuildConfigApi:
    def test_bind_registers_webhook_and_audits(self, relay):
        response = relay.bind_channel()

        assert response.status_code == 200
        body = response.json()
        assert body["mapping"]["board_id"] == BOARD
        assert body["webhook"]["existed"] is False
        assert list(relay.trello.webhooks.values()) == [BOARD]

        events = relay.client.get("/api/v1/audit", params={"guild_id": GUILD}).json()["events"]
        [event] = events
        assert event["action"] == "config_channel_mapping_add"
        assert event["user_id"] == "42"
        assert event["user_tag"] == "ada#0001"

    def test_resolve_channel_config(self, relay):
        relay.bind_channel()

        response = relay.client.get(f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/config")

        assert response.status_code == 200
        assert response.json()["provenance"] == "explicit"

    def test_unconfigured_channel_is_404(self, relay):
        response = relay.client.get(f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/config")

        assert response.status_code == 404
        assert response.json()["context"] == {"guild_id": GUILD, "channel_id": CHANNEL}

    def test_environment_default(self):
        app = App(make_settings(trello_board_id=BOARD_B, trello_list_id=LIST))
        with app.client:
            response = app.client.get(f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/config")
        assert response.json() == {
            "board_id": BOARD_B,
            "list_id": LIST,
            "provenance": "environmentDefault",
            "degraded": False,
        }

    def test_malformed_board_id_is_422(self, relay):
        response = relay.bind_channel(board_id="not-a-board")

        assert response.status_code == 422
        assert response.json()["context"]["field"] == "board_id"

    def test_inaccessible_board_is_422(self, relay):
        response = relay.client.put(
            f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/mapping",
            json={"board_id": BOARD_B, "list_id": LIST},
        )

        assert response.status_code == 422
        assert relay.trello.webhooks == {}

    def test_store_outage_is_503(self, relay):
        relay.store.available = False

        response = relay.client.get(f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/config")

        assert response.status_code == 503

    def test_default_then_summary_then_reset(self, relay):
        relay.trello.boards[BOARD] = "Roadmap"
        relay.trello.lists[LIST] = "To Do"
        relay.bind_channel()

        response = relay.client.put(f"/api/v1/guilds/{GUILD}/default", json={"board_id": BOARD, "list_id": LIST})
        assert response.status_code == 200
        assert response.json()["webhook"]["existed"] is True

        summary = relay.client.get(f"/api/v1/guilds/{GUILD}/config").json()
        assert summary["is_configured"] is True
        assert len(summary["mappings"]) == 1

        reset = relay.client.post(f"/api/v1/guilds/{GUILD}/reset").json()
        assert reset["mappings_removed"] == 1
        assert reset["default_removed"] is True
        assert relay.client.get(f"/api/v1/guilds/{GUILD}/config").json()["is_configured"] is False

    def test_remove_mapping(self, relay):
        relay.bind_channel()

        first = relay.client.delete(f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/mapping")
        second = relay.client.delete(f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/mapping")

        assert first.json() == {"removed": True}
        assert second.json() == {"removed": False}

    def test_remove_default(self, relay):
        assert relay.client.delete(f"/api/v1/guilds/{GUILD}/default").json() == {"removed": False}

    def test_create_card(self, relay):
        relay.bind_channel()

        response = relay.client.post(
            f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/cards",
            json={"name": "Fix login", "description": "steps"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["provenance"] == "explicit"
        assert body["card"]["name"] == "Fix login"
        assert relay.trello.cards[0].list_id == LIST

    def test_create_card_unconfigured_is_404(self, relay):
        response = relay.client.post(
            f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/cards", json={"name": "Fix login"}
        )

        assert response.status_code == 404
        assert relay.trello.cards == []


# =============================================================================
# Admin API: webhooks and introspection
# =============================================================================


class TestWebhookAdminApi:
    def test_list_and_unregister(self, relay):
        relay.bind_channel()

        registrations = relay.client.get("/api/v1/webhooks").json()["registrations"]
        assert [r["board_id"] for r in registrations] == [BOARD]

        assert relay.client.delete(f"/api/v1/webhooks/{BOARD}").json() == {"removed": True}
        assert relay.trello.webhooks == {}

    def test_auto_register_and_health(self, relay):
        relay.bind_channel()
        relay.trello.webhooks.clear()
        relay.client.post("/api/v1/webhooks/cleanup")

        result = relay.client.post("/api/v1/webhooks/auto-register").json()
        assert (result["total"], result["successful"]) == (1, 1)

        health = relay.client.get("/api/v1/webhooks/health").json()
        assert health == {"total_registrations": 1, "active_registrations": 1, "external_webhooks": 1}

    def test_auto_register_needs_callback_url(self):
        app = App(make_settings(webhook_url=None))
        with app.client:
            assert app.client.post("/api/v1/webhooks/auto-register").status_code == 400

    def test_trello_failure_is_502(self, relay):
        relay.bind_channel()
        relay.trello.fail_list = True

        assert relay.client.post("/api/v1/webhooks/cleanup").status_code == 502


class TestIntrospectionApi:
    def test_cache_health(self, relay):
        body = relay.client.get("/api/v1/cache/health").json()

        assert body["healthy"] is True
        assert body["error"] is None

    def test_metrics_summary(self, relay):
        relay.bind_channel()
        relay.client.post(f"/api/v1/guilds/{GUILD}/channels/{CHANNEL}/cards", json={"name": "x"})

        body = relay.client.get("/api/v1/metrics/summary").json()

        assert body["commands"]["total_commands"] == 1
        assert "hit_rate" in body["cache"]
        assert body["audit"]["state"] in ("empty", "accumulating", "flushing")


class TestAdminToken:
    def test_token_required_when_configured(self):
        app = App(make_settings(admin_token=SecretStr("letmein")))
        with app.client:
            denied = app.client.get(f"/api/v1/guilds/{GUILD}/config")
            allowed = app.client.get(f"/api/v1/guilds/{GUILD}/config", headers={"X-Admin-Token": "letmein"})
            webhook = app.client.head("/webhook/trello")

        assert denied.status_code == 401
        assert allowed.status_code == 200
        assert webhook.status_code == 200
