"""
WebSocket / HTTP API のテスト

FastAPI の TestClient でアプリを起動し、実ファイルをポーリングで追跡させる。
"""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from livetail.config import Config
from livetail.follower import Follower
from livetail.gate import DEFAULT_COOKIE_NAME
from livetail.hub import FanoutHub, HubRegistry
from livetail.main import create_app
from livetail.source import SourceSet


class StaticFollower(Follower):
    def __init__(self, source, data):
        super().__init__(source)
        self._data = data

    async def open(self):
        pass

    async def chunks(self):
        yield self._data


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / "app.log"
    path.write_text("one\ntwo\n", encoding="utf-8")
    return path


def make_config(log_file, **overrides):
    values = dict(
        sources=[str(log_file)],
        follow_command="",
        seed_lines=0,
        history_lines=10,
        poll_interval_seconds=0.02,
    )
    values.update(overrides)
    return Config(**values)


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.02)


def test_health(log_file):
    config = make_config(log_file)
    app = create_app(config)
    assert app.state.config is config
    with TestClient(app) as client:
        r = client.get("/api/health")
        assert r.status_code == 200
        assert r.json() == {"status": "healthy"}


def test_session_without_authorization(log_file):
    app = create_app(make_config(log_file))
    with TestClient(app) as client:
        r = client.get("/api/session")
        assert r.status_code == 200
        data = r.json()
        assert data["namespace"] == app.state.primary_hub.fingerprint
        assert data["files"] == str(log_file)
        assert data["authorized"] is False
        assert DEFAULT_COOKIE_NAME not in r.cookies


def test_stream_replays_history_then_live(log_file):
    app = create_app(make_config(log_file))
    with TestClient(app) as client:
        hub = app.state.primary_hub
        wait_until(lambda: len(hub.history) == 2)
        with client.websocket_connect(f"/ws/{hub.fingerprint}") as ws:
            assert ws.receive_json() == {"event": "options:lines", "data": 2000}
            assert ws.receive_json() == {"event": "line", "data": "one"}
            assert ws.receive_json() == {"event": "line", "data": "two"}

            with log_file.open("a", encoding="utf-8") as f:
                f.write("three\n")
            assert ws.receive_json() == {"event": "line", "data": "three"}

        wait_until(lambda: hub.observer_count == 0)


def test_reconnect_replays_current_history(log_file):
    app = create_app(make_config(log_file, history_lines=2))
    with TestClient(app) as client:
        hub = app.state.primary_hub
        wait_until(lambda: len(hub.history) == 2)
        with log_file.open("a", encoding="utf-8") as f:
            f.write("three\n")
        wait_until(lambda: hub.history.snapshot() == ["two", "three"])
        with client.websocket_connect(f"/ws/{hub.fingerprint}") as ws:
            ws.receive_json()
            assert ws.receive_json()["data"] == "two"
            assert ws.receive_json()["data"] == "three"


def test_ui_options_sent_on_attach(log_file):
    config = make_config(log_file, ui_lines=50, ui_hide_topbar=True, ui_indent=False, ui_highlight=True)
    app = create_app(config)
    with TestClient(app) as client:
        hub = app.state.primary_hub
        with client.websocket_connect(f"/ws/{hub.fingerprint}") as ws:
            assert ws.receive_json() == {"event": "options:lines", "data": 50}
            assert ws.receive_json() == {"event": "options:hide-topbar", "data": None}
            assert ws.receive_json() == {"event": "options:no-indent", "data": None}
            highlight = ws.receive_json()
            assert highlight["event"] == "options:highlightConfig"
            assert "words" in highlight["data"]


def test_detached_observer_connection_is_closed(log_file):
    app = create_app(make_config(log_file, history_lines=0, max_pending_lines=2))
    received = []
    with TestClient(app) as client:
        hub = app.state.primary_hub
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws/{hub.fingerprint}") as ws:
                assert ws.receive_json()["event"] == "options:lines"
                wait_until(lambda: hub.observer_count == 1)
                with log_file.open("a", encoding="utf-8") as f:
                    f.write("".join(f"l{i}\n" for i in range(50)))
                while True:
                    received.append(ws.receive_json())
        assert exc_info.value.code == 1000
        assert hub.observer_count == 0
    assert all(message["event"] == "line" for message in received)
    assert {"event": "line", "data": "l49"} not in received


def test_binary_frame_from_client_is_ignored(log_file):
    app = create_app(make_config(log_file))
    with TestClient(app) as client:
        hub = app.state.primary_hub
        wait_until(lambda: len(hub.history) == 2)
        with client.websocket_connect(f"/ws/{hub.fingerprint}") as ws:
            ws.receive_json()
            assert ws.receive_json()["data"] == "one"
            assert ws.receive_json()["data"] == "two"
            ws.send_bytes(b"\x00\x01")
            ws.send_text("ping")
            with log_file.open("a", encoding="utf-8") as f:
                f.write("three\n")
            assert ws.receive_json() == {"event": "line", "data": "three"}
            assert hub.observer_count == 1
        wait_until(lambda: hub.observer_count == 0)


def test_unknown_namespace_rejected(log_file):
    app = create_app(make_config(log_file))
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/not-a-namespace"):
                pass
        assert exc_info.value.code == 1008


def test_url_path_prefix(log_file):
    app = create_app(make_config(log_file, url_path="/logs/"))
    with TestClient(app) as client:
        assert client.get("/logs/api/health").status_code == 200
        hub = app.state.primary_hub
        with client.websocket_connect(f"/logs/ws/{hub.fingerprint}") as ws:
            assert ws.receive_json()["event"] == "options:lines"


def test_authorization_required(log_file):
    app = create_app(make_config(log_file, user="admin", password="secret"))
    with TestClient(app) as client:
        hub = app.state.primary_hub
        wait_until(lambda: len(hub.history) == 2)

        assert client.get("/api/session").status_code == 401
        assert client.get("/api/session", auth=("admin", "wrong")).status_code == 401

        # Cookie無し / 改ざんCookie はハブに到達しない
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws/{hub.fingerprint}"):
                pass
        assert exc_info.value.code == 1008
        forged = {"cookie": f"{DEFAULT_COOKIE_NAME}=s:session.forgedsignature"}
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/ws/{hub.fingerprint}", headers=forged):
                pass
        assert hub.observer_count == 0

        r = client.get("/api/session", auth=("admin", "secret"))
        assert r.status_code == 200
        assert r.json()["authorized"] is True
        token = r.cookies[DEFAULT_COOKIE_NAME]
        headers = {"cookie": f"{DEFAULT_COOKIE_NAME}={token}"}
        with client.websocket_connect(f"/ws/{hub.fingerprint}", headers=headers) as ws:
            assert ws.receive_json()["event"] == "options:lines"
            assert ws.receive_json() == {"event": "line", "data": "one"}


def test_source_sets_do_not_cross_deliver(log_file):
    other = FanoutHub(
        SourceSet.from_identifiers(["other.log"]),
        history_capacity=10,
        follower_factory=lambda source: StaticFollower(source, b"from-other\n"),
    )
    registry = HubRegistry()
    registry.register(other)
    app = create_app(make_config(log_file), registry=registry)
    with TestClient(app) as client:
        hub = app.state.primary_hub
        wait_until(lambda: len(hub.history) == 2 and len(other.history) == 1)
        with client.websocket_connect(f"/ws/{hub.fingerprint}") as ws_a, client.websocket_connect(
            f"/ws/{other.fingerprint}"
        ) as ws_b:
            ws_a.receive_json()
            ws_b.receive_json()
            assert ws_b.receive_json() == {"event": "line", "data": "from-other"}
            assert ws_a.receive_json() == {"event": "line", "data": "one"}
            assert ws_a.receive_json() == {"event": "line", "data": "two"}
        assert "from-other" not in hub.history.snapshot()
        assert other.history.snapshot() == ["from-other"]
