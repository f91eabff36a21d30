"""Shared pytest fixtures: in-memory Hetzner API, SSH transport and shell sessions."""

import itertools

import pytest

import hetzbox.provisioning.session as session_module
from hetzbox.config import ProvisionConfig
from hetzbox.errors import NotFoundError, SessionError


class FakeHetzner:
    """In-memory stand-in for HetznerAPI.

    Records every call as ``(method, arg)``. ``override(name, value)`` makes
    a method return *value* (a body dict), raise it (an exception instance)
    or call it (a callable taking the argument). New servers report
    ``initializing`` for ``boot_polls`` get_server calls, then ``running``.
    """

    def __init__(self, boot_polls=1):
        self.calls = []
        self.servers = {}
        self.ssh_keys = {}
        self.overrides = {}
        self.boot_polls = boot_polls
        self._polls = {}
        self._ids = itertools.count(1000)

    def override(self, name, value):
        self.overrides[name] = value

    def call_names(self):
        return [name for name, _ in self.calls]

    def calls_to(self, name):
        return [arg for call, arg in self.calls if call == name]

    def _dispatch(self, name, arg):
        self.calls.append((name, arg))
        if name not in self.overrides:
            return False, None
        value = self.overrides[name]
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return True, value(arg)
        return True, value

    # ── Servers ───────────────────────────────────────────────────

    async def create_server(self, params):
        hit, value = self._dispatch("create_server", params)
        if hit:
            return value
        server_id = next(self._ids)
        server = {
            "id": server_id,
            "name": params.get("name", "test-server"),
            "status": "initializing",
            "public_net": {"ipv4": {"ip": f"10.0.0.{server_id % 256}"}},
            "server_type": {"name": params.get("server_type", "cx22")},
            "datacenter": {"location": {"name": params.get("location", "fsn1")}},
            "labels": params.get("labels", {}),
        }
        self.servers[server_id] = server
        self._polls[server_id] = 0
        return {"server": dict(server), "action": {"id": next(self._ids), "status": "running"}}

    async def get_server(self, server_id):
        hit, value = self._dispatch("get_server", server_id)
        if hit:
            return value
        server = self.servers.get(server_id)
        if server is None:
            raise NotFoundError(404, {"error": {"code": "not_found"}})
        self._polls[server_id] = self._polls.get(server_id, 0) + 1
        if self._polls[server_id] > self.boot_polls:
            server["status"] = "running"
        return {"server": dict(server)}

    async def delete_server(self, server_id):
        hit, value = self._dispatch("delete_server", server_id)
        if hit:
            return value
        if self.servers.pop(server_id, None) is None:
            raise NotFoundError(404, {"error": {"code": "not_found"}})
        return {"action": {"id": next(self._ids), "status": "running"}}

    async def list_servers(self, params=None):
        hit, value = self._dispatch("list_servers", params)
        if hit:
            return value
        servers = list(self.servers.values())
        selector = (params or {}).get("label_selector")
        if selector:
            key, _, expected = selector.partition("=")
            servers = [s for s in servers if s["labels"].get(key) == expected]
        return {"servers": servers}

    # ── SSH keys ──────────────────────────────────────────────────

    async def create_ssh_key(self, params):
        hit, value = self._dispatch("create_ssh_key", params)
        if hit:
            return value
        key_id = next(self._ids)
        key = {"id": key_id, "name": params["name"], "public_key": params["public_key"]}
        self.ssh_keys[key_id] = key
        return {"ssh_key": dict(key)}

    async def get_ssh_key(self, key_id):
        hit, value = self._dispatch("get_ssh_key", key_id)
        if hit:
            return value
        if key_id not in self.ssh_keys:
            raise NotFoundError(404, {"error": {"code": "not_found"}})
        return {"ssh_key": dict(self.ssh_keys[key_id])}

    async def delete_ssh_key(self, key_id):
        hit, value = self._dispatch("delete_ssh_key", key_id)
        if hit:
            return value
        if self.ssh_keys.pop(key_id, None) is None:
            raise NotFoundError(404, {"error": {"code": "not_found"}})
        return {}

    async def list_ssh_keys(self, params=None):
        hit, value = self._dispatch("list_ssh_keys", params)
        if hit:
            return value
        keys = list(self.ssh_keys.values())
        name = (params or {}).get("name")
        if name:
            keys = [k for k in keys if k["name"] == name]
        return {"ssh_keys": keys}

    async def get_action(self, action_id):
        self._dispatch("get_action", action_id)
        return {"action": {"id": action_id, "status": "success"}}


class FakeTransport:
    """SSH transport whose connects fail ``failures`` times, then succeed."""

    def __init__(self, failures=0, always_fail=False):
        self.failures = failures
        self.always_fail = always_fail
        self.connects = []
        self.closed = []

    async def connect(self, host, port, username, private_key, timeout):
        self.connects.append((host, port, username))
        if self.always_fail or len(self.connects) <= self.failures:
            raise ConnectionRefusedError(f"{host}:{port} refused")
        conn = object()
        return conn

    async def close(self, conn):
        self.closed.append(conn)


class FakeSessions:
    """Shell session manager that records commands instead of running them."""

    def __init__(self, outputs=None, fail_commands=(), fail_stop=False):
        self.started = []
        self.commands = []
        self.stopped = []
        self.open = set()
        self.outputs = outputs or {}
        self.fail_commands = set(fail_commands)
        self.fail_stop = fail_stop
        self._ids = itertools.count(1)

    async def start_session(self, workspace_id, host, port, username, private_key, connect_timeout=30):
        session_id = f"sess-fake-{next(self._ids)}"
        self.started.append({"session_id": session_id, "workspace_id": workspace_id, "host": host, "port": port, "username": username})
        self.open.add(session_id)
        return session_id

    async def run(self, session_id, command, timeout=60):
        self.commands.append((session_id, command))
        if command in self.fail_commands:
            raise SessionError(f"Command failed (2): {command}", exit_status=2)
        return self.outputs.get(command, "")

    def __contains__(self, session_id):
        return session_id in self.open

    async def stop(self, session_id):
        self.stopped.append(session_id)
        self.open.discard(session_id)
        if self.fail_stop:
            raise SessionError(f"Connection to session '{session_id}' already reset")


@pytest.fixture
def fake_api():
    return FakeHetzner()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_sessions():
    return FakeSessions()


@pytest.fixture
def base_config():
    """Resolved config with fast polling for tests."""
    return ProvisionConfig(
        api_token="test-token-hc",
        server_type="cx22",
        image="ubuntu-24.04",
        location="fsn1",
        server_poll_interval=0.01,
        ssh_poll_interval=0.01,
        server_wait_timeout=5,
        ssh_wait_timeout=5,
    )


@pytest.fixture
def make_api():
    """Factory for FakeHetzner with non-default options."""
    return FakeHetzner


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def make_sessions():
    return FakeSessions


@pytest.fixture(autouse=True)
def _fresh_default_sessions(monkeypatch):
    """Each test starts with an empty process-wide session registry."""
    monkeypatch.setattr(session_module, "_default_sessions", None)
