"""
Tests for the kestrel-console command line.

Each test drives main() end to end against the FakeBackend. The session
token persists in KESTREL_STATE_DIR between invocations, exactly as it
would between two shell commands.
"""

import functools

import httpx
import pytest

import kestrel_console.__main__ as cli
from kestrel_console.app import ConsoleApp

LOGIN = {"token": "tok-123", "user": {"username": "ops", "is_admin": True}}


@pytest.fixture
def cli_backend(backend, monkeypatch, tmp_path):
    monkeypatch.setenv("KESTREL_STATE_DIR", str(tmp_path / "cli-state"))
    monkeypatch.setenv("KESTREL_API_URL", "http://kestrel.test")
    monkeypatch.setattr(
        cli,
        "ConsoleApp",
        functools.partial(ConsoleApp, http_transport=httpx.MockTransport(backend)),
    )
    return backend


@pytest.fixture
def logged_in(cli_backend):
    cli_backend.on("POST", "/api/auth/login", json=LOGIN)
    cli_backend.on("GET", "/api/auth/verify", json={"username": "ops", "is_admin": True})
    assert cli.main(["login", "-u", "ops", "-p", "x"]) == 0
    return cli_backend


# ===================================================================
# Session commands
# ===================================================================

class TestSessionCommands:
    def test_login(self, cli_backend, capsys):
        cli_backend.on("POST", "/api/auth/login", json=LOGIN)
        assert cli.main(["login", "-u", "ops", "-p", "x"]) == 0
        assert "Signed in as ops (admin)" in capsys.readouterr().out

    def test_login_rejected(self, cli_backend, capsys):
        cli_backend.on("POST", "/api/auth/login", status=401, json={"error": "Invalid credentials"})
        assert cli.main(["login", "-u", "ops", "-p", "bad"]) == 1
        assert "Login failed: Invalid credentials" in capsys.readouterr().err

    def test_session_survives_between_runs(self, logged_in, capsys):
        capsys.readouterr()
        assert cli.main(["whoami"]) == 0
        assert capsys.readouterr().out.strip() == "ops (admin)"
        verify = logged_in.calls("GET", "/api/auth/verify")[0]
        assert verify.headers["Authorization"] == "Bearer tok-123"

    def test_logout(self, logged_in, capsys):
        assert cli.main(["logout"]) == 0
        capsys.readouterr()
        assert cli.main(["whoami"]) == 1
        assert "Not signed in" in capsys.readouterr().out

    def test_resource_command_requires_login(self, cli_backend, capsys):
        assert cli.main(["feeds", "list"]) == 1
        assert "Not signed in" in capsys.readouterr().err
        assert cli_backend.calls("GET", "/api/feeds") == []

    def test_expired_stored_session(self, logged_in, capsys):
        logged_in.on("GET", "/api/auth/verify", status=401, json={"error": "token expired"})
        assert cli.main(["feeds", "list"]) == 1
        assert "Not signed in" in capsys.readouterr().err


# ===================================================================
# Resource commands
# ===================================================================

class TestResourceCommands:
    def test_feeds_list(self, logged_in, capsys):
        logged_in.on("GET", "/api/feeds", json={"feeds": [
            {"name": "malware-domains", "count": 42, "access_level": "free"},
        ]})
        capsys.readouterr()
        assert cli.main(["feeds", "list"]) == 0
        out = capsys.readouterr().out
        assert "malware-domains" in out
        assert "/feeds/malware-domains" in out

    def test_feeds_list_failure_exit_code(self, logged_in, capsys):
        logged_in.on("GET", "/api/feeds", status=500, json={"error": "db down"})
        assert cli.main(["feeds", "list"]) == 1
        assert "Failed to fetch feeds: db down" in capsys.readouterr().err

    def test_set_access(self, logged_in, capsys):
        logged_in.on("PUT", "/api/feeds/f1/permissions", json={"success": True})
        logged_in.on("GET", "/api/feeds", json={"feeds": [
            {"name": "f1", "count": 1, "access_level": "private"},
        ]})
        capsys.readouterr()
        assert cli.main(["feeds", "set-access", "f1", "private"]) == 0
        assert "f1: private" in capsys.readouterr().out

    def test_iocs_add(self, logged_in):
        logged_in.on("POST", "/api/ioc", json={"success": True})
        logged_in.on("GET", "/api/iocs", json={"iocs": []})
        assert cli.main([
            "iocs", "add", "--type", "ip", "--value", "10.0.0.1", "--feed", "f1",
        ]) == 0
        body = logged_in.body(logged_in.calls("POST", "/api/ioc")[0])
        assert body["ip"] == "10.0.0.1"
        assert body["feed"] == "f1"

    def test_iocs_delete_with_yes(self, logged_in):
        logged_in.on("GET", "/api/iocs", json={"iocs": [
            {"value": "evil.test", "type": "domain", "feed": "f1"},
        ]})
        logged_in.on("DELETE", "/api/ioc/evil.test", json={"success": True})
        assert cli.main(["--yes", "iocs", "delete", "evil.test"]) == 0
        assert logged_in.calls("DELETE")[0].url.params["feed"] == "f1"

    def test_iocs_delete_ambiguous(self, logged_in, capsys):
        logged_in.on("GET", "/api/iocs", json={"iocs": [
            {"value": "evil.test", "type": "domain", "feed": "f1"},
            {"value": "evil.test", "type": "domain", "feed": "f2"},
        ]})
        assert cli.main(["--yes", "iocs", "delete", "evil.test"]) == 1
        assert "pass --feed" in capsys.readouterr().err
        assert logged_in.calls("DELETE") == []

    def test_keys_create_prints_secret_once(self, logged_in, capsys):
        secret = "kst_0123456789abcdefghijKLMNOP"
        record = {"id": "k1", "name": "SIEM", "key": secret, "role": "reader"}
        logged_in.on("POST", "/api/keys", json={"key": record})
        logged_in.on("GET", "/api/keys", json={"keys": [record]})
        capsys.readouterr()

        assert cli.main(["keys", "create", "SIEM"]) == 0
        assert secret in capsys.readouterr().out

        assert cli.main(["keys", "list"]) == 0
        out = capsys.readouterr().out
        assert secret not in out
        assert secret[:20] + "..." in out

    def test_stats(self, logged_in, capsys):
        logged_in.on("GET", "/api/iocs", json={"iocs": []})
        logged_in.on("GET", "/api/feeds", json={"feeds": [{"name": "f1", "count": 0}]})
        logged_in.on("GET", "/api/keys", json={"keys": []})
        capsys.readouterr()
        assert cli.main(["stats"]) == 0
        assert "Active feeds: 1" in capsys.readouterr().out
