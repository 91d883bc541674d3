"""Tests for HttpPlatform with the requests session mocked out."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from reviewbox_sandbox.errors import ExecutionTimeout, PlatformError, SnapshotInUse
from reviewbox_sandbox.models import Session
from reviewbox_sandbox.remote import HttpPlatform

SESSION = Session(id="sb-1", root="review-tmp-1", region="ord", memory="4GiB", timeout="15m")


def _response(status=200, json_body=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.reason = "Reason"
    resp.text = text
    if json_body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = json_body
    return resp


@pytest.fixture
def http():
    platform = HttpPlatform("https://sandbox.example.com/v1/", token="secret")
    platform._http = MagicMock()
    return platform


class TestTransport:
    def test_requires_url_and_token(self):
        with pytest.raises(ValueError):
            HttpPlatform("", token="x")
        with pytest.raises(ValueError):
            HttpPlatform("https://x", token="")

    def test_bearer_auth_header(self):
        platform = HttpPlatform("https://x", token="secret")
        assert platform._http.headers["Authorization"] == "Bearer secret"

    def test_error_code_is_surfaced(self, http):
        http._http.request.return_value = _response(409, {"code": "VOLUME_EXISTS", "message": "taken"})
        with pytest.raises(PlatformError) as exc:
            http.create_volume("v", "ord", "10GB", "snap")
        assert exc.value.status == 409
        assert exc.value.code == "VOLUME_EXISTS"
        assert "taken" in str(exc.value)

    def test_snapshot_in_use_is_typed(self, http):
        http._http.request.return_value = _response(409, {"code": "SNAPSHOT_IN_USE", "message": "dependents"})
        with pytest.raises(SnapshotInUse):
            http.delete_snapshot("snap")

    def test_transport_failure_is_platform_error(self, http):
        http._http.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(PlatformError, match="refused"):
            http.list_volumes()


class TestResources:
    def test_create_volume_from_snapshot(self, http):
        http._http.request.return_value = _response(
            201, {"slug": "review-tmp-1", "region": "ord", "capacity": "10GB", "from": "snap"}
        )
        volume = http.create_volume("review-tmp-1", "ord", "10GB", "snap")

        method, url = http._http.request.call_args.args
        assert (method, url) == ("POST", "https://sandbox.example.com/v1/volumes")
        assert http._http.request.call_args.kwargs["json"]["from"] == "snap"
        assert volume.parent == "snap"

    def test_get_missing_snapshot_is_none(self, http):
        http._http.request.return_value = _response(404, {"message": "not found"})
        assert http.get_snapshot("snap") is None

    def test_list_volumes_accepts_items_envelope(self, http):
        http._http.request.return_value = _response(200, {"items": [{"slug": "a"}, {"slug": "b"}]})
        assert [v.slug for v in http.list_volumes(search="review-tmp")] == ["a", "b"]
        assert http._http.request.call_args.kwargs["params"] == {"search": "review-tmp"}

    def test_non_bootable_flag(self, http):
        http._http.request.return_value = _response(200, {"slug": "review-base", "isBootable": False})
        assert http.get_volume("review-base").bootable is False

    def test_list_sessions_by_label(self, http):
        http._http.request.return_value = _response(200, [{"id": "sb-9", "labels": {"job": "refresh-image"}}])
        sessions = http.list_sessions(labels={"job": "refresh-image"})
        assert [s.id for s in sessions] == ["sb-9"]
        assert http._http.request.call_args.kwargs["params"] == {"label.job": "refresh-image"}

    def test_kill_missing_session_is_ignored(self, http):
        http._http.request.return_value = _response(404, {"message": "gone"})
        http.kill_session("sb-1")


class TestExecute:
    def test_returns_exit_code_and_output(self, http):
        http._http.request.return_value = _response(200, {"exit_code": 2, "stdout": "a", "stderr": "b"})
        result = http.execute(SESSION, "false", timeout=30)
        assert result.exit_code == 2
        assert result.output == "ab"
        payload = http._http.request.call_args.kwargs["json"]
        assert payload == {"command": ["bash", "-c", "false"], "timeout": 30}

    def test_timed_out_flag(self, http):
        http._http.request.return_value = _response(200, {"timed_out": True, "exit_code": -1})
        with pytest.raises(ExecutionTimeout):
            http.execute(SESSION, "sleep 999", timeout=1)

    def test_http_timeout(self, http):
        http._http.request.side_effect = requests.Timeout("read timed out")
        with pytest.raises(ExecutionTimeout):
            http.execute(SESSION, "sleep 999", timeout=1)

    def test_vanished_session(self, http):
        http._http.request.return_value = _response(410, {"message": "terminated"})
        with pytest.raises(ExecutionTimeout, match="no longer responds"):
            http.execute(SESSION, "ls", timeout=1)

    def test_read_missing_file(self, http):
        http._http.request.return_value = _response(404, {"message": "no such file"})
        with pytest.raises(FileNotFoundError):
            http.read_file(SESSION, "/data/repo/nope")
