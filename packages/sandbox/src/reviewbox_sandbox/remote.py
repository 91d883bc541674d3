"""HttpPlatform: sandbox provider reached over its REST API.

The provider exposes volumes, snapshots and sandboxes as JSON resources
behind a bearer token. Volumes created ``from`` a snapshot are copy-on-write
on the provider side, so forking a multi-gigabyte base image is a metadata
operation rather than a copy.

Error bodies look like ``{"code": "SNAPSHOT_IN_USE", "message": "..."}``;
the code is surfaced on PlatformError so callers can decide what to retry.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from reviewbox_sandbox.base import BasePlatform
from reviewbox_sandbox.errors import ExecutionTimeout, PlatformError, SnapshotInUse
from reviewbox_sandbox.models import BaseImage, ExecResult, Session, Volume

logger = logging.getLogger(__name__)

_DEFAULT_HTTP_TIMEOUT = 60
# Extra slack on top of a command's own timeout before the HTTP call gives up.
_EXEC_GRACE_SECONDS = 15


class HttpPlatform(BasePlatform):
    """BasePlatform backed by the provider's REST API."""

    def __init__(self, base_url: str, token: str, http_timeout: float = _DEFAULT_HTTP_TIMEOUT):
        if not base_url:
            raise ValueError("A sandbox API URL is required for the http provider.")
        if not token:
            raise ValueError("A sandbox API token is required for the http provider.")
        self.base_url = base_url.rstrip("/")
        self.http_timeout = http_timeout
        self._http = requests.Session()
        self._http.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "User-Agent": "reviewbox",
            }
        )

    # ------------------------------------------------------------------ #
    # Transport                                                            #
    # ------------------------------------------------------------------ #

    def _request(self, method: str, path: str, *, timeout: float | None = None, **kwargs) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self._http.request(method, url, timeout=timeout or self.http_timeout, **kwargs)
        except requests.RequestException as e:
            raise PlatformError(f"{method} {path} failed: {e}") from e
        if not response.ok:
            raise self._error_from(response, f"{method} {path}")
        return response

    def _get_or_none(self, path: str) -> dict[str, Any] | None:
        try:
            return self._request("GET", path).json()
        except PlatformError as e:
            if e.status == 404:
                return None
            raise

    @staticmethod
    def _error_from(response: requests.Response, what: str) -> PlatformError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        code = body.get("code") if isinstance(body, dict) else None
        message = (body.get("message") if isinstance(body, dict) else None) or response.text or response.reason
        text = f"{what} returned {response.status_code}: {message}"
        if code == SnapshotInUse.CODE:
            return SnapshotInUse(text, status=response.status_code)
        return PlatformError(text, status=response.status_code, code=code)

    # ------------------------------------------------------------------ #
    # Volumes                                                              #
    # ------------------------------------------------------------------ #

    def create_volume(self, slug: str, region: str, capacity: str, source: str) -> Volume:
        payload = {"slug": slug, "region": region, "capacity": capacity, "from": source}
        return _volume(self._request("POST", "volumes", json=payload).json())

    def get_volume(self, slug: str) -> Volume | None:
        data = self._get_or_none(f"volumes/{slug}")
        return _volume(data) if data else None

    def list_volumes(self, search: str = "") -> list[Volume]:
        params = {"search": search} if search else None
        data = self._request("GET", "volumes", params=params).json()
        return [_volume(v) for v in _items(data)]

    def delete_volume(self, slug: str) -> None:
        self._request("DELETE", f"volumes/{slug}")

    def snapshot_volume(self, slug: str, snapshot_slug: str) -> BaseImage:
        data = self._request("POST", f"volumes/{slug}/snapshot", json={"slug": snapshot_slug}).json()
        return _image(data)

    # ------------------------------------------------------------------ #
    # Snapshots                                                            #
    # ------------------------------------------------------------------ #

    def get_snapshot(self, slug: str) -> BaseImage | None:
        data = self._get_or_none(f"snapshots/{slug}")
        return _image(data) if data else None

    def delete_snapshot(self, slug: str) -> None:
        self._request("DELETE", f"snapshots/{slug}")

    # ------------------------------------------------------------------ #
    # Sessions                                                             #
    # ------------------------------------------------------------------ #

    def create_session(
        self,
        root: str,
        region: str,
        memory: str,
        timeout: str,
        labels: dict[str, str] | None = None,
    ) -> Session:
        payload = {"root": root, "region": region, "memory": memory, "timeout": timeout, "labels": labels or {}}
        data = self._request("POST", "sandboxes", json=payload).json()
        return Session(
            id=data["id"],
            root=root,
            region=region,
            memory=memory,
            timeout=timeout,
            labels=dict(labels or {}),
            ready=data.get("status", "running") == "running",
        )

    def list_sessions(self, labels: dict[str, str] | None = None) -> list[Session]:
        params = {f"label.{k}": v for k, v in (labels or {}).items()} or None
        data = self._request("GET", "sandboxes", params=params).json()
        return [
            Session(
                id=s["id"],
                root=s.get("root", ""),
                region=s.get("region", ""),
                memory=s.get("memory", ""),
                timeout=s.get("timeout", ""),
                labels=s.get("labels") or {},
            )
            for s in _items(data)
        ]

    def kill_session(self, session_id: str) -> None:
        try:
            self._request("DELETE", f"sandboxes/{session_id}")
        except PlatformError as e:
            if e.status != 404:
                raise
            logger.debug("Session %s already gone", session_id)

    def execute(self, session: Session, command: str, timeout: float | None = None) -> ExecResult:
        payload: dict[str, Any] = {"command": ["bash", "-c", command]}
        if timeout:
            payload["timeout"] = timeout
        http_timeout = (timeout + _EXEC_GRACE_SECONDS) if timeout else None
        try:
            response = self._request("POST", f"sandboxes/{session.id}/exec", json=payload, timeout=http_timeout)
        except PlatformError as e:
            if isinstance(e.__cause__, requests.Timeout):
                raise ExecutionTimeout(command, timeout) from e
            if isinstance(e.__cause__, requests.ConnectionError) or e.status in (404, 410):
                raise ExecutionTimeout(command, timeout, reason="failed: session no longer responds") from e
            raise
        data = response.json()
        if data.get("timed_out"):
            raise ExecutionTimeout(command, timeout)
        output = data.get("output")
        if output is None:
            output = (data.get("stdout") or "") + (data.get("stderr") or "")
        return ExecResult(exit_code=int(data.get("exit_code", -1)), output=output)

    def read_file(self, session: Session, path: str) -> str:
        try:
            response = self._request("GET", f"sandboxes/{session.id}/files", params={"path": path})
        except PlatformError as e:
            if e.status == 404:
                raise FileNotFoundError(path) from e
            raise
        return response.text

    def close(self) -> None:
        self._http.close()


def _items(data: Any) -> list[dict]:
    if isinstance(data, dict):
        return data.get("items", [])
    return data or []


def _volume(d: dict) -> Volume:
    return Volume(
        slug=d["slug"],
        region=d.get("region", ""),
        capacity=str(d.get("capacity", "")),
        parent=d.get("from") or d.get("parent"),
        bootable=d.get("isBootable", d.get("bootable", True)),
    )


def _image(d: dict) -> BaseImage:
    return BaseImage(
        slug=d["slug"],
        region=d.get("region", ""),
        capacity=str(d.get("capacity", "")),
        size_bytes=int(d.get("flattenedSize", d.get("size_bytes", 0)) or 0),
        source_ref=d.get("source_ref", ""),
        source_commit=d.get("source_commit", ""),
    )
