"""Repository builders and a fake urlopen for GitHub client tests."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

from clonehome.models import RepositoryRecord


def build_repo(
    full_name: str = "acme/widget",
    *,
    language: Optional[str] = "Python",
    private: bool = False,
    fork: bool = False,
    owner_type: str = "User",
    updated_at: str = "2024-03-01T12:00:00Z",
    description: Optional[str] = None,
) -> RepositoryRecord:
    owner, name = full_name.split("/", 1)
    return RepositoryRecord(
        full_name=full_name,
        owner=owner,
        name=name,
        is_private=private,
        is_fork=fork,
        language=language,
        clone_url=f"https://github.com/{full_name}.git",
        updated_at=updated_at,
        description=description,
        html_url=f"https://github.com/{full_name}",
        owner_type=owner_type,
    )


def api_payload(full_name: str, **fields: Any) -> Dict[str, Any]:
    owner, name = full_name.split("/", 1)
    payload: Dict[str, Any] = {
        "name": name,
        "full_name": full_name,
        "owner": {"login": owner, "type": fields.pop("owner_type", "User")},
        "private": False,
        "fork": False,
        "language": "Python",
        "clone_url": f"https://github.com/{full_name}.git",
        "html_url": f"https://github.com/{full_name}",
        "updated_at": "2024-03-01T12:00:00Z",
        "description": None,
    }
    payload.update(fields)
    return payload


class FakeResponse:
    def __init__(self, body: Any, link: Optional[str] = None) -> None:
        self._raw = json.dumps(body).encode("utf-8")
        self.headers = {"Link": link} if link else {}

    def read(self) -> bytes:
        return self._raw

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None


class FakeOpener:
    """Serves canned responses keyed by URL path (query string ignored unless present)."""

    def __init__(self, routes: Mapping[str, FakeResponse]) -> None:
        self.routes = dict(routes)
        self.requests: List[Any] = []

    def __call__(self, request: Any, timeout: float = 0) -> FakeResponse:
        self.requests.append(request)
        url = request.full_url
        if url in self.routes:
            return self.routes[url]
        path = url.split("https://api.github.com", 1)[-1].split("?", 1)[0]
        if path in self.routes:
            return self.routes[path]
        raise AssertionError(f"unexpected request {url}")


__all__ = ["FakeOpener", "FakeResponse", "api_payload", "build_repo"]
