"""GitHub REST client used to enumerate repositories for a token."""

from __future__ import annotations

import json
import re
from collections import Counter
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from .logging import get_logger
from .models import RepositoryRecord

API_BASE = "https://api.github.com"
PER_PAGE = 100

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


class GitHubError(RuntimeError):
    """Raised when the GitHub API cannot be queried."""


class GitHubClient:
    """Lists repositories visible to a personal access token."""

    def __init__(
        self,
        token: str,
        *,
        api_base: str = API_BASE,
        opener: Callable[..., Any] | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        self.token = token
        self.api_base = api_base.rstrip("/")
        self._opener = opener or urlopen
        self.request_timeout = request_timeout
        self.logger = get_logger("github")

    def list_repositories(
        self,
        *,
        include_orgs: bool = True,
        include_forks: bool = False,
        name_filter: Optional[str] = None,
    ) -> List[RepositoryRecord]:
        """Return the user's repositories (and optionally organization ones)."""
        payloads: List[Dict[str, Any]] = list(
            self._paginate("/user/repos", {"visibility": "all", "sort": "updated"})
        )
        if include_orgs:
            for org in self._paginate("/user/orgs", {}):
                login = org.get("login")
                if not login:
                    continue
                self.logger.debug("Listing repositories for organization %s", login)
                payloads.extend(
                    self._paginate(
                        f"/orgs/{quote(str(login))}/repos", {"type": "all", "sort": "updated"}
                    )
                )

        repos = [RepositoryRecord.from_api(payload) for payload in payloads]
        if not include_forks:
            repos = [repo for repo in repos if not repo.is_fork]
        if name_filter:
            try:
                pattern = re.compile(name_filter, re.IGNORECASE)
            except re.error as exc:
                raise GitHubError(f"Invalid filter pattern {name_filter!r}: {exc}") from exc
            repos = [repo for repo in repos if pattern.search(repo.name)]

        unique = _dedupe(repos)
        self.logger.info("Found %d repositories", len(unique))
        return unique

    def _paginate(self, path: str, params: Dict[str, str]) -> Iterator[Dict[str, Any]]:
        query = dict(params, per_page=str(PER_PAGE))
        url: Optional[str] = f"{self.api_base}{path}?{urlencode(query)}"
        while url:
            items, url = self._get(url)
            for item in items:
                if isinstance(item, dict):
                    yield item

    def _get(self, url: str) -> Tuple[List[Any], Optional[str]]:
        request = Request(
            url,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self.token}",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "clone-home",
            },
        )
        try:
            with self._opener(request, timeout=self.request_timeout) as response:
                raw = response.read()
                link = response.headers.get("Link") if response.headers else None
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
            message = _error_message(detail) or exc.reason
            raise GitHubError(f"GitHub API error: {exc.code} {message}") from exc
        except URLError as exc:
            raise GitHubError(f"GitHub API error: {exc.reason}") from exc

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise GitHubError("GitHub API returned invalid JSON") from exc
        if not isinstance(payload, list):
            raise GitHubError(f"GitHub API error: {_error_message(payload) or 'unexpected response'}")
        return payload, _next_link(link)


def repository_stats(repos: Iterable[RepositoryRecord]) -> Dict[str, Any]:
    """Summarise visibility, fork status, languages and owners."""
    repos = list(repos)
    languages = Counter(repo.language or "Unknown" for repo in repos)
    owners = Counter(repo.owner for repo in repos)
    return {
        "total": len(repos),
        "private": sum(1 for repo in repos if repo.is_private),
        "public": sum(1 for repo in repos if not repo.is_private),
        "forks": sum(1 for repo in repos if repo.is_fork),
        "original": sum(1 for repo in repos if not repo.is_fork),
        "languages": dict(languages.most_common()),
        "owners": dict(owners.most_common()),
    }


def _dedupe(repos: Iterable[RepositoryRecord]) -> List[RepositoryRecord]:
    seen: set[str] = set()
    unique: List[RepositoryRecord] = []
    for repo in repos:
        if repo.full_name in seen:
            continue
        seen.add(repo.full_name)
        unique.append(repo)
    return unique


def _next_link(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    match = _NEXT_LINK_RE.search(header)
    return match.group(1) if match else None


def _error_message(detail: Any) -> str:
    if isinstance(detail, str):
        try:
            detail = json.loads(detail)
        except json.JSONDecodeError:
            return detail.strip()
    if isinstance(detail, dict):
        message = detail.get("message")
        if isinstance(message, str):
            return message
    return ""


__all__ = ["API_BASE", "GitHubClient", "GitHubError", "repository_stats"]
