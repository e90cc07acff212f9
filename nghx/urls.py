from __future__ import annotations

import re

from .errors import InvalidURLError
from .models import DEFAULT_BRANCH, RepositoryTarget

_GITHUB_URL = re.compile(
    r"^https://github\.com/([^/]+)/([^/]+?)(?:\.git)?(?:/tree/([^/]+)(?:/(.+))?)?$"
)


def parse_github_url(url: str) -> RepositoryTarget:
    """Split ``https://github.com/<owner>/<repo>[/tree/<branch>[/<path>]]`` into a target."""

    match = _GITHUB_URL.match(url.strip())
    if not match:
        raise InvalidURLError(f"Invalid GitHub URL format: {url}")

    owner, name, branch, sub_path = match.groups()
    return RepositoryTarget(
        owner=owner,
        name=name,
        branch=branch or DEFAULT_BRANCH,
        sub_path=(sub_path or "").rstrip("/"),
    )
