"""
Shared fixtures for the PR activity exporter tests.

HTTP is never touched: the client's session is replaced with a Mock whose
get() answers from a path -> pages table.
"""

from unittest.mock import Mock
from urllib.parse import urlsplit

import pytest

import fetch_pr_activity


def make_response(data, status_code=200, next_url=None, text=""):
    """Build a requests.Response stand-in."""
    response = Mock()
    response.status_code = status_code
    response.json.return_value = data
    response.links = {"next": {"url": next_url}} if next_url else {}
    response.text = text
    return response


class FakeGitHub:
    """
    Routes session.get calls to canned pages.

    routes maps an API path to either a dict (a single resource) or a list
    of pages; page N (N >= 2) of a path is served from the Link URL
    "<api>/<path>?page=N".
    """

    API = "https://api.example.test"

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requested = []

    def get(self, url, params=None, timeout=None):
        split = urlsplit(url)
        path = split.path
        page = 1
        if split.query.startswith("page="):
            page = int(split.query.split("=", 1)[1])
        self.requested.append(path)

        pages = self.routes.get(path)
        if pages is None:
            return make_response({"message": "Not Found"}, status_code=404, text="Not Found")
        if isinstance(pages, dict):
            return make_response(pages)
        if not pages:
            return make_response([])

        next_url = None
        if page < len(pages):
            next_url = f"{self.API}{path}?page={page + 1}"
        return make_response(pages[page - 1], next_url=next_url)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove configuration variables that would leak into tests."""
    for name in ("GITHUB_TOKEN", "GH_TOKEN", "GITHUB_API_URL", "PR_AUTHOR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def client(fake_github):
    """REST client wired to the fake GitHub."""
    gh_client = fetch_pr_activity.GitHubRESTClient("fake_token", FakeGitHub.API)
    gh_client.session = Mock()
    gh_client.session.get.side_effect = fake_github.get
    return gh_client
