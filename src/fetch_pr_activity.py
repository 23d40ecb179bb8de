#!/usr/bin/env python3
"""
GitHub Pull Request Activity Exporter

This script finds pull requests opened by an author (a bot account by
default), or a single PR given by URL, and collects everything that happened
on each one: thread comments, code review comments, reviews, reactions and
commits. The result is written as one JSON array, one object per PR, for
auditing and downstream analysis.

Uses GitHub's REST API. Every list endpoint is paginated by following the
Link header until exhausted, so the output always holds the complete history
of each PR.

Features:
- Search PRs across all repositories by author and state
- Fetch a single PR by its web URL
- Attach each comment's own reactions (skippable)
- Write to stdout or atomically to a file

Usage:
    # Open PRs by the default bot author, printed to stdout
    python src/fetch_pr_activity.py

    # Up to 50 PRs, written to a file
    python src/fetch_pr_activity.py --limit=50 --out=bot-prs.json

    # A different author and state
    python src/fetch_pr_activity.py --author=foo --state=merged --limit=200

    # A single PR
    python src/fetch_pr_activity.py --pr-url=https://github.com/owner/repo/pull/123

Requirements:
    - Python 3.9+
    - GitHub token in GITHUB_TOKEN (or .env), or an authenticated gh CLI
    - pip install requests python-dotenv
"""

import argparse
import json
import os
import re
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from typing import List, Dict, Iterator, Optional, Tuple, Any

import requests
from dotenv import load_dotenv


# ============================================================================
# Constants
# ============================================================================

DEFAULT_AUTHOR = "circleci-app[bot]"
DEFAULT_STATE = "open"
DEFAULT_LIMIT = 100
DEFAULT_API_URL = "https://api.github.com"

PR_STATES = ("open", "closed", "merged")

# Search qualifier for each --state value
STATE_QUALIFIERS = {
    "open": "is:open",
    "closed": "is:closed",
    "merged": "is:merged",
}

# The squirrel-girl preview makes reaction endpoints and reaction rollups
# available on older GitHub Enterprise versions
ACCEPT_HEADER = (
    "application/vnd.github+json, "
    "application/vnd.github.squirrel-girl-preview+json"
)

PAGE_SIZE = 100
REQUEST_TIMEOUT = 30

# GitHub search never returns more than 1,000 results for one query
SEARCH_RESULT_CAP = 1000

PR_URL_PATTERN = re.compile(r"https://github\.com/([^/]+)/([^/]+)/pull/([0-9]+)")

# List fields every output record carries
ACTIVITY_FIELDS = ("issueComments", "reviewComments", "reviews", "prReactions", "commits")


# ============================================================================
# Configuration
# ============================================================================

@dataclass(frozen=True)
class FetchConfig:
    """Settings for one run, built once from CLI arguments and environment"""

    token: str
    api_url: str = DEFAULT_API_URL
    author: str = DEFAULT_AUTHOR
    state: str = DEFAULT_STATE
    limit: int = DEFAULT_LIMIT
    out: Optional[str] = None
    skip_comment_reactions: bool = False
    pr_url: Optional[str] = None


class UsageArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that exits with status 1 on usage errors"""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def positive_int(value: str) -> int:
    """argparse type for --limit"""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid positive integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value!r}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = UsageArgumentParser(
        description="Fetch GitHub PRs with their comments, reviews, reactions and commits as JSON",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--author",
        default=os.getenv("PR_AUTHOR") or DEFAULT_AUTHOR,
        help=f"PR author to search for (default: {DEFAULT_AUTHOR})"
    )
    parser.add_argument(
        "--state",
        default=DEFAULT_STATE,
        choices=PR_STATES,
        help="PR state to search for (default: open)"
    )
    parser.add_argument(
        "--limit",
        type=positive_int,
        default=DEFAULT_LIMIT,
        help="Maximum number of PRs to fetch (default: 100)"
    )
    parser.add_argument(
        "--out",
        help="Write the JSON array to this path instead of stdout"
    )
    parser.add_argument(
        "--skip-comment-reactions",
        action="store_true",
        help="Do not fetch reactions for each issue and review comment"
    )
    parser.add_argument(
        "--pr-url",
        help="Fetch a single PR (https://github.com/owner/repo/pull/N); "
             "--author, --state and --limit are ignored"
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def resolve_token() -> Optional[str]:
    """
    Find a GitHub token for API calls

    Looks at GITHUB_TOKEN, then GH_TOKEN, then asks an installed and
    authenticated gh CLI for its token.

    Returns:
        The token, or None if none of the sources provides one
    """
    token = os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN")
    if token:
        return token

    if shutil.which("gh") is None:
        return None

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, OSError):
        return None
    return result.stdout.strip() or None


def build_config(args: argparse.Namespace, token: str) -> FetchConfig:
    return FetchConfig(
        token=token,
        api_url=(os.getenv("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/"),
        author=args.author,
        state=args.state,
        limit=args.limit,
        out=args.out,
        skip_comment_reactions=args.skip_comment_reactions,
        pr_url=args.pr_url,
    )


# ============================================================================
# GitHub REST Client
# ============================================================================

class GitHubRESTClient:
    """
    Minimal GitHub REST client for the endpoints this script reads

    All requests share one session carrying the auth and Accept headers.
    Any failed request is fatal: the error is reported on stderr and the
    process exits with status 1. There is no retry.
    """

    def __init__(self, token: str, api_url: str = DEFAULT_API_URL):
        """
        Initialize the client with GitHub authentication

        Args:
            token: GitHub token with read access to the repositories
            api_url: REST API base URL
        """
        self.api_url = api_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": ACCEPT_HEADER,
            "X-GitHub-Api-Version": "2022-11-28",
        })

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.api_url}/{path.lstrip('/')}"

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """
        Execute a single GET request

        Args:
            url: Absolute URL or API path
            params: Query parameters

        Returns:
            The successful response

        Raises:
            SystemExit: On network errors or any non-2xx status
        """
        url = self._url(url)
        try:
            response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            print(f"Error: request failed for GET {url}: {e}", file=sys.stderr)
            sys.exit(1)

        if not 200 <= response.status_code < 300:
            print(f"Error: HTTP {response.status_code} for GET {url}", file=sys.stderr)
            print(response.text, file=sys.stderr)
            sys.exit(1)

        return response

    def _json(self, response: requests.Response) -> Any:
        """Decode a response body, treating anything but JSON as fatal"""
        try:
            return response.json()
        except ValueError as e:
            print(f"Error: invalid JSON in response from GET {response.url}: {e}", file=sys.stderr)
            print(response.text[:500], file=sys.stderr)
            sys.exit(1)

    def _pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
        """
        Yield the decoded body of each page of a list endpoint

        Follows the Link rel="next" header until there is none. A page is
        only requested once the previous one has been consumed.
        """
        params = {"per_page": PAGE_SIZE, **(params or {})}
        url: Optional[str] = self._url(path)

        while url:
            response = self._get(url, params)
            yield self._json(response)

            # The next link already carries every query parameter
            url = response.links.get("next", {}).get("url")
            params = None

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Fetch a single resource and return its decoded JSON body"""
        return self._json(self._get(path, params))

    def paginate(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """
        Fetch every page of a list endpoint and flatten the results

        Args:
            path: API path of a list endpoint
            params: Extra query parameters for the first request

        Returns:
            All items from all pages
        """
        items: List[Any] = []
        for data in self._pages(path, params):
            if isinstance(data, list):
                items.extend(data)
            elif data is not None:
                items.append(data)
        return items

    def search(self, path: str, params: Dict[str, Any], limit: int) -> Tuple[int, List[Any]]:
        """
        Page through a search endpoint until `limit` items are collected

        Search responses wrap their results as {"total_count": N, "items": [...]}.

        Args:
            path: API path of a search endpoint
            params: Query parameters, including "q"
            limit: Maximum number of items to return

        Returns:
            (total_count, items) where total_count is the number of matches
            reported by the first page and items holds at most `limit` results
        """
        total_count = None
        items: List[Any] = []

        for data in self._pages(path, params):
            if total_count is None:
                total_count = data.get("total_count", 0)
            items.extend(data.get("items") or [])
            if len(items) >= limit:
                break

        return total_count or 0, items[:limit]


# ============================================================================
# PR Locator
# ============================================================================

def parse_pr_url(pr_url: str) -> tuple:
    """
    Split a PR web URL into its coordinates

    Only https://github.com/<owner>/<repo>/pull/<number> is accepted, with
    nothing before or after it.

    Args:
        pr_url: Full PR URL

    Returns:
        (owner, repo, number) tuple

    Raises:
        ValueError: If the URL is not in the expected format
    """
    match = PR_URL_PATTERN.fullmatch(pr_url)
    if not match:
        raise ValueError(
            "PR URL must be in format https://github.com/owner/repo/pull/number"
        )
    owner, repo, number = match.groups()
    return owner, repo, int(number)


def owner_repo_from_url(url: str) -> tuple:
    """Owner and repo are the third and fourth path segments of a PR web URL"""
    parts = url.split("/")
    return parts[3], parts[4]


def label_names(labels: Optional[List[Dict]]) -> List[str]:
    return [label["name"] for label in (labels or [])]


def summarize_pr(pr: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build a PR summary from a pull or search-result object

    Both /repos/{o}/{r}/pulls/{n} and /search/issues return the same
    snake_case fields for what is needed here.

    Args:
        pr: Raw PR object from the REST API

    Returns:
        PR summary record
    """
    url = pr["html_url"]
    owner, repo = owner_repo_from_url(url)
    user = pr.get("user") or {}

    return {
        "number": pr["number"],
        "url": url,
        "owner": owner,
        "repo": repo,
        "title": pr.get("title"),
        "author": user.get("login"),
        "createdAt": pr.get("created_at"),
        "updatedAt": pr.get("updated_at"),
        "state": pr.get("state"),
        "isDraft": pr.get("draft", False),
        "labels": label_names(pr.get("labels")),
    }


def fetch_single_pr(client: GitHubRESTClient, owner: str, repo: str,
                    number: int) -> List[Dict[str, Any]]:
    print(f"Fetching single PR: {owner}/{repo}#{number}", file=sys.stderr)
    pr = client.get(f"/repos/{owner}/{repo}/pulls/{number}")
    return [summarize_pr(pr)]


def build_search_query(author: str, state: str) -> str:
    """
    Build a GitHub search query string for PRs by author and state

    Examples of generated queries:
        "is:pr author:circleci-app[bot] is:open"
        "is:pr author:octocat is:merged"
    """
    return " ".join(["is:pr", f"author:{author}", STATE_QUALIFIERS[state]])


def search_prs(client: GitHubRESTClient, author: str, state: str,
               limit: int) -> List[Dict[str, Any]]:
    """
    Search PRs by author and state across all repositories

    Args:
        client: REST client
        author: PR author login
        state: One of open, closed, merged
        limit: Maximum number of PRs to return

    Returns:
        PR summaries in search order
    """
    print(f"Searching PRs: author='{author}', state='{state}', limit='{limit}'", file=sys.stderr)
    if limit > SEARCH_RESULT_CAP:
        print(f"  ⚠ GitHub search returns at most {SEARCH_RESULT_CAP} results", file=sys.stderr)

    query = build_search_query(author, state)
    print(f"  Query: {query}", file=sys.stderr)
    total_count, results = client.search(
        "/search/issues",
        params={"q": query, "per_page": min(limit, PAGE_SIZE)},
        limit=limit,
    )

    print(f"  Found {total_count} matching PRs", file=sys.stderr)
    print(f"✓ Fetched {len(results)} PRs", file=sys.stderr)
    return [summarize_pr(item) for item in results]


def locate_prs(client: GitHubRESTClient, config: FetchConfig) -> List[Dict[str, Any]]:
    """Produce the PR summaries to process, from --pr-url or a search"""
    if config.pr_url:
        owner, repo, number = parse_pr_url(config.pr_url)
        return fetch_single_pr(client, owner, repo, number)
    return search_prs(client, config.author, config.state, config.limit)


# ============================================================================
# PR Aggregator
# ============================================================================

def attach_reactions(client: GitHubRESTClient, comments: List[Dict],
                     reactions_path: str) -> List[Dict[str, Any]]:
    """
    Fetch each comment's reactions and set them on a copy of the comment

    Args:
        client: REST client
        comments: Raw comment objects
        reactions_path: Path template with an {id} placeholder

    Returns:
        Comments in the same order, each with a "reactions" list
    """
    enriched = []
    for comment in comments:
        reactions = client.paginate(reactions_path.format(id=comment["id"]))
        enriched.append({**comment, "reactions": reactions})
    return enriched


def aggregate_pr(client: GitHubRESTClient, summary: Dict[str, Any],
                 skip_comment_reactions: bool = False) -> Dict[str, Any]:
    """
    Collect all activity for one PR

    PRs are issues under the hood, so the thread comments and the PR's
    own reactions live under /issues/.

    Args:
        client: REST client
        summary: PR summary from the locator
        skip_comment_reactions: Leave comments as fetched

    Returns:
        The summary extended with the five activity lists
    """
    owner, repo, number = summary["owner"], summary["repo"], summary["number"]
    print(f"Fetching details for {owner}/{repo}#{number}", file=sys.stderr)

    base = f"/repos/{owner}/{repo}"
    issue_comments = client.paginate(f"{base}/issues/{number}/comments")
    review_comments = client.paginate(f"{base}/pulls/{number}/comments")
    reviews = client.paginate(f"{base}/pulls/{number}/reviews")
    pr_reactions = client.paginate(f"{base}/issues/{number}/reactions")
    commits = client.paginate(f"{base}/pulls/{number}/commits")

    if not skip_comment_reactions:
        issue_comments = attach_reactions(
            client, issue_comments, base + "/issues/comments/{id}/reactions"
        )
        review_comments = attach_reactions(
            client, review_comments, base + "/pulls/comments/{id}/reactions"
        )

    return {
        **summary,
        "issueComments": issue_comments,
        "reviewComments": review_comments,
        "reviews": reviews,
        "prReactions": pr_reactions,
        "commits": commits,
    }


def aggregate_prs(client: GitHubRESTClient, summaries: List[Dict[str, Any]],
                  skip_comment_reactions: bool = False) -> List[Dict[str, Any]]:
    return [aggregate_pr(client, summary, skip_comment_reactions) for summary in summaries]


# ============================================================================
# Output and Summary Functions
# ============================================================================

def to_json(records: List[Dict[str, Any]]) -> str:
    return json.dumps(records, indent=2, ensure_ascii=False) + "\n"


def write_atomic(payload: str, output_path: str) -> None:
    """
    Write text to a file so that the destination is never half-written

    The data goes to a temporary file in the destination directory, which
    is then renamed over the destination.

    Args:
        payload: Text to write
        output_path: Destination file path
    """
    directory = os.path.dirname(os.path.abspath(output_path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        dir=directory, prefix=f".{os.path.basename(output_path)}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, output_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def write_output(records: List[Dict[str, Any]], output_path: Optional[str] = None) -> None:
    payload = to_json(records)
    if output_path:
        write_atomic(payload, output_path)
        print(f"Wrote {output_path}", file=sys.stderr)
        return

    # Always UTF-8, whatever the locale encoding of stdout is
    sys.stdout.flush()
    buffer = getattr(sys.stdout, "buffer", None)
    if buffer is None:
        sys.stdout.write(payload)
        sys.stdout.flush()
        return
    buffer.write(payload.encode("utf-8"))
    buffer.flush()


def print_summary(records: List[Dict[str, Any]], comment_reactions: bool = True) -> None:
    """
    Display totals for the exported activity on stderr

    Args:
        records: Enriched PR records
        comment_reactions: Whether per-comment reactions were fetched
    """
    if not records:
        return

    def total(field):
        return sum(len(record[field]) for record in records)

    out = sys.stderr
    print("\n" + "="*60, file=out)
    print("SUMMARY", file=out)
    print("="*60, file=out)
    print(f"PRs:                    {len(records)}", file=out)
    print(f"  Issue comments:       {total('issueComments')}", file=out)
    print(f"  Review comments:      {total('reviewComments')}", file=out)
    print(f"  Reviews:              {total('reviews')}", file=out)
    print(f"  PR reactions:         {total('prReactions')}", file=out)
    print(f"  Commits:              {total('commits')}", file=out)
    if comment_reactions:
        comment_reaction_count = sum(
            len(comment.get("reactions") or [])
            for record in records
            for comment in record["issueComments"] + record["reviewComments"]
        )
        print(f"  Comment reactions:    {comment_reaction_count}", file=out)
    print("="*60 + "\n", file=out)


# ============================================================================
# Main Program
# ============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the script

    1. Load configuration from environment and CLI arguments
    2. Locate PRs (single URL or search)
    3. Aggregate activity for each PR
    4. Write the JSON array and show summary totals

    Environment variables (via .env file):
        GITHUB_TOKEN / GH_TOKEN: GitHub token (falls back to `gh auth token`)
        GITHUB_API_URL: REST API base URL (default: https://api.github.com)
        PR_AUTHOR: Default for --author
    """
    # Load environment variables from .env file
    load_dotenv()

    args = parse_args(argv)

    # Check the URL before anything touches the network
    if args.pr_url:
        try:
            parse_pr_url(args.pr_url)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    token = resolve_token()
    if not token:
        print("Error: GITHUB_TOKEN is required", file=sys.stderr)
        print("Set GITHUB_TOKEN in the environment or .env, or install and log in to the gh CLI",
              file=sys.stderr)
        sys.exit(1)

    config = build_config(args, token)
    client = GitHubRESTClient(config.token, config.api_url)

    summaries = locate_prs(client, config)
    records = aggregate_prs(client, summaries, config.skip_comment_reactions)

    try:
        write_output(records, config.out)
    except OSError as e:
        print(f"Error: could not write {config.out}: {e}", file=sys.stderr)
        sys.exit(1)
    print_summary(records, comment_reactions=not config.skip_comment_reactions)
    return 0


if __name__ == "__main__":
    sys.exit(main())
