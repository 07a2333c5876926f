#!/usr/bin/env python3
"""
Commit the refreshed genesis files and open (or update) the migration PR.

Consumes the proposal written by sync_migration.py:
- commits the proposal's paths on the fixed branch with the fixed identity
- force-pushes the branch to origin
- creates the PR against the base branch, or updates title/body of the
  open PR for that branch, then sets assignees and requests reviewers

Needs GH_TOKEN (or GITHUB_TOKEN) with contents + pull-requests write access.
"""

import argparse
import json
import os
import pathlib
import re
import subprocess
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from migration_common import PROPOSAL_FILE, ROOT, ConfigError, MigrationError, http_timeout, make_session

GITHUB_API = "https://api.github.com"

_IDENTITY = re.compile(r"^\s*(?P<name>[^<]+?)\s*<(?P<email>[^>]+)>\s*$")

def split_identity(identity: str) -> Tuple[str, str]:
    """'Hiro DevOps <devops@example.com>' -> ('Hiro DevOps', 'devops@example.com')"""
    m = _IDENTITY.match(identity or "")
    if not m:
        raise ConfigError(f"identity must look like 'Name <email>', got {identity!r}")
    return m.group("name"), m.group("email")

def load_proposal(path: pathlib.Path) -> Dict[str, Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"proposal not found: {path} (run sync_migration.py first)") from e
    except ValueError as e:
        raise ConfigError(f"proposal {path} is not valid JSON: {e}") from e

# ------------------------ git ----------------------------------------------

def commit_and_push(proposal: Dict[str, Any], root: pathlib.Path,
                    run: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> bool:
    """Commit the proposal's paths on its branch and push. Returns False when nothing changed."""
    author, author_email = split_identity(proposal["author"])
    committer, committer_email = split_identity(proposal["committer"])
    env = dict(os.environ,
               GIT_AUTHOR_NAME=author, GIT_AUTHOR_EMAIL=author_email,
               GIT_COMMITTER_NAME=committer, GIT_COMMITTER_EMAIL=committer_email)
    branch = proposal["branch"]

    def git(*args, check=True):
        return run(["git", *args], cwd=str(root), env=env, check=check, capture_output=True, text=True)

    git("checkout", "-B", branch)
    git("add", "--", *proposal["paths"])
    # exit status 1 means the index differs from HEAD
    if git("diff", "--cached", "--quiet", check=False).returncode == 0:
        print(f"No changes under {', '.join(proposal['paths'])}; nothing to commit.")
        return False
    git("commit", "-m", proposal["commit_message"])
    git("push", "--force", "origin", f"HEAD:refs/heads/{branch}")
    print(f"Pushed {branch}")
    return True

# ------------------------ GitHub -------------------------------------------

class GitHubClient:
    def __init__(self, token: str, api: str = GITHUB_API, session: Optional[requests.Session] = None):
        self.api = api.rstrip("/")
        self.session = session or make_session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })

    def _request(self, method: str, path: str, **kwargs) -> Any:
        r = self.session.request(method, f"{self.api}{path}", timeout=http_timeout(), **kwargs)
        r.raise_for_status()
        return r.json() if r.content else None

    def find_open_pull(self, repo: str, branch: str, base: str) -> Optional[Dict[str, Any]]:
        owner = repo.split("/", 1)[0]
        pulls = self._request("GET", f"/repos/{repo}/pulls",
                              params={"head": f"{owner}:{branch}", "base": base, "state": "open"})
        return pulls[0] if pulls else None

    def create_pull(self, repo: str, branch: str, base: str, title: str, body: str) -> Dict[str, Any]:
        return self._request("POST", f"/repos/{repo}/pulls",
                             json={"head": branch, "base": base, "title": title, "body": body})

    def update_pull(self, repo: str, number: int, title: str, body: str) -> Dict[str, Any]:
        return self._request("PATCH", f"/repos/{repo}/pulls/{number}", json={"title": title, "body": body})

    def add_assignees(self, repo: str, number: int, assignees: List[str]) -> None:
        if assignees:
            self._request("POST", f"/repos/{repo}/issues/{number}/assignees", json={"assignees": assignees})

    def request_reviewers(self, repo: str, number: int, reviewers: List[str]) -> None:
        if reviewers:
            self._request("POST", f"/repos/{repo}/pulls/{number}/requested_reviewers",
                          json={"reviewers": reviewers})

def open_or_update_pull(client: GitHubClient, proposal: Dict[str, Any],
                        create: bool = True) -> Optional[Dict[str, Any]]:
    """Returns {"number", "url", "action"} or None when there is no PR to touch."""
    repo, branch, base = proposal["repository"], proposal["branch"], proposal["base"]
    existing = client.find_open_pull(repo, branch, base)
    if existing:
        pull = client.update_pull(repo, existing["number"], proposal["title"], proposal["body"])
        action = "updated"
    elif create:
        pull = client.create_pull(repo, branch, base, proposal["title"], proposal["body"])
        action = "created"
    else:
        return None

    number = pull["number"]
    client.add_assignees(repo, number, proposal.get("assignees", []))
    client.request_reviewers(repo, number, proposal.get("reviewers", []))
    return {"number": number, "url": pull.get("html_url", ""), "action": action}

# ------------------------ main ---------------------------------------------

def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Commit the genesis files and open/update the migration PR.")
    ap.add_argument("--proposal", type=pathlib.Path, default=None, help="defaults to <root>/.cache/proposal.json")
    ap.add_argument("--root", type=pathlib.Path, default=ROOT)
    ap.add_argument("--skip-push", action="store_true", help="branch is already pushed; only touch the PR")
    args = ap.parse_args(argv)

    try:
        proposal = load_proposal(args.proposal or args.root / PROPOSAL_FILE)
        token = os.getenv("GH_TOKEN") or os.getenv("GITHUB_TOKEN")
        if not token:
            raise ConfigError("GH_TOKEN (or GITHUB_TOKEN) is not set")
        pushed = True if args.skip_push else commit_and_push(proposal, args.root)
        result = open_or_update_pull(GitHubClient(token), proposal, create=pushed)
    except (MigrationError, requests.RequestException, subprocess.CalledProcessError, OSError) as e:
        detail = getattr(e, "stderr", None) or ""
        print(f"Opening pull request failed: {e} {detail}".rstrip(), file=sys.stderr)
        return 1

    if result is None:
        print("No open pull request and no new commit; nothing to do.")
    else:
        print(f"Pull request #{result['number']} {result['action']}: {result['url']}")
    return 0

if __name__ == "__main__":
    sys.exit(main())
