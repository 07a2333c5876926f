#!/usr/bin/env python3
"""
Pull the latest V1 export into stx-genesis/ and describe it as a pull request.

- Reads migration.yml (bucket, datasets, pull request settings)
- For each dataset: downloads the object and its Cloud Storage metadata
  (timeCreated, size, md5Hash, mediaLink)
- Checks size/MD5 against the metadata and each *.sha256 file against the
  file it covers
- Moves the files into place only after every download and check succeeded
- Writes:
    stx-genesis/<dataset>            (bytes as served, transfer gzip decoded)
    .cache/proposal.json             (branch, title, body, reviewers, ...)
    $GITHUB_OUTPUT                   (branch/title/body step outputs, in Actions)

Usage:
    python scripts/sync_migration.py --block-height 787651
    python scripts/sync_migration.py     # height from the repository_dispatch payload
"""

import argparse
import base64
import hashlib
import json
import os
import pathlib
import sys
import uuid
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from migration_common import (
    PROPOSAL_FILE,
    ROOT,
    ChecksumError,
    ConfigError,
    MetadataError,
    MigrationError,
    ensure_dir,
    http_timeout,
    load_config,
    make_session,
)
from proposal_body import MISSING, render_body

META_FIELDS = ("timeCreated", "size", "md5Hash", "mediaLink")
CHUNK = 1024 * 1024  # 1MB streaming chunks

# ------------------------ trigger ------------------------------------------

def load_block_height(value: Any = None, event_path: Optional[str] = None) -> int:
    """
    Block height from the CLI, else from the repository_dispatch payload
    (client_payload.block_height in the file at $GITHUB_EVENT_PATH).
    """
    if value is None and event_path:
        try:
            with open(event_path, "r", encoding="utf-8") as f:
                event = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"cannot read event payload {event_path}: {e}") from e
        payload = event.get("client_payload") if isinstance(event, dict) else None
        if payload is not None and not isinstance(payload, dict):
            raise ConfigError(f"client_payload in {event_path} is not an object")
        value = (payload or {}).get("block_height")
    if value is None:
        raise ConfigError("no block height: pass --block-height or run from a 'migration' dispatch event")

    if isinstance(value, str):
        text = value.strip()
        # isdigit alone lets through unicode digits such as superscripts
        if text.isascii() and text.isdigit():
            value = int(text)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"block height must be a non-negative integer, got {value!r}")
    return value

# ------------------------ remote resources ---------------------------------

def dataset_urls(cfg: Dict[str, Any], ds: Dict[str, Any]) -> Tuple[str, str]:
    """(public download URL, JSON API metadata URL) for one dataset."""
    bucket = cfg["bucket"]
    name = ds["name"]
    public = bucket.get("public_base", "https://storage.googleapis.com").rstrip("/")
    api = bucket.get("api_base", "https://storage.googleapis.com/storage/v1").rstrip("/")
    url = ds.get("url") or f"{public}/{bucket['name']}/{quote(name)}"
    meta_url = ds.get("metadata_url") or f"{api}/b/{bucket['name']}/o/{quote(name, safe='')}"
    return url, meta_url

def normalize_metadata(doc: Dict[str, Any]) -> Dict[str, str]:
    out = {}
    for k in META_FIELDS:
        v = doc.get(k)
        out[k] = MISSING if v is None or v == "" else str(v)
    return out

def fetch_metadata(session: requests.Session, url: str) -> Dict[str, str]:
    r = session.get(url, timeout=http_timeout())
    r.raise_for_status()
    try:
        doc = r.json()
    except ValueError as e:
        raise MetadataError(f"metadata at {url} is not JSON: {e}") from e
    if not isinstance(doc, dict):
        raise MetadataError(f"metadata at {url} is not a JSON object")
    return normalize_metadata(doc)

def part_path(dest: pathlib.Path) -> pathlib.Path:
    return dest.with_name(dest.name + ".part")

def download(session: requests.Session, url: str, dest: pathlib.Path) -> Dict[str, Any]:
    """Stream url into <dest>.part; return its size, base64 MD5 (GCS style) and hex SHA-256."""
    ensure_dir(dest.parent)
    part = part_path(dest)
    md5 = hashlib.md5()
    sha = hashlib.sha256()
    size = 0
    with session.get(url, stream=True, timeout=http_timeout()) as r:
        r.raise_for_status()
        encoding = (r.headers.get("Content-Encoding") or "").strip().lower()
        with open(part, "wb") as f:
            for chunk in r.iter_content(chunk_size=CHUNK):
                if not chunk:
                    continue
                f.write(chunk)
                md5.update(chunk)
                sha.update(chunk)
                size += len(chunk)
    return {
        "part": part,
        "size": size,
        "md5": base64.b64encode(md5.digest()).decode("ascii"),
        "sha256": sha.hexdigest(),
        # iter_content decodes gzip, so size/md5 are of the decoded bytes
        "content_encoding": "" if encoding == "identity" else encoding,
    }

# ------------------------ checks -------------------------------------------

def verify_dataset(name: str, meta: Dict[str, str], digest: Dict[str, Any]) -> None:
    """
    Downloaded bytes must match the metadata; n/a fields are not checked.
    Cloud Storage reports size and md5Hash of the stored bytes, so objects served
    with a Content-Encoding (stored gzip-compressed) cannot be compared after decoding.
    """
    if digest.get("content_encoding"):
        print(f"  {name}: served with Content-Encoding {digest['content_encoding']}, skipping size/md5 check")
        return
    problems = []
    if meta["size"] != MISSING and meta["size"] != str(digest["size"]):
        problems.append(f"size {digest['size']} != metadata size {meta['size']}")
    if meta["md5Hash"] != MISSING and meta["md5Hash"] != digest["md5"]:
        problems.append(f"md5 {digest['md5']} != metadata md5Hash {meta['md5Hash']}")
    if problems:
        raise ChecksumError(f"{name}: " + "; ".join(problems))

def verify_hash_pair(name: str, hash_file: pathlib.Path, covered: str, covered_sha256: str) -> None:
    tokens = hash_file.read_text(encoding="utf-8", errors="replace").split()
    if not tokens:
        raise ChecksumError(f"{name} is empty")
    expected = tokens[0].lower()
    if expected != covered_sha256:
        raise ChecksumError(f"{covered}: sha256 {covered_sha256} != {expected} listed in {name}")

# ------------------------ job ----------------------------------------------

def _discard_parts(out_dir: pathlib.Path, datasets: List[Dict[str, Any]]) -> None:
    for ds in datasets:
        part_path(out_dir / ds["name"]).unlink(missing_ok=True)

def build_proposal(cfg: Dict[str, Any], block_height: int, fetched: List[Dict[str, Any]]) -> Dict[str, Any]:
    pr = cfg["pull_request"]
    committer = pr.get("committer", {})
    identity = f"{committer.get('name', '')} <{committer.get('email', '')}>"
    return {
        "repository": pr["repository"],
        "base": pr.get("base", "master"),
        "branch": pr["branch"],
        "title": pr["title"],
        "commit_message": pr.get("commit_message", pr["title"]),
        "author": identity,
        "committer": identity,
        "assignees": list(pr.get("assignees", [])),
        "reviewers": list(pr.get("reviewers", [])),
        "paths": [cfg["project"].get("genesis_dir", "stx-genesis")],
        "block_height": block_height,
        "body": render_body(block_height, fetched, cfg),
        "datasets": [
            {"name": it["name"], "url": it["url"], "metadata_url": it["metadata_url"], **it["meta"]}
            for it in fetched
        ],
    }

def sync(cfg: Dict[str, Any], block_height: int, root: pathlib.Path,
         session: requests.Session) -> Dict[str, Any]:
    """Fetch every dataset, check it, move it into the genesis dir, return the proposal."""
    proj = cfg["project"]
    datasets: List[Dict[str, Any]] = cfg["datasets"]
    out_dir = root / proj.get("genesis_dir", "stx-genesis")
    verify = bool(proj.get("verify_checksums", True))
    ensure_dir(out_dir)

    fetched: List[Dict[str, Any]] = []
    try:
        for ds in datasets:
            name = ds["name"]
            url, meta_url = dataset_urls(cfg, ds)
            print(f"Fetching {name} from {url}")
            digest = download(session, url, out_dir / name)
            meta = fetch_metadata(session, meta_url)
            fetched.append({"name": name, "url": url, "metadata_url": meta_url,
                            "meta": meta, "digest": digest, "covers": ds.get("covers")})

        if verify:
            by_name = {it["name"]: it for it in fetched}
            for it in fetched:
                verify_dataset(it["name"], it["meta"], it["digest"])
                if it["covers"]:
                    cov = by_name[it["covers"]]
                    verify_hash_pair(it["name"], it["digest"]["part"], cov["name"], cov["digest"]["sha256"])
    except Exception:
        _discard_parts(out_dir, datasets)
        raise

    for it in fetched:
        os.replace(it["digest"]["part"], out_dir / it["name"])
        print(f"  wrote {out_dir / it['name']} ({it['digest']['size']} bytes)")

    return build_proposal(cfg, block_height, fetched)

# ------------------------ outputs ------------------------------------------

def write_proposal(proposal: Dict[str, Any], path: pathlib.Path,
                   github_output: Optional[str] = None) -> None:
    ensure_dir(path.parent)
    path.write_text(json.dumps(proposal, indent=2, ensure_ascii=False), encoding="utf-8")
    if github_output:
        delim = f"ghadelimiter_{uuid.uuid4().hex}"
        with open(github_output, "a", encoding="utf-8") as f:
            f.write(f"branch={proposal['branch']}\n")
            f.write(f"title={proposal['title']}\n")
            f.write(f"body<<{delim}\n{proposal['body']}{delim}\n")

# ------------------------ main ---------------------------------------------

def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Fetch the V1 export into the genesis dir and prepare the PR.")
    ap.add_argument("--config", type=pathlib.Path, default=None, help="path to migration.yml")
    ap.add_argument("--block-height", default=None, help="defaults to client_payload.block_height")
    ap.add_argument("--root", type=pathlib.Path, default=ROOT, help="repository checkout to write into")
    ap.add_argument("--proposal-out", type=pathlib.Path, default=None)
    args = ap.parse_args(argv)

    try:
        cfg = load_config(args.config)
        height = load_block_height(args.block_height, os.getenv("GITHUB_EVENT_PATH"))
        proposal = sync(cfg, height, args.root, make_session())
        out = args.proposal_out or args.root / PROPOSAL_FILE
        write_proposal(proposal, out, os.getenv("GITHUB_OUTPUT"))
    except (MigrationError, requests.RequestException, OSError) as e:
        print(f"Migration sync failed: {e}", file=sys.stderr)
        return 1

    print(f"Proposal written: {out} (block height {height})")
    return 0

if __name__ == "__main__":
    sys.exit(main())
