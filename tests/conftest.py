"""
Shared fixtures: a fake HTTP session serving a fake storage bucket.
"""

import base64
import hashlib
import json

import pytest
import requests

from migration_common import ROOT, load_config

BUCKET = "blockstack-v1-migration-data"
PUBLIC = f"https://storage.googleapis.com/{BUCKET}"
API = f"https://storage.googleapis.com/storage/v1/b/{BUCKET}/o"


class FakeResponse:
    """Just enough of requests.Response for the scripts."""

    def __init__(self, status=200, content=b"", json_data=None, headers=None):
        self.status_code = status
        self.headers = dict(headers or {})
        self.content = json.dumps(json_data).encode("utf-8") if json_data is not None else content

    def json(self):
        return json.loads(self.content.decode("utf-8"))

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """Serves responses from a {(method, url): FakeResponse} map and records every call."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.headers = {}

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        route = self.routes.get((method, url))
        if route is None:
            return FakeResponse(status=404)
        return route(kwargs) if callable(route) else route

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)


def gcs_metadata(name, data):
    return {
        "kind": "storage#object",
        "name": name,
        "bucket": BUCKET,
        "timeCreated": "2021-01-14T16:52:10.123Z",
        "size": str(len(data)),
        "md5Hash": base64.b64encode(hashlib.md5(data).digest()).decode("ascii"),
        "mediaLink": f"https://storage.googleapis.com/download/storage/v1/b/{BUCKET}/o/{name}?alt=media",
    }


def sha256_file(name, data):
    return f"{hashlib.sha256(data).hexdigest()}  {name}\n".encode("utf-8")


@pytest.fixture
def config():
    return load_config(ROOT / "migration.yml")


@pytest.fixture
def objects():
    chainstate = b"-----BEGIN STX BALANCES-----\nSP000000000000000000002Q6VF78,1000\n"
    zonefiles = b"-----BEGIN NAME ZONEFILES-----\nmuneeb.id\n$ORIGIN muneeb.id\n"
    return {
        "chainstate.txt": chainstate,
        "chainstate.txt.sha256": sha256_file("chainstate.txt", chainstate),
        "name_zonefiles.txt": zonefiles,
        "name_zonefiles.txt.sha256": sha256_file("name_zonefiles.txt", zonefiles),
    }


def bucket_routes(objects, metadata=None):
    """Routes for every object and its metadata document; metadata overrides per name."""
    metadata = metadata or {}
    routes = {}
    for name, data in objects.items():
        routes[("GET", f"{PUBLIC}/{name}")] = FakeResponse(content=data)
        meta = metadata.get(name, gcs_metadata(name, data))
        routes[("GET", f"{API}/{name}")] = meta if isinstance(meta, FakeResponse) else FakeResponse(json_data=meta)
    return routes


@pytest.fixture
def bucket(objects):
    return FakeSession(bucket_routes(objects))
