"""Resolve a spark profile identifier, URL or export file into a Snapshot."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from spark_analyze.models import Snapshot

PROFILE_URL_PATTERN = re.compile(r"spark\.lucko\.me/(?P<code>[a-zA-Z0-9]+)")
PROFILE_CODE_PATTERN = re.compile(r"[a-zA-Z0-9]+")
EXPECTED_FORMAT = "https://spark.lucko.me/XXXXX"


class SnapshotLoadError(ValueError):
    """Base class for failures to obtain a snapshot."""


class InvalidProfileIdentifierError(SnapshotLoadError):
    pass


class SnapshotFetchError(SnapshotLoadError):
    pass


class SnapshotParseError(SnapshotLoadError):
    pass


class LoaderSettings(BaseModel):
    """Where and how profiles are fetched."""

    model_config = ConfigDict(frozen=True)

    viewer_base_url: str = "https://spark.lucko.me"
    proxy_url_template: str = "https://corsproxy.io/?{url}"
    use_proxy_fallback: bool = True
    timeout_seconds: float = 15.0


class LoadedSnapshot(BaseModel):
    """A parsed snapshot plus where it came from."""

    model_config = ConfigDict(frozen=True)

    snapshot: Snapshot
    source: str
    via_proxy: bool = False


def parse_profile_code(identifier: str) -> str:
    """Extract the profile code from a viewer URL or a bare code."""
    text = identifier.strip()
    match = PROFILE_URL_PATTERN.search(text)
    if match:
        return match.group("code")
    if PROFILE_CODE_PATTERN.fullmatch(text):
        return text
    raise InvalidProfileIdentifierError(
        f"Invalid Spark profiler URL: {identifier!r}. Format: {EXPECTED_FORMAT}"
    )


def build_raw_url(code: str, settings: LoaderSettings) -> str:
    return f"{settings.viewer_base_url.rstrip('/')}/{code}?raw=1"


def build_proxy_url(raw_url: str, settings: LoaderSettings) -> str:
    return settings.proxy_url_template.format(url=quote(raw_url, safe=""))


def parse_snapshot(document: Any) -> Snapshot:
    """Structural parsing of a raw profile document."""
    if not isinstance(document, dict):
        raise SnapshotParseError(
            f"Profile document must be a JSON object, got {type(document).__name__}"
        )
    try:
        return Snapshot.model_validate(document)
    except ValidationError as e:
        raise SnapshotParseError(
            f"Profile document does not match the spark format ({e.error_count()} errors)"
        ) from e


def load_snapshot_file(path: Path) -> LoadedSnapshot:
    """Load a raw profile export saved to disk."""
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise SnapshotLoadError(f"Cannot read {path}: {e}") from e
    except ValueError as e:
        raise SnapshotParseError(f"{path} is not valid JSON: {e}") from e
    return LoadedSnapshot(snapshot=parse_snapshot(document), source=str(path))


def _get_json(client: httpx.Client, url: str) -> Any:
    response = client.get(url, headers={"Accept": "application/json"})
    response.raise_for_status()
    return response.json()


def fetch_snapshot(
    identifier: str,
    settings: LoaderSettings | None = None,
    client: httpx.Client | None = None,
) -> LoadedSnapshot:
    """Fetch a profile from the viewer, falling back to the proxy once."""
    settings = settings or LoaderSettings()
    code = parse_profile_code(identifier)
    raw_url = build_raw_url(code, settings)

    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=settings.timeout_seconds, follow_redirects=True)

    try:
        # ValueError covers undecodable bodies (JSONDecodeError, UnicodeDecodeError)
        try:
            document = _get_json(client, raw_url)
        except (httpx.HTTPError, ValueError) as direct_error:
            if not settings.use_proxy_fallback:
                raise SnapshotFetchError(
                    f"Could not fetch Spark profiler data from {raw_url}: {direct_error}. "
                    f"Make sure the URL is correct: {EXPECTED_FORMAT}"
                ) from direct_error
        else:
            return LoadedSnapshot(snapshot=parse_snapshot(document), source=raw_url)

        proxy_url = build_proxy_url(raw_url, settings)
        try:
            document = _get_json(client, proxy_url)
        except (httpx.HTTPError, ValueError) as proxy_error:
            raise SnapshotFetchError(
                f"Could not fetch Spark profiler data from {raw_url} (direct and proxy). "
                f"The URL might be invalid or the service is down. "
                f"Make sure the URL is correct: {EXPECTED_FORMAT}"
            ) from proxy_error
        return LoadedSnapshot(snapshot=parse_snapshot(document), source=proxy_url, via_proxy=True)
    finally:
        if owns_client:
            client.close()


def load_snapshot(source: str, settings: LoaderSettings | None = None) -> LoadedSnapshot:
    """Load from a local export when ``source`` is a file, otherwise from the viewer."""
    path = Path(source)
    if path.is_file():
        return load_snapshot_file(path)
    return fetch_snapshot(source, settings)
