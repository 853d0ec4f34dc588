"""HTTP session factories for the map-matching and storage backends."""

from __future__ import annotations

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_POOL_CONNECTIONS, HTTP_POOL_MAXSIZE

__all__ = ["create_session", "create_match_session", "create_storage_session"]


def _build_retry(total: int) -> Retry:
    return Retry(
        total=total,
        connect=total,
        read=0,
        backoff_factor=0.5,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "PATCH"],
        raise_on_status=False,
    )


def create_session(*, retries: int = 0, headers: dict[str, str] | None = None) -> Session:
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_build_retry(retries),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept-Encoding": "gzip, deflate",
            "Accept": "application/json",
        }
    )
    if headers:
        session.headers.update(headers)
    return session


def create_match_session() -> Session:
    """Session for map matching: no transport retries, each profile runs once."""

    return create_session(retries=0)


def create_storage_session(api_key: str, access_token: str = "") -> Session:
    """Session for the PostgREST storage backend with auth headers preset."""

    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["apikey"] = api_key
    bearer = access_token or api_key
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    return create_session(retries=2, headers=headers)
