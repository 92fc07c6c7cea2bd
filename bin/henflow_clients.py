#!/usr/bin/env python3
"""
henflow HTTP Clients

Thin aiohttp wrappers around the remote services henflow talks to:
- IpfsClient: metadata documents from an IPFS gateway, object sizes from a local daemon
- EstuaryClient: pin lookup and pin submission on Estuary

Every failure is raised as a HenflowError subclass carrying the HTTP status
when one is known, so callers can classify it as retryable or not.
"""

from __future__ import annotations

import asyncio
import json
from http import HTTPStatus
from typing import Any, Optional

import aiohttp


# =============================================================================
# ERRORS
# =============================================================================

def _is_connection_error(msg: Any) -> bool:
    """Check if an error message indicates a connection-level failure."""
    if msg is None:
        return False
    s = str(msg).lower()
    patterns = [
        "connection reset by peer",
        "server disconnected",
        "connection refused",
        "cannot connect",
        "connection aborted",
        "broken pipe",
        "timeout",
        "timed out",
    ]
    return any(p in s for p in patterns)


def _is_retryable(status_code: Optional[int], error: Any) -> bool:
    """Determine if a request failure is retryable."""
    if status_code == 429 or status_code == 408:
        return True
    if status_code is not None and status_code >= 500:
        return True
    return _is_connection_error(error)


class HenflowError(Exception):
    """Base error for every service failure henflow knows how to report."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return _is_retryable(self.status_code, str(self))


class ResolutionError(HenflowError):
    """A token could not be turned into a content identifier."""


class DispatchError(HenflowError):
    """The storage or content service failed while performing an action."""


class CredentialError(DispatchError):
    """Estuary rejected the API key."""


class PageFetchError(HenflowError):
    """The indexer failed to return a count or a page of tokens."""


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def _status_message(status: int) -> str:
    try:
        status_name = HTTPStatus(status).phrase
    except ValueError:
        status_name = "Unknown"
    return f"HTTP {status}: {status_name}"


async def request_text(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    error_cls: type[HenflowError] = HenflowError,
    ok_statuses: tuple[int, ...] = (),
    **kwargs,
) -> tuple[int, str]:
    """
    Perform one HTTP request and return its status and body.

    Args:
        session: aiohttp ClientSession
        method: HTTP method
        url: Absolute URL
        error_cls: HenflowError subclass raised on failure
        ok_statuses: Non-2xx statuses returned to the caller instead of raised
        **kwargs: Passed through to session.request()

    Returns:
        Tuple of (status_code, body_text)

    Raises:
        error_cls: On timeout, connection error or unexpected status
    """
    try:
        async with session.request(method, url, **kwargs) as response:
            if response.status in ok_statuses:
                return response.status, await response.text()
            if not 200 <= response.status < 300:
                raise error_cls(_status_message(response.status), response.status)
            return response.status, await response.text()
    except asyncio.TimeoutError:
        raise error_cls("Request Timeout", 408) from None
    except aiohttp.ClientError as e:
        raise error_cls(f"Connection Error: {e}") from e


async def request_json(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    error_cls: type[HenflowError] = HenflowError,
    **kwargs,
) -> Any:
    """Perform one HTTP request and decode its body as JSON."""
    _, text = await request_text(session, method, url, error_cls=error_cls, **kwargs)
    try:
        return json.loads(text)
    except ValueError:
        raise error_cls(f"Invalid JSON from {url}") from None


def strip_scheme(uri: str) -> str:
    """
    Remove a leading 'scheme://' from a URI.

    Args:
        uri: URI such as 'ipfs://Qm...'

    Returns:
        The URI without its scheme, or the input unchanged if it has none
    """
    uri = uri.strip()
    scheme, sep, rest = uri.partition("://")
    if sep and scheme and scheme[0].isalpha() and all(
        c.isalnum() or c in "+.-" for c in scheme
    ):
        return rest
    return uri


# =============================================================================
# IPFS
# =============================================================================

class IpfsClient:
    """IPFS gateway (metadata documents) and local daemon (object sizes)."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        gateway_url: str = "https://ipfs.io",
        daemon_url: str = "http://localhost:5001",
    ):
        self.session = session
        self.gateway_url = gateway_url.rstrip("/")
        self.daemon_url = daemon_url.rstrip("/")

    async def resolve(self, pointer: str) -> str:
        """
        Fetch a token metadata document and return its artifact URI.

        Args:
            pointer: CID of the metadata document (no scheme)

        Returns:
            The 'artifactUri' field of the document, scheme included

        Raises:
            ResolutionError: If the fetch fails or the document is malformed
        """
        doc = await request_json(
            self.session,
            "GET",
            f"{self.gateway_url}/ipfs/{pointer}",
            error_cls=ResolutionError,
        )
        if not isinstance(doc, dict) or not isinstance(doc.get("artifactUri"), str):
            raise ResolutionError(f"No artifactUri in metadata {pointer}")
        return doc["artifactUri"]

    async def size(self, cid: str) -> int:
        """Return the cumulative size in bytes of an IPFS object."""
        stat = await request_json(
            self.session,
            "POST",
            f"{self.daemon_url}/api/v0/object/stat",
            params={"arg": f"/ipfs/{cid}"},
            error_cls=DispatchError,
        )
        try:
            return int(stat["CumulativeSize"])
        except (TypeError, KeyError, ValueError):
            raise DispatchError(f"No CumulativeSize for {cid}") from None


# =============================================================================
# ESTUARY
# =============================================================================

class EstuaryClient:
    """Pin lookups and submissions against the Estuary API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token: str,
        *,
        base_url: str = "https://api.estuary.tech",
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}

    def _check_credentials(self, e: DispatchError) -> None:
        if e.status_code in (401, 403):
            raise CredentialError(f"Estuary rejected the API key ({e})", e.status_code) from e

    async def lookup(self, cid: str) -> Optional[int]:
        """
        Look a CID up on Estuary.

        Returns:
            Pinned size in bytes, or None if Estuary has no content for the CID
        """
        try:
            status, text = await request_text(
                self.session,
                "GET",
                f"{self.base_url}/content/by-cid/{cid}",
                headers=self._headers,
                error_cls=DispatchError,
                ok_statuses=(404,),
            )
        except DispatchError as e:
            self._check_credentials(e)
            raise

        if status == 404 or text.strip() in ("", "null"):
            return None
        try:
            pins = json.loads(text)
        except ValueError:
            raise DispatchError(f"Invalid JSON from Estuary for {cid}") from None
        if not pins:
            return None
        try:
            return int(pins[0]["content"]["size"])
        except (TypeError, KeyError, IndexError, ValueError):
            raise DispatchError(f"Malformed Estuary content for {cid}") from None

    async def submit(self, cid: str) -> None:
        """Ask Estuary to pin a CID."""
        try:
            await request_text(
                self.session,
                "POST",
                f"{self.base_url}/pinning/pins",
                json={"cid": cid},
                headers=self._headers,
                error_cls=DispatchError,
            )
        except DispatchError as e:
            self._check_credentials(e)
            raise
