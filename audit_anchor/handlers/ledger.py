"""
Ledger gateway client for anchoring merkle roots.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from audit_anchor.core.config import Settings
from audit_anchor.core.constants import (
    ANCHOR_MEMO,
    PENDING_REFERENCE_PREFIX,
    PLACEHOLDER_DIGEST_CHARS,
    REDUNDANT_REFERENCE_PREFIX,
    REFERENCE_HEX_LENGTH,
)
from audit_anchor.core.exceptions import AnchorErrorKind, AnchorUnavailable

logger = logging.getLogger(__name__)

_REFERENCE_PATTERN = re.compile(rf"^[0-9a-fA-F]{{{REFERENCE_HEX_LENGTH}}}$")


@dataclass(frozen=True)
class AnchorResult:
    """Outcome of a single anchoring attempt."""
    success: bool
    reference: Optional[str] = None
    error_kind: Optional[AnchorErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, reference: str) -> "AnchorResult":
        return cls(success=True, reference=reference)

    @classmethod
    def failed(cls, error_kind: AnchorErrorKind, message: str = "") -> "AnchorResult":
        return cls(success=False, error_kind=error_kind, message=message)


def pending_reference(digest: str) -> str:
    """Placeholder used when anchoring could not be completed."""
    return f"{PENDING_REFERENCE_PREFIX}{digest[:PLACEHOLDER_DIGEST_CHARS]}"


def redundant_reference(digest: str) -> str:
    """Placeholder used when the digest was already anchored."""
    return f"{REDUNDANT_REFERENCE_PREFIX}{digest[:PLACEHOLDER_DIGEST_CHARS]}"


def is_placeholder(reference: Optional[str]) -> bool:
    if not reference:
        return False
    return reference.startswith((PENDING_REFERENCE_PREFIX, REDUNDANT_REFERENCE_PREFIX))


def is_valid_reference(reference: Optional[str]) -> bool:
    """Whether a reference looks like a real ledger transaction hash."""
    return bool(reference) and _REFERENCE_PATTERN.match(reference) is not None


def classify_status(status_code: int) -> AnchorErrorKind:
    """
    Map a failed gateway response to an anchoring error kind.

    409 means the same digest was already submitted by this account.
    Throttling and server errors are transient; other client errors are
    rejections.
    """
    if status_code == 409:
        return AnchorErrorKind.REDUNDANT
    if status_code == 429 or status_code >= 500:
        return AnchorErrorKind.UNAVAILABLE
    return AnchorErrorKind.REJECTED


class LedgerAnchorClient:
    """
    Anchors digests through an HTTP ledger gateway.

    The client makes a single attempt per call; retry policy belongs to the
    caller.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerAnchorClient":
        return cls(
            base_url=settings.ledger_base_url,
            api_key=settings.ledger_api_key,
            timeout=settings.anchor_timeout,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def anchor(self, digest: str) -> AnchorResult:
        """
        Submit a digest to the ledger.

        Args:
            digest: Lowercase hex merkle root

        Returns:
            AnchorResult with the ledger reference, or a classified failure
        """
        payload = {"digest": digest, "memo": ANCHOR_MEMO}

        try:
            async with self._client() as client:
                response = await client.post("/anchors", json=payload)
        except httpx.TimeoutException as e:
            return AnchorResult.failed(AnchorErrorKind.UNAVAILABLE, f"Ledger timed out: {e}")
        except httpx.HTTPError as e:
            return AnchorResult.failed(AnchorErrorKind.UNAVAILABLE, f"Ledger unreachable: {e}")

        if response.is_success:
            reference = _extract_reference(response)
            if not reference:
                return AnchorResult.failed(
                    AnchorErrorKind.REJECTED,
                    "Ledger response did not include a reference"
                )
            return AnchorResult.ok(reference)

        error_kind = classify_status(response.status_code)
        return AnchorResult.failed(
            error_kind,
            f"Ledger returned {response.status_code}: {response.text[:200]}"
        )

    async def is_anchored(self, digest: str) -> bool:
        """
        Check whether a digest is currently anchored.

        Raises:
            AnchorUnavailable: if the gateway cannot answer
        """
        try:
            async with self._client() as client:
                response = await client.get(f"/anchors/{digest}")
        except httpx.HTTPError as e:
            raise AnchorUnavailable(f"Ledger unreachable: {e}") from e

        if response.status_code == 404:
            return False
        if not response.is_success:
            raise AnchorUnavailable(f"Ledger returned {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise AnchorUnavailable(f"Invalid ledger response: {e}") from e

        return bool(body.get("anchored", False))


def _extract_reference(response: httpx.Response) -> Optional[str]:
    try:
        body: Dict[str, Any] = response.json()
    except ValueError:
        return None
    reference = body.get("reference") if isinstance(body, dict) else None
    return str(reference) if reference else None
