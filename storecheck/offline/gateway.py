"""
HTTP gateway from the device queue to the finalize endpoint.

Testability: pass a mock ``session`` to HttpChecklistGateway() in tests
instead of letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging

import requests

from storecheck.core.exceptions import TransientIOError, ValidationError

logger = logging.getLogger(__name__)

FINALIZE_PATH = "/api/v1/checklists"


class HttpChecklistGateway:
    """Posts queued submissions to the server.

    The local id travels as ``client_submission_id`` so that a retried post
    resolves to the checklist created the first time.
    """

    def __init__(self, base_url: str, *, session: requests.Session | None = None,
                 timeout: float = 15.0, headers: dict | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._headers = headers or {}

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def finalize(self, submission) -> dict:
        """
        Send one submission.

        Returns:
            The server's JSON body (``checklist``, ``created``, ``evaluation``).

        Raises:
            TransientIOError: network failure, 429 or 5xx; retry on next drain.
            ValidationError: the server rejected the payload (other 4xx).
        """
        url = f"{self.base_url}{FINALIZE_PATH}"
        try:
            resp = self.session.post(url, json=submission.to_payload(),
                                     headers=self._headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransientIOError(f"Finalize request failed: {exc}") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientIOError(f"Server returned HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            raise ValidationError(
                body.get("error") or f"Server rejected submission (HTTP {resp.status_code})",
                details=body.get("details"),
            )

        logger.info("Submission finalized (created=%s)", body.get("created"),
                    extra={"local_id": submission.local_id})
        return body
