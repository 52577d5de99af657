from __future__ import annotations

import logging
from typing import Optional

import requests

from .errors import UpstreamError
from .models import Headers, UpstreamResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0

# Connection-level headers plus the ones invalidated by requests' transparent decoding
_NOT_RELAYED = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-encoding",
        "content-length",
    }
)


def _relayable_headers(response: requests.Response) -> Headers:
    raw_headers = getattr(response.raw, "headers", None)
    # urllib3 keeps repeated headers apart, requests' dict folds them
    source = raw_headers.iteritems() if raw_headers is not None else response.headers.items()
    return [(name, value) for name, value in source if name.lower() not in _NOT_RELAYED]


class Forwarder:
    """
    Re-POSTs the caller's request bytes to the upstream node.
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def forward(self, raw: bytes) -> UpstreamResponse:
        try:
            response = self.session.post(
                self.url,
                data=raw,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            body = response.content
        except requests.RequestException as exc:
            raise UpstreamError(str(exc)) from exc

        logger.debug(
            "upstream answered",
            extra={"status": response.status_code, "bytes": len(body)},
        )
        return UpstreamResponse(
            status_code=response.status_code,
            headers=_relayable_headers(response),
            body=body,
        )

    def close(self) -> None:
        self.session.close()
