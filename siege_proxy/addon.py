"""
mitmproxy addon that turns mitmdump into the siege proxy.

Every flow is answered from the ``request`` hook: the addon forwards the body
to the node itself, optionally runs the cannon, and sets ``flow.response``.
mitmproxy therefore never connects upstream on its own; run it in reverse
mode with ``connection_strategy=lazy``.

Configuration is passed via the SIEGE_CONFIG environment variable as JSON:
{
    "node_addr": "http://127.0.0.1:8545",
    "verifier_path": "../cannon",
    "verifier_timeout": null,
    "log_level": "info",
    "log_format": "text"
}

Usage:
    SIEGE_CONFIG='{"verifier_path": "./cannon"}' \\
        mitmdump -p 9000 --mode reverse:http://127.0.0.1:8545 \\
        --set connection_strategy=lazy -s siege_addon.py
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from mitmproxy import http

from .config import SiegeConfig
from .logs import setup_logging
from .models import Reply
from .proxy import SiegeProxy
from .upstream import Forwarder
from .verifier import Verifier

logger = logging.getLogger(__name__)


def build_proxy(config: SiegeConfig) -> SiegeProxy:
    return SiegeProxy(
        forwarder=Forwarder(config.node_addr, timeout=config.upstream_timeout),
        verifier=Verifier(config.verifier_path, timeout=config.verifier_timeout),
    )


def to_response(reply: Reply) -> http.Response:
    headers = [(name.encode("latin-1"), value.encode("latin-1")) for name, value in reply.headers]
    response = http.Response.make(reply.status_code, b"", headers)
    # body bytes are relayed as they are, never re-encoded
    response.raw_content = reply.body
    response.headers["content-length"] = str(len(reply.body))
    return response


class SiegeAddon:
    """
    Answers every flow through a :class:`SiegeProxy`.
    """

    def __init__(self, config: Optional[SiegeConfig] = None, proxy: Optional[SiegeProxy] = None):
        self.config = config or SiegeConfig()
        self.proxy = proxy or build_proxy(self.config)

    @classmethod
    def from_env(cls) -> "SiegeAddon":
        config = SiegeConfig.from_env()
        setup_logging(config.log_level, config.log_format, config.log_color)
        logger.info(
            "siege proxy ready",
            extra={"node": config.node_addr, "cannon": config.verifier_path},
        )
        return cls(config)

    def handle(self, flow: http.HTTPFlow) -> None:
        try:
            raw = flow.request.get_content(strict=True)
        except ValueError as exc:
            logger.error("failed to read request", extra={"err": str(exc)})
            flow.response = to_response(Reply.local_error(400, "failed to read request"))
            return
        reply = self.proxy.serve(raw or b"")
        flow.response = to_response(reply)

    async def request(self, flow: http.HTTPFlow) -> None:
        # handle blocks on the node and the cannon
        await asyncio.to_thread(self.handle, flow)

    def done(self) -> None:
        self.proxy.forwarder.close()
