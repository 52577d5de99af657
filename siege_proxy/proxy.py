"""
Per-request pipeline of the siege proxy.

    read body -> parse envelope -> forward upstream
        -> (test_importRawBlock) decode block -> run cannon
        -> relay upstream response

Any failing step answers with a short plain-text error instead. The upstream
call is always made before the cannon runs, and a failed verification throws
the upstream answer away.
"""

from __future__ import annotations

import logging

from .block import decode_block_param, is_block_import
from .envelope import decode_envelope
from .errors import BlockDecodeError, EnvelopeError, UpstreamError
from .models import Reply, RpcEnvelope, Skipped, VerificationOutcome
from .upstream import Forwarder
from .verifier import Verifier

logger = logging.getLogger(__name__)


class SiegeProxy:
    def __init__(self, forwarder: Forwarder, verifier: Verifier):
        self.forwarder = forwarder
        self.verifier = verifier

    def serve(self, raw: bytes) -> Reply:
        try:
            envelope = decode_envelope(raw)
        except EnvelopeError as exc:
            logger.error("failed to parse request", extra={"err": str(exc)})
            return Reply.local_error(400, "failed to parse request")

        method = envelope.method
        try:
            upstream = self.forwarder.forward(raw)
        except UpstreamError as exc:
            logger.error("failed to complete inner request", extra={"method": method, "err": str(exc)})
            return Reply.local_error(500, "failed to complete inner request")

        outcome = self.verify(envelope)
        if outcome.failed:
            logger.error(
                "verification failed, discarding upstream response",
                extra={"method": method, "err": outcome.describe(), "status": upstream.status_code},
            )
            return Reply.local_error(500, outcome.describe(), outcome)

        return Reply.relay(upstream, outcome)

    def verify(self, envelope: RpcEnvelope) -> VerificationOutcome:
        if not is_block_import(envelope):
            return Skipped("not a block import")
        try:
            block = decode_block_param(envelope.first_param())
        except BlockDecodeError as exc:
            logger.debug(
                "failed to parse block RLP, maybe an intentionally invalid test block? skipping",
                extra={"method": envelope.method, "err": str(exc)},
            )
            return Skipped(str(exc))
        return self.verifier.run(block)
