"""
Intercepting JSON-RPC proxy for block import tests.

Requests are relayed to an execution node unchanged. ``test_importRawBlock``
payloads are additionally decoded and checked by the external cannon binary,
whose verdict can veto the node's answer.
"""

from .config import SiegeConfig
from .models import (
    DecodedBlock,
    FailedToComplete,
    FailedToStart,
    FailedWithExitCode,
    Reply,
    RpcEnvelope,
    Skipped,
    Succeeded,
    UpstreamResponse,
    VerificationOutcome,
)
from .proxy import SiegeProxy

__all__ = [
    "SiegeConfig",
    "SiegeProxy",
    "DecodedBlock",
    "FailedToComplete",
    "FailedToStart",
    "FailedWithExitCode",
    "Reply",
    "RpcEnvelope",
    "Skipped",
    "Succeeded",
    "UpstreamResponse",
    "VerificationOutcome",
]
