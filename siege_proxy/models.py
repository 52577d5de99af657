from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

Headers = List[Tuple[str, str]]


@dataclass(slots=True, frozen=True)
class RpcEnvelope:
    """Outer structure of a single JSON-RPC request."""

    version: str
    method: str
    params: List[Any]
    id: Optional[int]

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RpcEnvelope":
        return RpcEnvelope(
            version=data.get("jsonrpc") or "",
            method=data.get("method") or "",
            params=list(data.get("params") or []),
            id=data.get("id"),
        )

    def first_param(self) -> Any:
        if not self.params:
            return None
        return self.params[0]


@dataclass(slots=True, frozen=True)
class DecodedBlock:
    """The block fields the verifier is given."""

    number: int
    hash: bytes
    state_root: bytes
    receipt_root: bytes

    @property
    def hash_hex(self) -> str:
        return "0x" + self.hash.hex()

    @property
    def state_root_hex(self) -> str:
        return "0x" + self.state_root.hex()

    @property
    def receipt_root_hex(self) -> str:
        return "0x" + self.receipt_root.hex()

    def verifier_args(self) -> List[str]:
        """
        Positional arguments passed to the verifier after its path.
        """
        return [
            "test",
            str(self.number),
            self.hash_hex,
            self.state_root_hex,
            self.receipt_root_hex,
        ]


@dataclass(slots=True)
class UpstreamResponse:
    """Status, headers and body captured from the upstream node."""

    status_code: int
    headers: Headers
    body: bytes

    def header_map(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for name, value in self.headers:
            grouped.setdefault(name.lower(), []).append(value)
        return grouped


# ---------------------------------------------------------------------------
# Verification outcomes
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class VerificationOutcome:
    failed = False

    def describe(self) -> str:
        return "no verification outcome"


@dataclass(slots=True, frozen=True)
class Skipped(VerificationOutcome):
    reason: str = ""

    def describe(self) -> str:
        return f"verification skipped: {self.reason}" if self.reason else "verification skipped"


@dataclass(slots=True, frozen=True)
class Succeeded(VerificationOutcome):
    def describe(self) -> str:
        return "cannon verified block"


@dataclass(slots=True, frozen=True)
class FailedWithExitCode(VerificationOutcome):
    code: int
    failed = True

    def describe(self) -> str:
        return f"cannon exited with error {self.code}"


@dataclass(slots=True, frozen=True)
class FailedToStart(VerificationOutcome):
    cause: str
    failed = True

    def describe(self) -> str:
        return "failed to start cannon"


@dataclass(slots=True, frozen=True)
class FailedToComplete(VerificationOutcome):
    cause: str
    failed = True

    def describe(self) -> str:
        return "failed to wait for cannon, killing it"


@dataclass(slots=True)
class Reply:
    """The response handed back to the caller."""

    status_code: int
    headers: Headers
    body: bytes
    outcome: VerificationOutcome = field(default_factory=Skipped)

    @staticmethod
    def relay(upstream: UpstreamResponse, outcome: VerificationOutcome) -> "Reply":
        return Reply(
            status_code=upstream.status_code,
            headers=list(upstream.headers),
            body=upstream.body,
            outcome=outcome,
        )

    @staticmethod
    def local_error(
        status_code: int, message: str, outcome: Optional[VerificationOutcome] = None
    ) -> "Reply":
        return Reply(
            status_code=status_code,
            headers=[("Content-Type", "text/plain; charset=utf-8")],
            body=message.encode("utf-8"),
            outcome=outcome if outcome is not None else Skipped(),
        )
