from __future__ import annotations

import logging
import subprocess
import threading
from typing import IO, List, Optional

from .models import (
    DecodedBlock,
    FailedToComplete,
    FailedToStart,
    FailedWithExitCode,
    Succeeded,
    VerificationOutcome,
)

logger = logging.getLogger(__name__)

DRAIN_JOIN_TIMEOUT = 5.0


def _drain(stream: IO[str], name: str, level: int, block_number: int) -> None:
    """
    Forward every line of ``stream`` to the logger until EOF.
    """
    try:
        for line in stream:
            logger.log(level, line.rstrip("\r\n"), extra={"stream": name, "block": block_number})
    except (OSError, ValueError) as exc:
        logger.error("%s stopped", name, extra={"stream": name, "err": str(exc)})
    finally:
        stream.close()


class Verifier:
    """
    Runs the external verifier (the cannon binary) for one decoded block.

    The process gets ``test <number> <hash> <stateRoot> <receiptRoot>``; its
    stdout and stderr are streamed line by line into the log while it runs.
    """

    def __init__(self, path: str, timeout: Optional[float] = None):
        self.path = path
        self.timeout = timeout

    def command(self, block: DecodedBlock) -> List[str]:
        return [self.path, *block.verifier_args()]

    def run(self, block: DecodedBlock) -> VerificationOutcome:
        cmd = self.command(block)
        logger.info("running cannon", extra={"block": block.number, "hash": block.hash_hex})
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except (OSError, ValueError) as exc:
            logger.error("failed to start cannon", extra={"err": str(exc), "path": self.path})
            return FailedToStart(str(exc))

        drains = [
            threading.Thread(
                target=_drain,
                args=(proc.stdout, "stdout", logging.INFO, block.number),
                name=f"cannon-stdout-{proc.pid}",
                daemon=True,
            ),
            threading.Thread(
                target=_drain,
                args=(proc.stderr, "stderr", logging.WARNING, block.number),
                name=f"cannon-stderr-{proc.pid}",
                daemon=True,
            ),
        ]
        for thread in drains:
            thread.start()

        try:
            code = proc.wait(timeout=self.timeout)
        except (subprocess.TimeoutExpired, OSError) as exc:
            self._kill(proc)
            # grandchildren may still hold the pipes open
            for thread in drains:
                thread.join(timeout=DRAIN_JOIN_TIMEOUT)
            logger.error("failed to wait for cannon", extra={"err": str(exc), "block": block.number})
            return FailedToComplete(str(exc))

        for thread in drains:
            thread.join()

        if code != 0:
            logger.error("cannon exited with error", extra={"code": code, "block": block.number})
            return FailedWithExitCode(code)
        logger.info("cannon verified block", extra={"block": block.number})
        return Succeeded()

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        if proc.poll() is not None:
            return
        try:
            proc.kill()
        except OSError as exc:
            logger.warning("failed to kill cannon", extra={"err": str(exc), "pid": proc.pid})
            return
        # Reap the child; a second failure here has nothing left to recover
        try:
            proc.wait(timeout=5)
        except (subprocess.TimeoutExpired, OSError) as exc:
            logger.warning("cannon did not exit after kill", extra={"err": str(exc), "pid": proc.pid})
