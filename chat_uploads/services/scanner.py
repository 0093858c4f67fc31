# chat_uploads/services/scanner.py
from __future__ import annotations

import io
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import clamd
import structlog

from chat_uploads.core.errors import ScannerUnavailableError
from chat_uploads.core.settings import Settings
from chat_uploads.schemas.uploads import ScanStatus, ScanVerdict, utcnow

logger = structlog.get_logger(__name__)

ENGINE_NAME = "ClamAV"
DISABLED_ENGINE = "Disabled"
UNKNOWN_THREAT = "Unknown threat"


# ---------- scanner state ----------
@dataclass(frozen=True)
class Uninitialized:
    pass


@dataclass(frozen=True)
class Disabled:
    reason: str


@dataclass(frozen=True)
class Ready:
    # clamd clients houden één socket per instance vast: per command een verse client
    connect: Callable[[], Any]


ScannerState = Union[Uninitialized, Disabled, Ready]


def _clamd_client(settings: Settings) -> Any:
    # socket eerst (zelfde host), anders TCP naar de daemon
    if settings.CLAMD_SOCKET and os.path.exists(settings.CLAMD_SOCKET):
        client = clamd.ClamdUnixSocket(path=settings.CLAMD_SOCKET, timeout=settings.CLAMD_TIMEOUT)
    else:
        client = clamd.ClamdNetworkSocket(
            host=settings.CLAMD_HOST,
            port=settings.CLAMD_PORT,
            timeout=settings.CLAMD_TIMEOUT,
        )
    return client


class ContentScanner:
    """
    Malware scanning via a clamd daemon.

    ``scan`` never raises: engine failures become an ERROR verdict and the
    caller decides whether to continue. No retries happen here. One instance is
    shared by all pipelines; every clamd command runs on its own client/socket.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        fail_hard: bool = False,
        connect: Optional[Callable[[], Any]] = None,
    ):
        self.enabled = enabled
        self.fail_hard = fail_hard
        self._connect = connect
        self.state: ScannerState = Uninitialized()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContentScanner":
        return cls(
            enabled=settings.ANTIVIRUS_ENABLED,
            fail_hard=settings.scanner_fail_hard,
            connect=lambda: _clamd_client(settings),
        )

    def initialize(self) -> ScannerState:
        if not self.enabled:
            logger.warning("antivirus_disabled")
            self.state = Disabled("disabled by configuration")
            return self.state

        try:
            if self._connect is None:
                raise RuntimeError("no clamd connector configured")
            client = self._connect()
            client.ping()
            self.state = Ready(self._connect)
            logger.info("clamav_initialized", version=self._version(client))
        except Exception as e:
            logger.error("clamav_initialization_failed", error=str(e), exc_info=True)
            if self.fail_hard:
                raise ScannerUnavailableError(
                    f"Antivirus service initialization failed: {e}", cause=e
                ) from e
            # buiten productie verder zonder antivirus
            logger.warning("continuing_without_antivirus")
            self.state = Disabled(f"initialization failed: {e}")
        return self.state

    # ---------- scanning ----------
    def scan(self, target: Union[str, "os.PathLike[str]", bytes]) -> ScanVerdict:
        verdict = ScanVerdict(status=ScanStatus.PENDING, scanned_at=utcnow(), engine=ENGINE_NAME)
        state = self.state

        if isinstance(state, (Uninitialized, Disabled)):
            logger.warning(
                "antivirus_scan_skipped",
                state=type(state).__name__,
                reason=getattr(state, "reason", "not initialized"),
            )
            verdict.status = ScanStatus.CLEAN
            verdict.engine = DISABLED_ENGINE
            return verdict

        label = "<buffer>" if isinstance(target, (bytes, bytearray)) else str(target)
        try:
            verdict.status = ScanStatus.SCANNING
            result = self._instream(state.connect(), target)
            verdict.engine_version = self._version(state.connect())

            found, signature = self._parse(result)
            if found == "FOUND":
                verdict.status = ScanStatus.INFECTED
                verdict.threats = [signature] if signature else [UNKNOWN_THREAT]
                logger.warning("file_infected", target=label, threats=verdict.threats)
            elif found == "OK":
                verdict.status = ScanStatus.CLEAN
                logger.info("file_scan_clean", target=label)
            else:
                logger.error("file_scan_error", target=label, engine_reply=signature)
                verdict.status = ScanStatus.ERROR
        except Exception as e:
            logger.error("file_scan_failed", target=label, error=str(e))
            verdict.status = ScanStatus.ERROR
        verdict.scanned_at = utcnow()
        return verdict

    def scan_buffer(self, data: bytes) -> ScanVerdict:
        return self.scan(data)

    @staticmethod
    def _instream(client: Any, target: Union[str, "os.PathLike[str]", bytes]) -> Dict[str, Any]:
        # INSTREAM ook voor bestanden: de daemon hoeft ons filesystem niet te zien
        if isinstance(target, (bytes, bytearray)):
            return client.instream(io.BytesIO(bytes(target)))
        with Path(target).open("rb") as fh:
            return client.instream(fh)

    @staticmethod
    def _parse(result: Optional[Dict[str, Any]]) -> tuple:
        if not result:
            return "ERROR", "empty reply"
        status, signature = next(iter(result.values()))
        return status, signature

    @staticmethod
    def _version(client: Any) -> Optional[str]:
        try:
            return client.version()
        except Exception as e:
            logger.warning("clamav_version_unavailable", error=str(e))
            return None

    # ---------- status ----------
    def status(self) -> Dict[str, Any]:
        state = self.state
        report: Dict[str, Any] = {
            "enabled": self.enabled,
            "initialized": isinstance(state, Ready),
        }
        if isinstance(state, Ready):
            version = self._version(state.connect())
            if version:
                report["version"] = version
        return report

    def health_check(self) -> bool:
        state = self.state
        if isinstance(state, Disabled):
            return True
        if isinstance(state, Uninitialized):
            return False
        try:
            state.connect().ping()
            return True
        except Exception as e:
            logger.error("antivirus_health_check_failed", error=str(e))
            return False