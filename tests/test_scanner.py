import socketserver
import struct
import threading
from concurrent.futures import ThreadPoolExecutor

import clamd
import pytest

from chat_uploads.core.errors import ScannerUnavailableError
from chat_uploads.core.settings import Settings
from chat_uploads.schemas.uploads import ScanStatus
from chat_uploads.services.scanner import ContentScanner, Disabled, Ready, Uninitialized


class FakeClamd:
    """Minimale clamd client: instream/ping/version zoals de clamd library."""

    def __init__(self, reply=None, raises=None, ping_raises=None):
        self.reply = reply if reply is not None else {"stream": ("OK", None)}
        self.raises = raises
        self.ping_raises = ping_raises
        self.received = b""

    def instream(self, buff):
        self.received = buff.read()
        if self.raises:
            raise self.raises
        return self.reply

    def ping(self):
        if self.ping_raises:
            raise self.ping_raises
        return "PONG"

    def version(self):
        return "ClamAV 1.2.0/27000/Mon Oct 19 08:00:00 2026"


def _ready(clamd_client) -> ContentScanner:
    scanner = ContentScanner(connect=lambda: clamd_client)
    scanner.initialize()
    return scanner


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "sample.txt"
    path.write_bytes(b"hello scanner")
    return path


def test_disabled_scanner_reports_clean_disabled(sample):
    scanner = ContentScanner(enabled=False)
    assert isinstance(scanner.initialize(), Disabled)
    verdict = scanner.scan(sample)
    assert verdict.status == ScanStatus.CLEAN
    assert verdict.engine == "Disabled"
    assert verdict.is_disabled
    assert scanner.health_check() is True


def test_uninitialized_scanner_skips_but_is_unhealthy(sample):
    scanner = ContentScanner()
    assert isinstance(scanner.state, Uninitialized)
    assert scanner.scan(sample).engine == "Disabled"
    assert scanner.health_check() is False


def test_clean_file(sample):
    clamd_client = FakeClamd()
    scanner = _ready(clamd_client)
    assert isinstance(scanner.state, Ready)

    verdict = scanner.scan(sample)

    assert verdict.status == ScanStatus.CLEAN
    assert verdict.engine == "ClamAV"
    assert verdict.engine_version.startswith("ClamAV 1.2.0")
    assert clamd_client.received == b"hello scanner"


def test_infected_file(sample):
    scanner = _ready(FakeClamd(reply={"stream": ("FOUND", "Eicar-Test-Signature")}))
    verdict = scanner.scan(sample)
    assert verdict.status == ScanStatus.INFECTED
    assert verdict.threats == ["Eicar-Test-Signature"]


def test_infected_without_signature_uses_unknown_threat(sample):
    scanner = _ready(FakeClamd(reply={"stream": ("FOUND", None)}))
    assert scanner.scan(sample).threats == ["Unknown threat"]


@pytest.mark.parametrize(
    "clamd_client",
    [
        FakeClamd(reply={"stream": ("ERROR", "INSTREAM size limit exceeded")}),
        FakeClamd(reply={}),
        FakeClamd(raises=ConnectionResetError("clamd went away")),
    ],
)
def test_engine_failures_become_error_verdict(sample, clamd_client):
    scanner = _ready(clamd_client)
    verdict = scanner.scan(sample)
    assert verdict.status == ScanStatus.ERROR
    assert verdict.threats is None


def test_scan_buffer(sample):
    clamd_client = FakeClamd()
    scanner = _ready(clamd_client)
    assert scanner.scan_buffer(b"raw bytes").status == ScanStatus.CLEAN
    assert clamd_client.received == b"raw bytes"


def test_init_failure_fail_hard_raises():
    def connect():
        raise ConnectionRefusedError("no clamd")

    scanner = ContentScanner(fail_hard=True, connect=connect)
    with pytest.raises(ScannerUnavailableError):
        scanner.initialize()


def test_init_failure_soft_continues_disabled(sample):
    def connect():
        raise ConnectionRefusedError("no clamd")

    scanner = ContentScanner(fail_hard=False, connect=connect)
    state = scanner.initialize()
    assert isinstance(state, Disabled)
    assert "no clamd" in state.reason
    assert scanner.scan(sample).status == ScanStatus.CLEAN


def test_health_check_pings_daemon():
    healthy = _ready(FakeClamd())
    assert healthy.health_check() is True

    clamd_client = FakeClamd()
    flaky = _ready(clamd_client)
    clamd_client.ping_raises = ConnectionResetError("gone")
    assert flaky.health_check() is False


def test_status_report():
    assert ContentScanner(enabled=False).status() == {"enabled": False, "initialized": False}
    report = _ready(FakeClamd()).status()
    assert report["initialized"] is True
    assert report["version"].startswith("ClamAV")


def test_fail_hard_follows_environment():
    assert Settings(APP_ENV="production").scanner_fail_hard is True
    assert Settings(APP_ENV="development").scanner_fail_hard is False
    assert Settings(APP_ENV="production", SCANNER_FAIL_HARD=False).scanner_fail_hard is False

    scanner = ContentScanner.from_settings(Settings(ANTIVIRUS_ENABLED=False))
    assert isinstance(scanner.initialize(), Disabled)


# ---------- gedeelde scanner onder concurrency ----------
class _ClamdHandler(socketserver.StreamRequestHandler):
    """Spreekt het clamd newline-protocol: PING, VERSION en INSTREAM."""

    def handle(self):
        command = self.rfile.readline().strip()
        if command == b"nPING":
            self.wfile.write(b"PONG\n")
        elif command == b"nVERSION":
            self.wfile.write(b"ClamAV 1.2.0/27000\n")
        elif command == b"nINSTREAM":
            data = b""
            while True:
                (size,) = struct.unpack("!L", self.rfile.read(4))
                if size == 0:
                    break
                data += self.rfile.read(size)
            if b"EICAR" in data:
                self.wfile.write(b"stream: Eicar-Test-Signature FOUND\n")
            else:
                self.wfile.write(b"stream: OK\n")


class _ClamdServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


@pytest.fixture
def clamd_server():
    server = _ClamdServer(("127.0.0.1", 0), _ClamdHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address
    server.shutdown()
    server.server_close()


def test_concurrent_scans_keep_verdicts_apart(clamd_server, tmp_path):
    host, port = clamd_server
    scanner = ContentScanner(connect=lambda: clamd.ClamdNetworkSocket(host=host, port=port, timeout=5))
    assert isinstance(scanner.initialize(), Ready)

    infected = tmp_path / "infected.bin"
    infected.write_bytes(b"X5O!P%@AP EICAR payload " * 200)
    clean = tmp_path / "clean.bin"
    clean.write_bytes(b"holiday photo bytes " * 200)

    targets = [infected, clean] * 20
    with ThreadPoolExecutor(max_workers=8) as pool:
        verdicts = list(pool.map(scanner.scan, targets))

    expected = [ScanStatus.INFECTED if t == infected else ScanStatus.CLEAN for t in targets]
    assert [v.status for v in verdicts] == expected
    assert all(v.engine_version == "ClamAV 1.2.0/27000" for v in verdicts)
    assert scanner.health_check() is True
