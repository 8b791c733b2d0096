"""Health probe and metrics endpoints served by uvicorn."""

import contextlib
import datetime
import tempfile
from collections.abc import Callable
from pathlib import Path

import uvicorn
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from fastapi import FastAPI, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from epg_operator.logger import init_logger

logger = init_logger(__name__)


class OperatorServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the operator process."""

    def __init__(self, config: uvicorn.Config, cert_dir: tempfile.TemporaryDirectory | None = None):
        super().__init__(config)
        self._cert_dir = cert_dir

    def cleanup(self) -> None:
        """Remove the generated certificate and key, if any."""
        if self._cert_dir is not None:
            self._cert_dir.cleanup()
            self._cert_dir = None

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def parse_bind_address(bind_address: str) -> tuple[str, int] | None:
    """Parse ":8081" or "127.0.0.1:8080"; "0" or "" disables the endpoint."""
    if bind_address in ("", "0"):
        return None
    host, _, port = bind_address.rpartition(":")
    return host or "0.0.0.0", int(port)


def create_probe_app(is_ready: Callable[[], bool]) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz():
        return "ok"

    @app.get("/readyz", response_class=PlainTextResponse)
    async def readyz():
        if is_ready():
            return "ok"
        return PlainTextResponse("not ready", status_code=503)

    return app


def create_metrics_app() -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/metrics")
    async def metrics():
        return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    return app


def generate_self_signed_cert(directory: Path, common_name: str = "epg-operator-metrics") -> tuple[Path, Path]:
    """Write a self-signed certificate and key, returning (certfile, keyfile)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    cert_file = directory / "tls.crt"
    key_file = directory / "tls.key"
    cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_file.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return cert_file, key_file


def build_server(app: FastAPI, bind_address: str, secure: bool = False) -> OperatorServer | None:
    """Build a uvicorn server for the address, or None when the endpoint is disabled.

    HTTP/2 is never negotiated: uvicorn serves HTTP/1.1 through h11.
    """
    address = parse_bind_address(bind_address)
    if address is None:
        return None
    host, port = address
    ssl_kwargs = {}
    cert_dir = None
    if secure:
        cert_dir = tempfile.TemporaryDirectory(prefix="epg-operator-certs-")
        cert_file, key_file = generate_self_signed_cert(Path(cert_dir.name))
        ssl_kwargs = {"ssl_certfile": str(cert_file), "ssl_keyfile": str(key_file)}
    config = uvicorn.Config(app, host=host, port=port, http="h11", log_level="warning", **ssl_kwargs)
    logger.info(f"Serving {'https' if secure else 'http'} on {host}:{port}")
    return OperatorServer(config, cert_dir=cert_dir)
