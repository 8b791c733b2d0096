import base64
import json

import httpx
import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from epg_operator.fabric.apic import ApicClient


def _imdata(items: list, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"totalCount": str(len(items)), "imdata": items})


def _error(status_code: int, text: str) -> httpx.Response:
    return _imdata([{"error": {"attributes": {"code": str(status_code), "text": text}}}], status_code)


class FakeApic:
    """Minimal APIC: managed objects keyed by dn plus aaaLogin and request signing."""

    def __init__(self, password: str = "secret", public_key=None):
        self.password = password
        self.public_key = public_key
        self.objects: dict[str, tuple[str, dict]] = {}
        self.requests: list[httpx.Request] = []
        self.valid_tokens: set[str] = set()
        self.logins = 0
        self.unresolvable_domains: set[str] = set()
        self.fail_next: tuple[int, str] | None = None

    def expire_tokens(self):
        self.valid_tokens.clear()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/aaaLogin.json":
            attributes = json.loads(request.content)["aaaUser"]["attributes"]
            if attributes["pwd"] != self.password:
                return _error(401, "Authentication failed")
            self.logins += 1
            token = f"tok-{self.logins}"
            self.valid_tokens.add(token)
            return _imdata([{"aaaLogin": {"attributes": {"token": token}}}])

        if not self._authorized(request):
            return _error(403, "Token was invalid (Error: Token timeout)")

        if self.fail_next is not None:
            status_code, text = self.fail_next
            self.fail_next = None
            return _error(status_code, text)

        if path == "/api/node/class/topSystem.json":
            return _imdata([{"topSystem": {"attributes": {"name": "spine-1", "role": "spine"}}}])

        if path.startswith("/api/node/class/"):
            parent_dn, cls = path[len("/api/node/class/") : -len(".json")].rsplit("/", 1)
            if parent_dn not in self.objects:
                return _error(400, f"Request failed, unresolved class for {parent_dn}/{cls} may not exists")
            return _imdata(self._children(parent_dn, cls))

        dn = path[len("/api/mo/") : -len(".json")]
        if request.method == "POST":
            for cls, mo in json.loads(request.content).items():
                attributes = mo["attributes"]
                if cls == "fvRsDomAtt" and attributes["tDn"] in self.unresolvable_domains:
                    continue
                self.objects[attributes["dn"]] = (cls, attributes)
            return _imdata([])
        if request.method == "DELETE":
            if dn not in self.objects:
                return _error(404, f"{dn} not found")
            for child in [key for key in self.objects if key == dn or key.startswith(f"{dn}/")]:
                del self.objects[child]
            return _imdata([])
        if request.url.params.get("query-target") == "children":
            return _imdata(self._children(dn, request.url.params.get("target-subtree-class")))
        if dn in self.objects:
            cls, attributes = self.objects[dn]
            return _imdata([{cls: {"attributes": attributes}}])
        return _imdata([])

    def _children(self, parent_dn: str, cls: str | None) -> list[dict]:
        return [
            {child_cls: {"attributes": attributes}}
            for dn, (child_cls, attributes) in self.objects.items()
            if dn.startswith(f"{parent_dn}/") and (cls is None or child_cls == cls)
        ]

    def _authorized(self, request: httpx.Request) -> bool:
        cookies = dict(part.split("=", 1) for part in request.headers.get("cookie", "").split("; ") if "=" in part)
        if "APIC-Request-Signature" in cookies:
            if self.public_key is None:
                return False
            payload = f"{request.method}{request.url.raw_path.decode()}{request.content.decode()}"
            try:
                self.public_key.verify(
                    base64.b64decode(cookies["APIC-Request-Signature"]),
                    payload.encode(),
                    padding.PKCS1v15(),
                    hashes.SHA256(),
                )
            except InvalidSignature:
                return False
            return True
        return cookies.get("APIC-cookie") in self.valid_tokens


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_key_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def fake_apic():
    return FakeApic()


@pytest.fixture
def apic_client(fake_apic):
    return ApicClient(host="apic.test", user="admin", password="secret", transport=httpx.MockTransport(fake_apic.handler))


@pytest.fixture
def signed_fake_apic(rsa_key):
    return FakeApic(public_key=rsa_key.public_key())
