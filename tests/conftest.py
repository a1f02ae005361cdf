"""Root conftest for the acmerenew test suite.

Provides certificate/key factories, a controllable clock, and
:class:`FakeAcmeCA`, an in-memory RFC 8555 server that plugs into
:class:`~acmerenew.acme.client.AcmeClient` as its urllib opener.
"""

from __future__ import annotations

import base64
import io
import json
import logging
import secrets
import sys
import urllib.error
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from cryptography import x509  # noqa: E402
from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec  # noqa: E402
from cryptography.x509.oid import NameOID  # noqa: E402

from acmerenew.config.settings import PollingSettings  # noqa: E402
from acmerenew.core.errors import BAD_NONCE  # noqa: E402
from acmerenew.core.jws import compute_thumbprint  # noqa: E402

MALFORMED = "urn:ietf:params:acme:error:malformed"
UNAUTHORIZED = "urn:ietf:params:acme:error:unauthorized"

# ---------------------------------------------------------------------------
# Keys and certificates
# ---------------------------------------------------------------------------


def make_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def key_pem(key) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def _general_names(sans) -> list[x509.GeneralName]:
    import ipaddress  # noqa: PLC0415

    names: list[x509.GeneralName] = []
    for name in sans:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(name)))
        except ValueError:
            names.append(x509.DNSName(name))
    return names


def make_certificate(  # noqa: PLR0913
    sans,
    *,
    key=None,
    issuer_key=None,
    issuer_name: x509.Name | None = None,
    not_after: datetime | None = None,
    days: int = 90,
    public_key=None,
) -> x509.Certificate:
    """Mint a leaf for *sans* (self-signed unless an issuer is given)."""
    key = key or make_key()
    sans = list(sans)
    now = datetime.now(UTC)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, sans[0])])
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name or subject)
        .public_key(public_key or key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(not_after or now + timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName(_general_names(sans)), critical=False)
    )
    return builder.sign(issuer_key or key, hashes.SHA256())


def make_issuer() -> tuple[ec.EllipticCurvePrivateKey, x509.Certificate]:
    key = make_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Fake ACME Intermediate")])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(key, hashes.SHA256())
    )
    return key, cert


def cert_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when :meth:`sleep` is called."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ---------------------------------------------------------------------------
# Fake ACME CA
# ---------------------------------------------------------------------------


def _b64d(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


class FakeResponse:
    """Just enough of ``http.client.HTTPResponse`` for AcmeClient."""

    def __init__(self, status: int, body: bytes = b"", headers: dict | None = None) -> None:
        self.status = status
        self._body = body
        self.headers = headers or {}

    def read(self) -> bytes:
        return self._body

    def close(self) -> None:
        pass


class FakeAcmeCA:
    """In-memory ACME server driven through ``opener.open(request)``.

    Knobs:

    - ``fail_names``: identifiers whose validation ends ``invalid``
    - ``pending_polls``: authorization polls that stay ``pending`` after
      the challenge response
    - ``processing_polls``: order polls that stay ``processing`` after
      finalize
    - ``outages``: path -> number of connection failures to inject
    - ``bad_nonce_once``: reject the next signed request with ``badNonce``
    - ``offer_http01``: include an http-01 challenge in authorizations
    - ``never_validate``: authorizations stay ``pending`` forever
    - ``webroot``: when set, challenge files are checked at validation time
    """

    BASE = "https://ca.test"
    DIRECTORY = BASE + "/directory"

    def __init__(self, webroot: Path | None = None) -> None:
        self.webroot = webroot
        self.issuer_key, self.issuer_cert = make_issuer()
        self.fail_names: set[str] = set()
        self.pending_polls = 1
        self.processing_polls = 1
        self.outages: dict[str, int] = {}
        self.bad_nonce_once = False
        self.offer_http01 = True
        self.never_validate = False
        self.cert_days = 90

        self.requests: list[tuple[str, str]] = []
        self.responded: list[str] = []
        self.published_when_responded: list[bool] = []
        self.issued: list[x509.Certificate] = []

        self._counter = 0
        self._nonces: set[str] = set()
        self._accounts: dict[str, dict] = {}  # kid -> jwk
        self._orders: dict[str, dict] = {}
        self._authzs: dict[str, dict] = {}
        self._challenges: dict[str, str] = {}  # challenge id -> authz id
        self._certs: dict[str, bytes] = {}

    # -- plumbing ------------------------------------------------------------

    def _next_id(self) -> str:
        self._counter += 1
        return str(self._counter)

    def _nonce(self) -> str:
        nonce = secrets.token_urlsafe(12)
        self._nonces.add(nonce)
        return nonce

    def _json(self, status: int, data: Any, headers: dict | None = None) -> FakeResponse:  # noqa: ANN401
        hdrs = {"Content-Type": "application/json", "Replay-Nonce": self._nonce()}
        hdrs.update(headers or {})
        return FakeResponse(status, json.dumps(data).encode(), hdrs)

    def _problem(self, url: str, status: int, ptype: str, detail: str) -> urllib.error.HTTPError:
        body = json.dumps({"type": ptype, "detail": detail, "status": status}).encode()
        headers = {"Content-Type": "application/problem+json", "Replay-Nonce": self._nonce()}
        return urllib.error.HTTPError(url, status, detail, headers, io.BytesIO(body))

    def open(self, req, timeout=None):  # noqa: ANN001, ANN201, ARG002
        url = req.full_url
        path = urlparse(url).path
        method = req.get_method()
        self.requests.append((method, path))

        if self.outages.get(path, 0) > 0:
            self.outages[path] -= 1
            msg = "connection refused"
            raise urllib.error.URLError(msg)

        if method == "GET" and path == "/directory":
            return self._json(
                200,
                {
                    "newNonce": self.BASE + "/new-nonce",
                    "newAccount": self.BASE + "/new-account",
                    "newOrder": self.BASE + "/new-order",
                },
            )
        if method == "HEAD" and path == "/new-nonce":
            return FakeResponse(200, b"", {"Replay-Nonce": self._nonce()})
        if method != "POST":
            raise self._problem(url, 405, "urn:ietf:params:acme:error:malformed", "method")

        envelope = json.loads(req.data)
        protected = json.loads(_b64d(envelope["protected"]))
        payload = json.loads(_b64d(envelope["payload"])) if envelope["payload"] else None

        nonce = protected.get("nonce")
        if self.bad_nonce_once or nonce not in self._nonces:
            self.bad_nonce_once = False
            raise self._problem(url, 400, BAD_NONCE, "stale nonce")
        self._nonces.discard(nonce)
        if protected.get("url") != url:
            raise self._problem(url, 401, UNAUTHORIZED, "url mismatch")

        if path == "/new-account":
            return self._new_account(protected)

        kid = protected.get("kid")
        if kid not in self._accounts:
            raise self._problem(url, 400, "urn:ietf:params:acme:error:accountDoesNotExist", "?")

        kind, _, ident = path.strip("/").partition("/")
        handler = getattr(self, f"_handle_{kind.replace('-', '_')}", None)
        if handler is None:
            raise self._problem(url, 404, "urn:ietf:params:acme:error:malformed", "no route")
        return handler(url, ident, payload, kid)

    # -- account / order -----------------------------------------------------

    def _new_account(self, protected: dict) -> FakeResponse:
        jwk = protected["jwk"]
        for kid, known in self._accounts.items():
            if known == jwk:
                return self._json(200, {"status": "valid"}, {"Location": kid})
        kid = f"{self.BASE}/acct/{self._next_id()}"
        self._accounts[kid] = jwk
        return self._json(201, {"status": "valid"}, {"Location": kid})

    def _handle_new_order(self, url, _ident, payload, kid) -> FakeResponse:  # noqa: ANN001
        oid = self._next_id()
        authz_ids = []
        for identifier in payload["identifiers"]:
            aid = self._next_id()
            cid = self._next_id()
            self._authzs[aid] = {
                "identifier": identifier,
                "status": "pending",
                "token": secrets.token_urlsafe(16),
                "challenge_id": cid,
                "responded": False,
                "polls": 0,
                "error": None,
                "kid": kid,
            }
            self._challenges[cid] = aid
            authz_ids.append(aid)
        self._orders[oid] = {
            "status": "pending",
            "identifiers": payload["identifiers"],
            "authz_ids": authz_ids,
            "polls": 0,
            "error": None,
        }
        return self._json(201, self._order_json(oid), {"Location": f"{self.BASE}/order/{oid}"})

    def _order_json(self, oid: str) -> dict:
        order = self._orders[oid]
        data = {
            "status": order["status"],
            "identifiers": order["identifiers"],
            "authorizations": [f"{self.BASE}/authz/{a}" for a in order["authz_ids"]],
            "finalize": f"{self.BASE}/finalize/{oid}",
        }
        if order["status"] == "valid":
            data["certificate"] = f"{self.BASE}/cert/{oid}"
        if order["error"]:
            data["error"] = order["error"]
        return data

    def _handle_order(self, url, oid, payload, kid) -> FakeResponse:  # noqa: ANN001, ARG002
        order = self._orders[oid]
        if order["status"] == "processing":
            if order["polls"] >= self.processing_polls:
                order["status"] = "valid"
            order["polls"] += 1
        return self._json(200, self._order_json(oid))

    # -- authorizations / challenges -----------------------------------------

    def _key_authorization(self, authz: dict) -> str:
        return f"{authz['token']}.{compute_thumbprint(self._accounts[authz['kid']])}"

    def _challenge_file(self, authz: dict) -> Path | None:
        if self.webroot is None:
            return None
        return self.webroot / ".well-known" / "acme-challenge" / authz["token"]

    def _resolve(self, aid: str) -> None:
        authz = self._authzs[aid]
        name = authz["identifier"]["value"]
        path = self._challenge_file(authz)
        if name in self.fail_names:
            authz["status"] = "invalid"
            authz["error"] = {
                "type": UNAUTHORIZED,
                "detail": f"Invalid response from http://{name}/.well-known/acme-challenge/: 404",
                "status": 403,
            }
        elif path is not None and (
            not path.is_file() or path.read_text() != self._key_authorization(authz)
        ):
            authz["status"] = "invalid"
            authz["error"] = {"type": UNAUTHORIZED, "detail": "key authorization mismatch"}
        else:
            authz["status"] = "valid"

        for order in self._orders.values():
            if aid not in order["authz_ids"] or order["status"] != "pending":
                continue
            statuses = [self._authzs[a]["status"] for a in order["authz_ids"]]
            if "invalid" in statuses:
                order["status"] = "invalid"
                order["error"] = authz["error"]
            elif all(s == "valid" for s in statuses):
                order["status"] = "ready"

    def _authz_json(self, aid: str) -> dict:
        authz = self._authzs[aid]
        cid = authz["challenge_id"]
        challenges = [
            {
                "type": "dns-01",
                "url": f"{self.BASE}/chall/{cid}-dns",
                "token": authz["token"],
                "status": "pending",
            },
        ]
        if self.offer_http01:
            http01 = {
                "type": "http-01",
                "url": f"{self.BASE}/chall/{cid}",
                "token": authz["token"],
                "status": authz["status"] if authz["status"] != "pending" else (
                    "processing" if authz["responded"] else "pending"
                ),
            }
            if authz["error"]:
                http01["error"] = authz["error"]
            challenges.append(http01)
        return {
            "identifier": authz["identifier"],
            "status": authz["status"],
            "challenges": challenges,
        }

    def _handle_authz(self, url, aid, payload, kid) -> FakeResponse:  # noqa: ANN001, ARG002
        authz = self._authzs[aid]
        if authz["responded"] and authz["status"] == "pending" and not self.never_validate:
            if authz["polls"] >= self.pending_polls:
                self._resolve(aid)
            authz["polls"] += 1
        return self._json(200, self._authz_json(aid))

    def _handle_chall(self, url, cid, payload, kid) -> FakeResponse:  # noqa: ANN001, ARG002
        aid = self._challenges[cid]
        authz = self._authzs[aid]
        authz["responded"] = True
        name = authz["identifier"]["value"]
        self.responded.append(name)
        order = next(o for o in self._orders.values() if aid in o["authz_ids"])
        files = [self._challenge_file(self._authzs[a]) for a in order["authz_ids"]]
        self.published_when_responded.append(
            all(f is not None and f.is_file() for f in files),
        )
        return self._json(
            200,
            {"type": "http-01", "url": url, "token": authz["token"], "status": "processing"},
        )

    # -- finalize / certificate ----------------------------------------------

    def _handle_finalize(self, url, oid, payload, kid) -> FakeResponse:  # noqa: ANN001, ARG002
        order = self._orders[oid]
        if order["status"] != "ready":
            raise self._problem(
                url,
                403,
                "urn:ietf:params:acme:error:orderNotReady",
                f"order is {order['status']}",
            )
        csr = x509.load_der_x509_csr(_b64d(payload["csr"]))
        assert csr.is_signature_valid
        sans = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        names = [str(v) for v in sans.get_values_for_type(x509.DNSName)]
        names += [str(v) for v in sans.get_values_for_type(x509.IPAddress)]
        leaf = make_certificate(
            names,
            issuer_key=self.issuer_key,
            issuer_name=self.issuer_cert.subject,
            public_key=csr.public_key(),
            days=self.cert_days,
        )
        self.issued.append(leaf)
        self._certs[oid] = cert_pem(leaf) + cert_pem(self.issuer_cert)
        order["status"] = "processing" if self.processing_polls else "valid"
        order["polls"] = 0
        return self._json(200, self._order_json(oid))

    def _handle_cert(self, url, oid, payload, kid) -> FakeResponse:  # noqa: ANN001, ARG002
        return FakeResponse(
            200,
            self._certs[oid],
            {"Content-Type": "application/pem-certificate-chain", "Replay-Nonce": self._nonce()},
        )

    # -- assertions helpers --------------------------------------------------

    def paths_requested(self) -> list[str]:
        return [p for _, p in self.requests]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_acmerenew_logger():
    """Undo ``configure_logging`` so caplog sees every record."""
    yield
    logger = logging.getLogger("acmerenew")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def webroot(tmp_path: Path) -> Path:
    root = tmp_path / "webroot"
    root.mkdir()
    return root


@pytest.fixture()
def fake_ca(webroot: Path) -> FakeAcmeCA:
    return FakeAcmeCA(webroot=webroot)


@pytest.fixture()
def polling_settings() -> PollingSettings:
    return PollingSettings(
        initial_delay_seconds=2,
        max_delay_seconds=30,
        backoff_factor=2,
        validation_timeout_seconds=300,
        finalization_timeout_seconds=300,
        run_timeout_seconds=900,
    )


@pytest.fixture()
def account_key_file(tmp_path: Path) -> Path:
    path = tmp_path / "account.key"
    path.write_bytes(key_pem(make_key()))
    return path


@pytest.fixture()
def cert_factory(tmp_path: Path):
    """Write a certificate (and optionally its key) into *tmp_path*.

    Returns ``(cert_path, key)``.
    """

    def _make(sans, *, days: int = 60, not_after=None, path=None, key=None):
        key = key or make_key()
        cert = make_certificate(sans, key=key, days=days, not_after=not_after)
        target = Path(path) if path else tmp_path / "cert.pem"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(cert_pem(cert))
        return target, key

    return _make


@pytest.fixture()
def config_data(tmp_path: Path, webroot: Path, account_key_file: Path) -> dict:
    """Return a complete, valid config mapping rooted in *tmp_path*."""
    return {
        "certificate": {
            "common_name": "example.com",
            "sans": ["example.com", "www.example.com"],
            "service_name": "www",
        },
        "acme": {
            "directory_url": FakeAcmeCA.DIRECTORY,
            "account_key_path": str(account_key_file),
            "contact_email": "ops@example.com",
        },
        "challenge": {"publisher": "webroot", "webroot": str(webroot)},
        "install": {"dir": str(tmp_path / "certs")},
        "renewal": {"threshold_days": 30},
        "logging": {"level": "DEBUG", "format": "text"},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, config_data: dict) -> Path:
    """Write *config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg
