"""
测试共用的夹具：内存中的 Vault 替身（httpx.MockTransport）与证书构造工具。
"""

import base64
import datetime
import ipaddress
import json
import re
import textwrap
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from src.connection_manager.pki_engine.vault_engine import VaultAuth, VaultPKIEngine

NAME_OIDS = {
    "CN": NameOID.COMMON_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "C": NameOID.COUNTRY_NAME,
    "L": NameOID.LOCALITY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "E": NameOID.EMAIL_ADDRESS,
}

DFSP_SUBJECT = {
    "CN": "dfsp.test.io",
    "O": "TestOrg",
    "OU": "Payments",
    "C": "US",
    "L": "Austin",
    "ST": "Texas",
    "E": "ops@dfsp.test.io",
}


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _hash(bits: Optional[int]):
    return hashes.SHA512() if bits == 512 else hashes.SHA256()


class PkiFactory:
    """构造测试用的 CSR（PEM 文本）与证书（x509.Certificate）。"""

    def __init__(self, key_2048, key_4096, other_key):
        self.key_2048 = key_2048
        self.key_4096 = key_4096
        self.other_key = other_key

    @staticmethod
    def name(subject: Dict[str, str]) -> x509.Name:
        return x509.Name([x509.NameAttribute(NAME_OIDS[k], v) for k, v in subject.items()])

    @staticmethod
    def key_pem(key) -> str:
        return key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        ).decode()

    @staticmethod
    def public_key_pem(key) -> str:
        return key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode()

    @staticmethod
    def pem(cert) -> str:
        return cert.public_bytes(serialization.Encoding.PEM).decode()

    def csr(
        self,
        key=None,
        subject: Optional[Dict[str, str]] = None,
        dns: Iterable[str] = ("dfsp.test.io",),
        ips: Iterable[str] = (),
        algorithm=None,
    ) -> str:
        key = key or self.key_2048
        builder = x509.CertificateSigningRequestBuilder().subject_name(self.name(subject or DFSP_SUBJECT))
        names: List[x509.GeneralName] = [x509.DNSName(d) for d in dns]
        names += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ips]
        if names:
            builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)
        return self.pem(builder.sign(key, algorithm or hashes.SHA256()))

    def certificate(
        self,
        key=None,
        subject: Optional[Dict[str, str]] = None,
        issuer: Optional[x509.Certificate] = None,
        issuer_key=None,
        is_ca: bool = False,
        usages: Iterable[x509.ObjectIdentifier] = (ExtendedKeyUsageOID.CLIENT_AUTH,),
        dns: Iterable[str] = (),
        not_before: Optional[datetime.datetime] = None,
        days: int = 365,
        algorithm=None,
        basic_constraints: bool = True,
    ) -> x509.Certificate:
        """未提供 issuer 时生成自签名证书。"""
        key = key or self.key_2048
        name = self.name(subject or {"CN": "test", "O": "TestOrg"})
        not_before = not_before or _now() - datetime.timedelta(minutes=5)
        builder = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(issuer.subject if issuer is not None else name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_before + datetime.timedelta(days=days))
        )
        if basic_constraints:
            builder = builder.add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        usages = list(usages)
        if usages and not is_ca:
            builder = builder.add_extension(x509.ExtendedKeyUsage(usages), critical=False)
        dns = list(dns)
        if dns:
            builder = builder.add_extension(x509.SubjectAlternativeName([x509.DNSName(d) for d in dns]), critical=False)
        return builder.sign(issuer_key or key, algorithm or hashes.SHA256())

    def root(self, key=None, cn: str = "Test Root CA") -> x509.Certificate:
        return self.certificate(key=key, subject={"CN": cn, "O": "TestOrg"}, is_ca=True)

    def corrupt_subject(self, kind: str = "csr") -> str:
        """
        生成 CN 为无效 UTF-8 字节的 CSR 或证书 PEM：可以加载，但访问主题时才会解析失败。
        签名不再匹配，加载时不校验签名。
        """
        marker = "A" * 16
        subject = {"CN": marker, "O": "TestOrg"}
        if kind == "csr":
            der = x509.load_pem_x509_csr(self.csr(subject=subject).encode()).public_bytes(serialization.Encoding.DER)
            label = "CERTIFICATE REQUEST"
        else:
            der = self.certificate(subject=subject).public_bytes(serialization.Encoding.DER)
            label = "CERTIFICATE"
        der = der.replace(marker.encode(), b"\xff\xfe\xfd\xfc" * 4)
        body = "\n".join(textwrap.wrap(base64.b64encode(der).decode(), 64))
        return f"-----BEGIN {label}-----\n{body}\n-----END {label}-----\n"


class FakeVault:
    """
    只实现引擎用到的 Vault 接口：登录、KV v1、pki / pki_int 的签发接口。
    签发使用 cryptography 完成，signature_bits=512 时使用 SHA-512。
    """

    def __init__(self, lease_duration: int = 0):
        self.kv: Dict[str, Dict[str, Any]] = {}
        self.lease_duration = lease_duration
        self.login_count = 0
        self.fail_logins = 0
        self.requests: List[Tuple[str, str]] = []
        self.revoked: List[str] = []
        self.root_key = None
        self.root_cert: Optional[x509.Certificate] = None
        self.intermediate_key = None
        self.intermediate_cert: Optional[x509.Certificate] = None
        self.transport = httpx.MockTransport(self.handle)

    # region 工具

    @staticmethod
    def _error(status: int, *errors: str) -> httpx.Response:
        return httpx.Response(status, json={"errors": list(errors)})

    @staticmethod
    def _data(data: Dict[str, Any]) -> httpx.Response:
        return httpx.Response(200, json={"data": data})

    @staticmethod
    def _serial(cert: x509.Certificate) -> str:
        raw = format(cert.serial_number, "x")
        raw = raw if len(raw) % 2 == 0 else f"0{raw}"
        return ":".join(raw[i:i + 2] for i in range(0, len(raw), 2))

    @staticmethod
    def _hours(ttl: Any, default: int = 24) -> int:
        if isinstance(ttl, str) and ttl.endswith("h"):
            return int(ttl[:-1])
        return default

    @staticmethod
    def _generate_key(key_type: str, key_bits: int):
        if key_type == "ec":
            return ec.generate_private_key(ec.SECP256R1())
        return rsa.generate_private_key(public_exponent=65537, key_size=key_bits or 2048)

    @staticmethod
    def _subject(body: Dict[str, Any]) -> x509.Name:
        fields = [
            ("common_name", NameOID.COMMON_NAME),
            ("organization", NameOID.ORGANIZATION_NAME),
            ("ou", NameOID.ORGANIZATIONAL_UNIT_NAME),
            ("country", NameOID.COUNTRY_NAME),
            ("locality", NameOID.LOCALITY_NAME),
            ("province", NameOID.STATE_OR_PROVINCE_NAME),
        ]
        return x509.Name([x509.NameAttribute(oid, body[field]) for field, oid in fields if body.get(field)])

    def _sign_csr(self, csr_pem: str, issuer_cert, issuer_key, bits=None, is_ca=False, hours=24) -> x509.Certificate:
        csr = x509.load_pem_x509_csr(csr_pem.encode())
        now = _now()
        builder = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(issuer_cert.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=1))
            .not_valid_after(now + datetime.timedelta(hours=hours))
            .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        )
        if not is_ca:
            builder = builder.add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
                critical=False,
            )
            try:
                san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
                builder = builder.add_extension(san, critical=False)
            except x509.ExtensionNotFound:
                pass
        return builder.sign(issuer_key, _hash(bits))

    # endregion

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/v1/"):]
        method = request.method
        self.requests.append((method, path))
        body = json.loads(request.content) if request.content else {}

        if path.startswith("auth/") and path.endswith("/login"):
            return self._login(body)
        if not request.headers.get("X-Vault-Token"):
            return self._error(403, "permission denied")

        routes = {
            ("DELETE", "pki/root"): self._delete_root,
            ("POST", "pki/root/generate/exported"): self._generate_root,
            ("POST", "pki/root/sign-intermediate"): self._sign_intermediate,
            ("POST", "pki_int/intermediate/generate/exported"): self._generate_intermediate,
            ("POST", "pki_int/intermediate/set-signed"): self._set_intermediate,
            ("POST", "pki/revoke"): self._revoke,
            ("POST", "pki/config/ca"): self._config_ca,
            ("GET", "pki/ca_chain"): self._ca_pem,
            ("GET", "pki/ca/pem"): self._ca_pem,
        }
        route = routes.get((method, path))
        if route is not None:
            return route(body)
        if method == "POST" and path.startswith("pki/sign/"):
            return self._sign(body, self.root_cert, self.root_key)
        if method == "POST" and path.startswith("pki_int/sign/"):
            return self._sign(body, self.intermediate_cert, self.intermediate_key)
        if method == "POST" and path.startswith("pki/issue/"):
            return self._issue(body)
        return self._kv(method, path, request)

    def _login(self, body: Dict[str, Any]) -> httpx.Response:
        self.login_count += 1
        if self.fail_logins > 0:
            self.fail_logins -= 1
            return self._error(500, "login failed")
        if not (body.get("role_id") or body.get("jwt")):
            return self._error(400, "missing credentials")
        return httpx.Response(
            200,
            json={"auth": {"client_token": f"token-{self.login_count}", "lease_duration": self.lease_duration}},
        )

    # region pki

    def _delete_root(self, body) -> httpx.Response:
        self.root_cert = None
        self.root_key = None
        return httpx.Response(204)

    def _generate_root(self, body) -> httpx.Response:
        key = self._generate_key(body.get("key_type", "rsa"), body.get("key_bits"))
        name = self._subject(body)
        now = _now()
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=1))
            .not_valid_after(now + datetime.timedelta(hours=self._hours(body.get("ttl"), 87600)))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(key, _hash(body.get("signature_bits")))
        )
        self.root_key, self.root_cert = key, cert
        return self._data({
            "certificate": PkiFactory.pem(cert),
            "issuing_ca": PkiFactory.pem(cert),
            "private_key": PkiFactory.key_pem(key),
            "serial_number": self._serial(cert),
        })

    def _sign_intermediate(self, body) -> httpx.Response:
        if self.root_cert is None:
            return self._error(400, "no default issuer currently configured")
        cert = self._sign_csr(body["csr"], self.root_cert, self.root_key, is_ca=True, hours=8760)
        return self._data({"certificate": PkiFactory.pem(cert), "serial_number": self._serial(cert)})

    def _generate_intermediate(self, body) -> httpx.Response:
        key = self._generate_key(body.get("key_type", "rsa"), body.get("key_bits"))
        csr = x509.CertificateSigningRequestBuilder().subject_name(self._subject(body)).sign(key, hashes.SHA256())
        self.intermediate_key = key
        return self._data({
            "csr": csr.public_bytes(serialization.Encoding.PEM).decode(),
            "private_key": PkiFactory.key_pem(key),
        })

    def _set_intermediate(self, body) -> httpx.Response:
        self.intermediate_cert = x509.load_pem_x509_certificate(body["certificate"].encode())
        return httpx.Response(204)

    def _sign(self, body, issuer_cert, issuer_key) -> httpx.Response:
        if issuer_cert is None:
            return self._error(400, "no default issuer currently configured")
        hours = self._hours(body.get("ttl"))
        cert = self._sign_csr(body["csr"], issuer_cert, issuer_key, bits=body.get("signature_bits"), hours=hours)
        return self._data({
            "certificate": PkiFactory.pem(cert),
            "issuing_ca": PkiFactory.pem(issuer_cert),
            "ca_chain": [PkiFactory.pem(issuer_cert)],
            "serial_number": self._serial(cert),
        })

    def _issue(self, body) -> httpx.Response:
        if self.root_cert is None:
            return self._error(400, "no default issuer currently configured")
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        names: List[x509.GeneralName] = [x509.DNSName(d) for d in (body.get("alt_names") or "").split(",") if d]
        names += [
            x509.IPAddress(ipaddress.ip_address(ip)) for ip in (body.get("ip_sans") or "").split(",") if ip
        ]
        builder = x509.CertificateSigningRequestBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, body["common_name"])])
        )
        if names:
            builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)
        csr_pem = builder.sign(key, hashes.SHA256()).public_bytes(serialization.Encoding.PEM).decode()
        cert = self._sign_csr(csr_pem, self.root_cert, self.root_key)
        return self._data({
            "certificate": PkiFactory.pem(cert),
            "private_key": PkiFactory.key_pem(key),
            "issuing_ca": PkiFactory.pem(self.root_cert),
            "ca_chain": [PkiFactory.pem(self.root_cert)],
            "serial_number": self._serial(cert),
        })

    def _revoke(self, body) -> httpx.Response:
        self.revoked.append(body["serial_number"])
        return self._data({"revocation_time": int(_now().timestamp())})

    def _config_ca(self, body) -> httpx.Response:
        bundle = body["pem_bundle"]
        key_block = re.search(r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", bundle, re.S)
        certs = re.findall(r"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----", bundle, re.S)
        if key_block is None or not certs:
            return self._error(400, "the given certificate is not marked for CA use")
        self.root_key = serialization.load_pem_private_key(key_block.group(0).encode(), password=None)
        self.root_cert = x509.load_pem_x509_certificate(certs[0].encode())
        return httpx.Response(204)

    def _ca_pem(self, body) -> httpx.Response:
        if self.root_cert is None:
            return httpx.Response(200, text="")
        return httpx.Response(200, text=PkiFactory.pem(self.root_cert))

    # endregion

    def _kv(self, method: str, path: str, request: httpx.Request) -> httpx.Response:
        if method == "GET" and request.url.params.get("list") == "true":
            prefix = path.rstrip("/") + "/"
            keys = set()
            for stored in self.kv:
                if stored.startswith(prefix):
                    rest = stored[len(prefix):]
                    head, sep, _ = rest.partition("/")
                    keys.add(head + sep)
            if not keys:
                return self._error(404)
            return self._data({"keys": sorted(keys)})
        if method == "GET":
            if path not in self.kv:
                return self._error(404)
            return self._data(self.kv[path])
        if method in ("POST", "PUT"):
            self.kv[path] = json.loads(request.content)
            return httpx.Response(204)
        if method == "DELETE":
            self.kv.pop(path, None)
            return httpx.Response(204)
        return self._error(405, "unsupported operation")


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_key_4096():
    return rsa.generate_private_key(public_exponent=65537, key_size=4096)


@pytest.fixture(scope="session")
def other_rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def pki(rsa_key, rsa_key_4096, other_rsa_key):
    return PkiFactory(rsa_key, rsa_key_4096, other_rsa_key)


@pytest.fixture
def fake_vault():
    return FakeVault()


@pytest.fixture
async def engine(fake_vault):
    """已登录的引擎：2048 位密钥配置，不加载公共根证书。"""
    engine = VaultPKIEngine(
        "http://vault.test:8233",
        VaultAuth(role_id="role-id", secret_id="secret-id"),
        key_length=2048,
        trusted_roots=(),
        transport=fake_vault.transport,
    )
    await engine.connect()
    yield engine
    await engine.aclose()
