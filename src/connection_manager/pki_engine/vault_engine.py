"""
基于 HashiCorp Vault 的 PKI 引擎实现。

- 认证：AppRole 或 Kubernetes ServiceAccount 登录，租约到期前 10 秒后台自动重新认证；
- CA：根 CA / 中间 CA 的创建、CSR 签发、服务端证书签发与吊销；
- 存储：KV v1 挂载点下按 DFSP 组织的登记、CA、JWS、服务端证书等密钥；
- 网关：向专用挂载点推送客户端证书包与 IP 白名单。

公开接口：
- VaultAuth / VaultMounts: 认证方式与挂载点配置
- VaultPaths: KV 中各类密钥的路径前缀
- validate_id: 路径中的数字 ID 校验
- VaultPKIEngine: 引擎实现
"""

from __future__ import annotations

import asyncio
import contextlib
import ipaddress
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from loguru import logger
from pydantic import BaseModel

from ..errors import ExternalProcessError, NotFoundError, ValidationError
from . import parser
from .engine import PKIEngine
from .schemas import SIGNATURE_BITS, CAInitialInfo, CSRParameters, IntermediateCA, KeyCSRPair, RootCA
from .validations_configuration import ValidationsConfiguration
from .vault_client import VaultClient

# 重新认证的最大延迟（约 24.8 天）
MAX_REFRESH_DELAY_SECONDS = 2147483.647
REFRESH_MARGIN_SECONDS = 10

CERT_SIGNED = "CERT_SIGNED"

_MISSING = object()

CSR_SUBJECT_OIDS = {
    "CN": NameOID.COMMON_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "C": NameOID.COUNTRY_NAME,
    "L": NameOID.LOCALITY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "E": NameOID.EMAIL_ADDRESS,
    "emailAddress": NameOID.EMAIL_ADDRESS,
}


class VaultAuth(BaseModel):
    method: Literal["APP_ROLE", "K8S"] = "APP_ROLE"
    role_id: str = ""
    secret_id: str = ""
    k8s_role: str = ""
    k8s_token_file: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    k8s_mount: str = "kubernetes"


class VaultMounts(BaseModel):
    pki: str = "pki"
    intermediate_pki: str = "pki_int"
    kv: str = "secrets"
    dfsp_client_cert_bundle: str = "onboarding_pm4mls"
    dfsp_internal_ip_whitelist_bundle: str = "whitelist_pm4mls"
    dfsp_external_ip_whitelist_bundle: str = "whitelist_fsps"


class VaultPaths:
    DFSP_OUTBOUND_ENROLLMENT = "dfsp-outbound-enrollment"
    DFSP_INBOUND_ENROLLMENT = "dfsp-inbound-enrollment"
    DFSP_CA = "dfsp-ca"
    JWS_CERTS = "dfsp-jws-certs"
    EXTERNAL_JWS_CERTS = "dfsp-external-jws-certs"
    DFSP_SERVER_CERT = "dfsp-server-cert"
    HUB_SERVER_CERT = "hub-server-cert"
    HUB_CA_DETAILS = "hub-ca-details"
    HUB_ENDPOINTS = "hub-endpoints"


def validate_id(value: Any, name: str) -> None:
    """
    路径中使用的 ID 必须是非负整数（或其字符串形式）。
    :raises ValueError: "<name> is not a number"
    """
    if isinstance(value, bool) or not str(value).strip().isdigit():
        raise ValueError(f"{name} is not a number")


def _validate_key(value: Any, name: str) -> None:
    text = str(value) if value is not None else ""
    if not text or "/" in text or text in (".", ".."):
        raise ValueError(f"{name} is not a valid key")


def _signature_bits(signature_algorithm: Optional[str]) -> Optional[int]:
    if not signature_algorithm:
        return None
    bits = SIGNATURE_BITS.get(signature_algorithm)
    if bits is None:
        raise ValidationError(f"Unsupported signature algorithm: {signature_algorithm}")
    return bits


class VaultPKIEngine(PKIEngine):
    def __init__(
        self,
        endpoint: str,
        auth: VaultAuth,
        mounts: Optional[VaultMounts] = None,
        pki_server_role: str = "example.com",
        pki_client_role: str = "example.com",
        sign_expiry_hours: int = 43800,
        key_length: int = 4096,
        key_algorithm: str = "rsa",
        timeout: float = 30.0,
        reconnect_retry_seconds: float = 10.0,
        validations_config: Optional[ValidationsConfiguration] = None,
        trusted_roots=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(validations_config or ValidationsConfiguration.for_key_length(key_length), trusted_roots)
        self.auth = auth
        self.mounts = mounts or VaultMounts()
        self.pki_server_role = pki_server_role
        self.pki_client_role = pki_client_role
        self.sign_expiry_hours = sign_expiry_hours
        self.key_length = key_length
        self.key_algorithm = key_algorithm
        self.reconnect_retry_seconds = reconnect_retry_seconds
        self.client = VaultClient(endpoint, timeout=timeout, transport=transport)
        self._refresh_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # 认证与重新认证
    # ------------------------------------------------------------------

    async def _login(self) -> Dict[str, Any]:
        if self.auth.method == "APP_ROLE":
            return await self.client.login_app_role(self.auth.role_id, self.auth.secret_id)
        if self.auth.method == "K8S":
            jwt = Path(self.auth.k8s_token_file).read_text(encoding="utf-8").strip()
            return await self.client.login_kubernetes(self.auth.k8s_mount, self.auth.k8s_role, jwt)
        raise ValueError(f"Unsupported auth method: {self.auth.method}")

    async def connect(self) -> None:
        """
        登录 Vault 并安排下一次重新认证。
        重复调用时会先取消尚未执行的重新认证任务。
        :raises ExternalProcessError: 登录失败。
        """
        current = asyncio.current_task()
        if self._refresh_task is not None and self._refresh_task is not current:
            self._refresh_task.cancel()
            self._refresh_task = None

        auth = await self._login()
        lease = auth.get("lease_duration") or 0
        logger.info(f"Vault 登录成功，认证方式: {self.auth.method}, 租约: {lease}s")
        self._schedule_refresh(lease)

    def _schedule_refresh(self, lease_duration: float) -> None:
        if lease_duration <= 0:
            self._refresh_task = None
            return
        delay = min(max(lease_duration - REFRESH_MARGIN_SECONDS, 0), MAX_REFRESH_DELAY_SECONDS)
        self._refresh_task = asyncio.create_task(self._refresh_after(delay))

    async def _refresh_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        while True:
            try:
                await self.connect()
                return
            except Exception as e:
                logger.error(f"Vault 重新认证失败，{self.reconnect_retry_seconds}s 后重试: {e}")
                await asyncio.sleep(self.reconnect_retry_seconds)

    def disconnect(self) -> None:
        """取消尚未执行的重新认证任务。"""
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    async def aclose(self) -> None:
        task = self._refresh_task
        self.disconnect()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.client.aclose()

    # ------------------------------------------------------------------
    # KV 密钥
    # ------------------------------------------------------------------

    async def set_secret(self, key: str, value: Dict[str, Any]) -> None:
        await self.client.write(f"{self.mounts.kv}/{key}", value)

    async def get_secret(self, key: str, default: Any = _MISSING) -> Any:
        """
        读取密钥。
        :param default: 密钥不存在时返回的值；未提供则抛出 NotFoundError。
        """
        data = await self.client.read(f"{self.mounts.kv}/{key}")
        if data is None:
            if default is _MISSING:
                raise NotFoundError(f"Secret {key} not found")
            return default
        return data

    async def list_secrets(self, key: str) -> List[str]:
        return await self.client.list(f"{self.mounts.kv}/{key}")

    async def delete_secret(self, key: str) -> None:
        await self.client.delete(f"{self.mounts.kv}/{key}")

    async def delete_all_dfsp_data(self, dfsp_id: Any) -> None:
        """并发删除某 DFSP 的全部数据；不存在的类别视为无操作。"""
        validate_id(dfsp_id, "dfspId")
        await asyncio.gather(
            self.delete_all_dfsp_outbound_enrollments(dfsp_id),
            self.delete_all_dfsp_inbound_enrollments(dfsp_id),
            self.delete_dfsp_ca(dfsp_id),
            self.delete_dfsp_jws_certs(dfsp_id),
            self.delete_dfsp_server_certs(dfsp_id),
        )
        logger.info(f"已删除 DFSP {dfsp_id} 的全部数据")

    # region 出站登记
    async def set_dfsp_outbound_enrollment(self, dfsp_id: Any, en_id: Any, value: Dict[str, Any]) -> None:
        validate_id(dfsp_id, "dfspId")
        validate_id(en_id, "enId")
        await self.set_secret(f"{VaultPaths.DFSP_OUTBOUND_ENROLLMENT}/{dfsp_id}/{en_id}", value)

    async def get_dfsp_outbound_enrollment(self, dfsp_id: Any, en_id: Any) -> Dict[str, Any]:
        validate_id(dfsp_id, "dfspId")
        validate_id(en_id, "enId")
        return await self.get_secret(f"{VaultPaths.DFSP_OUTBOUND_ENROLLMENT}/{dfsp_id}/{en_id}")

    async def delete_dfsp_outbound_enrollment(self, dfsp_id: Any, en_id: Any) -> None:
        validate_id(dfsp_id, "dfspId")
        validate_id(en_id, "enId")
        await self.delete_secret(f"{VaultPaths.DFSP_OUTBOUND_ENROLLMENT}/{dfsp_id}/{en_id}")

    async def delete_all_dfsp_outbound_enrollments(self, dfsp_id: Any) -> None:
        validate_id(dfsp_id, "dfspId")
        keys = await self.list_secrets(f"{VaultPaths.DFSP_OUTBOUND_ENROLLMENT}/{dfsp_id}")
        await asyncio.gather(*(self.delete_dfsp_outbound_enrollment(dfsp_id, en_id) for en_id in keys))

    async def get_dfsp_outbound_enrollments(self, dfsp_id: Any) -> List[Dict[str, Any]]:
        validate_id(dfsp_id, "dfspId")
        keys = await self.list_secrets(f"{VaultPaths.DFSP_OUTBOUND_ENROLLMENT}/{dfsp_id}")
        return list(await asyncio.gather(*(self.get_dfsp_outbound_enrollment(dfsp_id, en_id) for en_id in keys)))
    # endregion

    # region 入站登记
    async def set_dfsp_inbound_enrollment(self, dfsp_id: Any, en_id: Any, value: Dict[str, Any]) -> None:
        validate_id(dfsp_id, "dfspId")
        validate_id(en_id, "enId")
        await self.set_secret(f"{VaultPaths.DFSP_INBOUND_ENROLLMENT}/{dfsp_id}/{en_id}", value)

    async def get_dfsp_inbound_enrollment(self, dfsp_id: Any, en_id: Any) -> Dict[str, Any]:
        validate_id(dfsp_id, "dfspId")
        validate_id(en_id, "enId")
        return await self.get_secret(f"{VaultPaths.DFSP_INBOUND_ENROLLMENT}/{dfsp_id}/{en_id}")

    async def delete_dfsp_inbound_enrollment(self, dfsp_id: Any, en_id: Any) -> None:
        validate_id(dfsp_id, "dfspId")
        validate_id(en_id, "enId")
        await self.delete_secret(f"{VaultPaths.DFSP_INBOUND_ENROLLMENT}/{dfsp_id}/{en_id}")

    async def delete_all_dfsp_inbound_enrollments(self, dfsp_id: Any) -> None:
        validate_id(dfsp_id, "dfspId")
        keys = await self.list_secrets(f"{VaultPaths.DFSP_INBOUND_ENROLLMENT}/{dfsp_id}")
        await asyncio.gather(*(self.delete_dfsp_inbound_enrollment(dfsp_id, en_id) for en_id in keys))

    async def get_dfsp_inbound_enrollments(self, dfsp_id: Any) -> List[Dict[str, Any]]:
        validate_id(dfsp_id, "dfspId")
        keys = await self.list_secrets(f"{VaultPaths.DFSP_INBOUND_ENROLLMENT}/{dfsp_id}")
        return list(await asyncio.gather(*(self.get_dfsp_inbound_enrollment(dfsp_id, en_id) for en_id in keys)))
    # endregion

    # region DFSP CA
    async def set_dfsp_ca(self, dfsp_id: Any, value: Dict[str, Any]) -> None:
        validate_id(dfsp_id, "dfspId")
        await self.set_secret(f"{VaultPaths.DFSP_CA}/{dfsp_id}", value)

    async def get_dfsp_ca(self, dfsp_id: Any, default: Any = _MISSING) -> Dict[str, Any]:
        validate_id(dfsp_id, "dfspId")
        return await self.get_secret(f"{VaultPaths.DFSP_CA}/{dfsp_id}", default)

    async def delete_dfsp_ca(self, dfsp_id: Any) -> None:
        validate_id(dfsp_id, "dfspId")
        await self.delete_secret(f"{VaultPaths.DFSP_CA}/{dfsp_id}")
    # endregion

    # region DFSP JWS
    async def set_dfsp_jws_certs(self, dfsp_id: Any, value: Dict[str, Any]) -> None:
        _validate_key(dfsp_id, "dfspId")
        await self.set_secret(f"{VaultPaths.JWS_CERTS}/{dfsp_id}", value)

    async def set_dfsp_external_jws_certs(self, dfsp_id: Any, value: Dict[str, Any]) -> None:
        _validate_key(dfsp_id, "dfspId")
        await self.set_secret(f"{VaultPaths.EXTERNAL_JWS_CERTS}/{dfsp_id}", value)

    async def get_dfsp_jws_certs(self, dfsp_id: Any) -> Dict[str, Any]:
        _validate_key(dfsp_id, "dfspId")
        return await self.get_secret(f"{VaultPaths.JWS_CERTS}/{dfsp_id}")

    async def get_dfsp_external_jws_certs(self, dfsp_id: Any) -> Dict[str, Any]:
        _validate_key(dfsp_id, "dfspId")
        return await self.get_secret(f"{VaultPaths.EXTERNAL_JWS_CERTS}/{dfsp_id}")

    async def get_all_dfsp_jws_certs(self) -> List[Dict[str, Any]]:
        """并发读取全部原生与外部 JWS 证书，原生在前。"""
        native_keys, external_keys = await asyncio.gather(
            self.list_secrets(VaultPaths.JWS_CERTS),
            self.list_secrets(VaultPaths.EXTERNAL_JWS_CERTS),
        )
        native, external = await asyncio.gather(
            asyncio.gather(*(self.get_dfsp_jws_certs(dfsp_id) for dfsp_id in native_keys)),
            asyncio.gather(*(self.get_dfsp_external_jws_certs(dfsp_id) for dfsp_id in external_keys)),
        )
        return [*native, *external]

    async def delete_dfsp_jws_certs(self, dfsp_id: Any) -> None:
        _validate_key(dfsp_id, "dfspId")
        await self.delete_secret(f"{VaultPaths.JWS_CERTS}/{dfsp_id}")
    # endregion

    # region Hub
    async def set_hub_server_cert(self, value: Dict[str, Any]) -> None:
        await self.set_secret(VaultPaths.HUB_SERVER_CERT, value)

    async def get_hub_server_cert(self, default: Any = _MISSING) -> Dict[str, Any]:
        return await self.get_secret(VaultPaths.HUB_SERVER_CERT, default)

    async def delete_hub_server_cert(self) -> None:
        await self.delete_secret(VaultPaths.HUB_SERVER_CERT)

    async def set_hub_ca_cert_details(self, value: Dict[str, Any]) -> None:
        await self.set_secret(VaultPaths.HUB_CA_DETAILS, value)

    async def get_hub_ca_cert_details(self, default: Any = _MISSING) -> Dict[str, Any]:
        return await self.get_secret(VaultPaths.HUB_CA_DETAILS, default)

    async def delete_hub_ca_cert_details(self) -> None:
        await self.delete_secret(VaultPaths.HUB_CA_DETAILS)

    async def set_hub_endpoints(self, value: Dict[str, Any]) -> None:
        await self.set_secret(VaultPaths.HUB_ENDPOINTS, value)

    async def get_hub_endpoints(self, default: Any = _MISSING) -> Dict[str, Any]:
        return await self.get_secret(VaultPaths.HUB_ENDPOINTS, default)
    # endregion

    # region DFSP 服务端证书
    async def set_dfsp_server_certs(self, dfsp_id: Any, value: Dict[str, Any]) -> None:
        validate_id(dfsp_id, "dfspId")
        await self.set_secret(f"{VaultPaths.DFSP_SERVER_CERT}/{dfsp_id}", value)

    async def get_dfsp_server_certs(self, dfsp_id: Any) -> Dict[str, Any]:
        validate_id(dfsp_id, "dfspId")
        return await self.get_secret(f"{VaultPaths.DFSP_SERVER_CERT}/{dfsp_id}")

    async def delete_dfsp_server_certs(self, dfsp_id: Any) -> None:
        validate_id(dfsp_id, "dfspId")
        await self.delete_secret(f"{VaultPaths.DFSP_SERVER_CERT}/{dfsp_id}")
    # endregion

    # ------------------------------------------------------------------
    # 网关证书包
    # ------------------------------------------------------------------

    async def populate_dfsp_client_cert_bundle(
        self,
        dfsp_id: Any,
        dfsp_name: str,
        monetary_zone_id: Optional[str] = None,
        is_proxy: bool = False,
        fxp_currencies: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        用 id 最大的 CERT_SIGNED 出站登记与 DFSP CA 生成客户端证书包，写入专用挂载点。
        :return: 写入的证书包。
        :raises NotFoundError: DFSP CA 不存在，或没有已签发的出站登记。
        """
        validate_id(dfsp_id, "dfspId")
        _validate_key(dfsp_name, "dfspName")
        dfsp_ca = await self.get_dfsp_ca(dfsp_id)
        enrollments = await self.get_dfsp_outbound_enrollments(dfsp_id)
        signed = [en for en in enrollments if en.get("state") == CERT_SIGNED]
        if not signed:
            raise NotFoundError(f"No signed outbound enrollment for dfsp {dfsp_id}")
        latest = max(signed, key=lambda en: int(en["id"]))
        cert_info = parser.parse_cert(latest["certificate"])
        intermediate_chain = dfsp_ca.get("intermediate_chain") or ""
        root_certificate = dfsp_ca.get("root_certificate") or ""
        bundle = {
            "ca_bundle": f"{intermediate_chain}\n{root_certificate}",
            "client_key": latest.get("key"),
            "client_cert_chain": f"{latest['certificate']}\n{intermediate_chain}\n{root_certificate}",
            "fqdn": cert_info.subject.get("CN"),
            "host": dfsp_name,
            "currency_code": monetary_zone_id,
            "fxpCurrencies": " ".join(fxp_currencies or []),
            "isProxy": is_proxy,
        }
        await self.client.write(f"{self.mounts.dfsp_client_cert_bundle}/{dfsp_name}", bundle)
        logger.info(f"已推送 DFSP {dfsp_id} 的客户端证书包，登记 id: {latest['id']}")
        return bundle

    async def populate_dfsp_internal_ip_whitelist_bundle(self, value: Dict[str, Any]) -> None:
        await self.client.write(self.mounts.dfsp_internal_ip_whitelist_bundle, value)

    async def populate_dfsp_external_ip_whitelist_bundle(self, value: Dict[str, Any]) -> None:
        await self.client.write(self.mounts.dfsp_external_ip_whitelist_bundle, value)

    # ------------------------------------------------------------------
    # CA 操作
    # ------------------------------------------------------------------

    async def delete_ca(self) -> None:
        await self.client.request("DELETE", f"{self.mounts.pki}/root")

    def _key_params(self, info: CAInitialInfo) -> Dict[str, Any]:
        key_type = info.key.algo if info.key else self.key_algorithm
        key_bits = info.key.size if info.key and info.key.size else self.key_length
        return {"key_type": key_type, "key_bits": key_bits}

    async def create_ca(self, info: Any, ttl: Optional[str] = None) -> RootCA:
        """
        删除现有根 CA 后生成新的自签名根 CA。
        :param info: CAInitialInfo 或等价字典。
        :param ttl: 有效期，如 "87600h"。
        :raises ValidationError: info 不合法。
        """
        info = CAInitialInfo.from_document(info)
        try:
            await self.delete_ca()
        except ExternalProcessError as e:
            logger.debug(f"删除旧根 CA 失败，继续创建: {e}")

        body: Dict[str, Any] = {
            "common_name": info.CN,
            "ou": info.OU,
            "organization": info.O,
            "locality": info.L,
            "country": info.C,
            "province": info.ST,
            **self._key_params(info),
            "ttl": ttl,
        }
        bits = info.signature_bits()
        if bits:
            body["signature_bits"] = bits
        result = await self.client.request("POST", f"{self.mounts.pki}/root/generate/exported", json=body)
        data = result["data"]
        logger.info(f"根 CA 已创建: CN={info.CN}")
        return RootCA(cert=data["certificate"], key=data["private_key"], info=info)

    async def create_intermediate_ca(self, info: Any) -> IntermediateCA:
        """在中间 CA 挂载点生成 CSR，由根 CA 签发后安装为该挂载点的 CA。"""
        info = CAInitialInfo.from_document(info)
        generated = await self.client.request(
            "POST",
            f"{self.mounts.intermediate_pki}/intermediate/generate/exported",
            json={
                "common_name": info.CN,
                "ou": info.OU,
                "organization": info.O,
                "locality": info.L,
                "country": info.C,
                "province": info.ST,
                **self._key_params(info),
            },
        )
        csr = generated["data"]["csr"]
        signed = await self.sign_intermediate_hub_csr(csr)
        await self.set_intermediate_ca_cert(signed["certificate"])
        logger.info(f"中间 CA 已创建并安装: CN={info.CN}")
        return IntermediateCA(cert=signed["certificate"], csr=csr, key=generated["data"]["private_key"])

    async def set_intermediate_ca_cert(self, certificate: str) -> None:
        await self.client.request(
            "POST", f"{self.mounts.intermediate_pki}/intermediate/set-signed", json={"certificate": certificate}
        )

    def _build_csr(self, params: CSRParameters) -> KeyCSRPair:
        key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_length)
        attributes = []
        for short_name, value in params.subject.items():
            oid = CSR_SUBJECT_OIDS.get(short_name)
            if oid is None:
                raise ValidationError(f"Unknown subject attribute: {short_name}")
            attributes.append(x509.NameAttribute(oid, value))
        builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attributes))

        san = params.extensions.subject_alt_name if params.extensions else None
        if san is not None:
            names: List[x509.GeneralName] = [x509.DNSName(dns) for dns in san.dns or []]
            names += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in san.ips or []]
            if names:
                builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)

        csr = builder.sign(key, hashes.SHA256())
        return KeyCSRPair(
            csr=csr.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
            private_key=key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.TraditionalOpenSSL,
                serialization.NoEncryption(),
            ).decode("utf-8"),
        )

    async def create_csr(self, params: Any) -> KeyCSRPair:
        """本地生成 RSA 密钥对（配置的长度）和 SHA-256 签名的 CSR。"""
        if not isinstance(params, CSRParameters):
            params = CSRParameters.model_validate(params or {})
        return await asyncio.to_thread(self._build_csr, params)

    async def sign(
        self,
        csr: str,
        common_name: Optional[str] = None,
        ttl_hours: Optional[int] = None,
        signature_algorithm: Optional[str] = None,
    ) -> str:
        """
        使用根 CA 的客户端角色签发 CSR。
        :param common_name: 缺省取 CSR 的 CN。
        :param ttl_hours: 缺省为 sign_expiry_hours。
        :param signature_algorithm: sha256WithRSAEncryption 或 sha512WithRSAEncryption。
        :return: PEM 证书。
        """
        if common_name is None:
            common_name = parser.parse_csr(csr).subject.get("CN")
        body: Dict[str, Any] = {
            "common_name": common_name,
            "csr": csr,
            "ttl": f"{ttl_hours or self.sign_expiry_hours}h",
        }
        bits = _signature_bits(signature_algorithm)
        if bits:
            body["signature_bits"] = bits
        result = await self.client.request("POST", f"{self.mounts.pki}/sign/{self.pki_client_role}", json=body)
        return result["data"]["certificate"]

    async def sign_intermediate_hub_csr(self, csr: str) -> Dict[str, Any]:
        common_name = parser.parse_csr(csr).subject.get("CN")
        result = await self.client.request(
            "POST",
            f"{self.mounts.pki}/root/sign-intermediate",
            json={"use_csr_values": True, "common_name": common_name, "csr": csr},
        )
        return result["data"]

    async def sign_with_intermediate_ca(self, csr: str) -> str:
        common_name = parser.parse_csr(csr).subject.get("CN")
        result = await self.client.request(
            "POST",
            f"{self.mounts.intermediate_pki}/sign/{self.pki_client_role}",
            json={"common_name": common_name, "csr": csr},
        )
        return result["data"]["certificate"]

    async def create_hub_server_cert(self, params: Any) -> Dict[str, Any]:
        """按服务端角色签发 Hub 服务端证书，返回 Vault 数据（certificate、private_key、serial_number 等）。"""
        if not isinstance(params, CSRParameters):
            params = CSRParameters.model_validate(params or {})
        body: Dict[str, Any] = {"common_name": params.subject.get("CN")}
        san = params.extensions.subject_alt_name if params.extensions else None
        if san is not None:
            if san.dns:
                body["alt_names"] = ",".join(san.dns)
            if san.ips:
                body["ip_sans"] = ",".join(san.ips)
        result = await self.client.request("POST", f"{self.mounts.pki}/issue/{self.pki_server_role}", json=body)
        return result["data"]

    async def revoke_hub_server_cert(self, serial: str) -> Dict[str, Any]:
        result = await self.client.request("POST", f"{self.mounts.pki}/revoke", json={"serial_number": serial})
        return (result or {}).get("data") or {}

    async def set_hub_ca_cert_chain(self, cert_chain: str, private_key: str) -> None:
        await self.client.request(
            "POST", f"{self.mounts.pki}/config/ca", json={"pem_bundle": f"{private_key}\n{cert_chain}"}
        )

    async def get_hub_ca_cert_chain(self) -> str:
        return await self.client.request("GET", f"{self.mounts.pki}/ca_chain", raw=True)

    async def get_root_ca_cert(self) -> str:
        return await self.client.request("GET", f"{self.mounts.pki}/ca/pem", raw=True)
