"""
CSR / 证书解析：把 PEM 文本转换为规范化的描述对象。

公开接口：
- parse_csr: PEM CSR -> CSRInfo
- parse_cert: PEM 证书 -> CertInfo
- split_certificate_chain / load_chain: 按 -----BEGIN 拆分证书链
- load_csr / load_certificate / load_private_key / load_public_key: 加载 cryptography 对象
- signature_algorithm_name: 签名算法 OID -> OpenSSL 长名
- public_key_length: 公钥长度（bit）

内部方法：
- _name_to_dict: 把 x509.Name 转换为按短名组织的字典
- _subject_alt_name: 从扩展中提取 SAN
"""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID, SignatureAlgorithmOID

from ..errors import InvalidEntityError
from .schemas import CertInfo, CSRInfo, Extensions, SubjectAltName

SHORT_NAMES = OrderedDict(
    [
        (NameOID.COMMON_NAME, "CN"),
        (NameOID.ORGANIZATION_NAME, "O"),
        (NameOID.ORGANIZATIONAL_UNIT_NAME, "OU"),
        (NameOID.COUNTRY_NAME, "C"),
        (NameOID.LOCALITY_NAME, "L"),
        (NameOID.STATE_OR_PROVINCE_NAME, "ST"),
        (NameOID.EMAIL_ADDRESS, "E"),
    ]
)

SIGNATURE_ALGORITHM_NAMES: Dict[x509.ObjectIdentifier, str] = {
    SignatureAlgorithmOID.RSA_WITH_MD5: "md5WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA1: "sha1WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA224: "sha224WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA256: "sha256WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA384: "sha384WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA512: "sha512WithRSAEncryption",
    SignatureAlgorithmOID.RSASSA_PSS: "rsassaPss",
    SignatureAlgorithmOID.ECDSA_WITH_SHA1: "ecdsa-with-SHA1",
    SignatureAlgorithmOID.ECDSA_WITH_SHA256: "ecdsa-with-SHA256",
    SignatureAlgorithmOID.ECDSA_WITH_SHA384: "ecdsa-with-SHA384",
    SignatureAlgorithmOID.ECDSA_WITH_SHA512: "ecdsa-with-SHA512",
    SignatureAlgorithmOID.ED25519: "ED25519",
}

_PEM_BEGIN = "-----BEGIN"
_CERT_END = "-----END CERTIFICATE-----"


def _to_bytes(pem: Any) -> bytes:
    return pem.encode("utf-8") if isinstance(pem, str) else bytes(pem)


def load_csr(pem: Any) -> x509.CertificateSigningRequest:
    """
    加载 PEM 格式的 CSR。
    :raises InvalidEntityError: 内容为空或无法解析。
    """
    if not pem:
        raise InvalidEntityError("Empty or null CSR")
    try:
        return x509.load_pem_x509_csr(_to_bytes(pem))
    except (ValueError, TypeError) as e:
        raise InvalidEntityError(f"Invalid CSR: {e}") from e


def load_certificate(pem: Any) -> x509.Certificate:
    """
    加载 PEM 格式的证书；若传入证书链则取第一张。
    :raises InvalidEntityError: 内容为空或无法解析。
    """
    if not pem:
        raise InvalidEntityError("Empty or null cert")
    try:
        return x509.load_pem_x509_certificate(_to_bytes(pem))
    except (ValueError, TypeError) as e:
        raise InvalidEntityError(f"Invalid certificate: {e}") from e


def load_private_key(pem: Any):
    """加载 PKCS#1 或 PKCS#8 私钥（不加密）。"""
    if not pem:
        raise InvalidEntityError("Empty or null private key")
    try:
        return serialization.load_pem_private_key(_to_bytes(pem), password=None)
    except (ValueError, TypeError) as e:
        raise InvalidEntityError(f"Invalid private key: {e}") from e


def load_public_key(pem: Any):
    if not pem:
        raise InvalidEntityError("Empty or null public key")
    try:
        return serialization.load_pem_public_key(_to_bytes(pem))
    except (ValueError, TypeError) as e:
        raise InvalidEntityError(f"Invalid public key: {e}") from e


def signature_algorithm_name(oid: x509.ObjectIdentifier) -> str:
    return SIGNATURE_ALGORITHM_NAMES.get(oid, oid.dotted_string)


def public_key_length(public_key) -> Optional[int]:
    """RSA 返回模数长度，其他类型尽量读取 key_size。"""
    return getattr(public_key, "key_size", None)


def _name_to_dict(name: x509.Name) -> Dict[str, str]:
    """
    按短名提取主题/签发者字段。
    同一短名出现多次（多值 RDN 或重复属性）时直接拼接，不加分隔符。
    """
    values: Dict[str, List[str]] = {}
    for rdn in name.rdns:
        for attr in rdn:
            short = SHORT_NAMES.get(attr.oid)
            if short is None:
                continue
            value = attr.value if isinstance(attr.value, str) else attr.value.decode("utf-8", "replace")
            values.setdefault(short, []).append(value)
    return {short: "".join(values[short]) for short in SHORT_NAMES.values() if short in values}


def _subject_alt_name(extensions: x509.Extensions) -> SubjectAltName:
    try:
        san = extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return SubjectAltName()
    return SubjectAltName(
        dns=san.get_values_for_type(x509.DNSName),
        ips=[str(ip) for ip in san.get_values_for_type(x509.IPAddress)],
        uris=san.get_values_for_type(x509.UniformResourceIdentifier),
        email_addresses=san.get_values_for_type(x509.RFC822Name),
    )


def parse_csr(pem: Any) -> CSRInfo:
    """
    解析 CSR，SAN 取自扩展请求。
    :param pem: PEM 文本。
    :return: CSRInfo
    :raises InvalidEntityError: CSR 为空或格式错误。
    """
    csr = load_csr(pem)
    # 主题与扩展按需解码，格式错误在访问时才抛出
    try:
        return CSRInfo(
            subject=_name_to_dict(csr.subject),
            extensions=Extensions(subject_alt_name=_subject_alt_name(csr.extensions)),
            signature_algorithm=signature_algorithm_name(csr.signature_algorithm_oid),
            public_key_length=public_key_length(csr.public_key()),
        )
    except ValueError as e:
        raise InvalidEntityError(f"Invalid CSR: {e}") from e


def parse_cert(pem: Any) -> CertInfo:
    """
    解析证书。
    :param pem: PEM 文本。
    :return: CertInfo
    :raises InvalidEntityError: 证书为空或格式错误。
    """
    cert = load_certificate(pem)
    try:
        return CertInfo(
            subject=_name_to_dict(cert.subject),
            issuer=_name_to_dict(cert.issuer),
            extensions=Extensions(subject_alt_name=_subject_alt_name(cert.extensions)),
            serial_number=format(cert.serial_number, "x"),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            signature_algorithm=signature_algorithm_name(cert.signature_algorithm_oid),
            public_key_length=public_key_length(cert.public_key()),
        )
    except ValueError as e:
        raise InvalidEntityError(f"Invalid certificate: {e}") from e


def split_certificate_chain(chain: Any) -> List[str]:
    """
    按 -----BEGIN 拆分 PEM 证书链，每段截止到 -----END CERTIFICATE-----。
    非字符串或空内容返回空列表。
    """
    if not isinstance(chain, str) or not chain.strip():
        return []
    blocks = []
    for part in re.split(r"(?=-----BEGIN)", chain):
        if not part.startswith(_PEM_BEGIN):
            continue
        end = part.find(_CERT_END)
        if end < 0:
            continue
        blocks.append(part[: end + len(_CERT_END)])
    return blocks


def load_chain(chain: Any) -> List[x509.Certificate]:
    return [load_certificate(pem) for pem in split_certificate_chain(chain)]
