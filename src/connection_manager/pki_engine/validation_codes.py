"""
校验码目录：封闭的字符串枚举，是面向登记/API 层的契约。

公开接口：
- ValidState: 校验的三态结果
- ValidationCode: 所有校验码
- VALIDATION_PARAMS: 各校验码的策略参数（密钥长度、签名算法）
- parse_validation_code: 将调用方给出的字符串转换为 ValidationCode，未知返回 None
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class ValidState(str, Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    NOT_AVAILABLE = "NOT_AVAILABLE"


class ValidationCode(str, Enum):
    # 结构类
    CERTIFICATE_VALIDITY = "CERTIFICATE_VALIDITY"
    CSR_MANDATORY_DISTINGUISHED_NAME = "CSR_MANDATORY_DISTINGUISHED_NAME"
    CSR_PUBLIC_KEY_LENGTH_2048 = "CSR_PUBLIC_KEY_LENGTH_2048"
    CSR_PUBLIC_KEY_LENGTH_4096 = "CSR_PUBLIC_KEY_LENGTH_4096"
    CERTIFICATE_PUBLIC_KEY_LENGTH_2048 = "CERTIFICATE_PUBLIC_KEY_LENGTH_2048"
    CERTIFICATE_PUBLIC_KEY_LENGTH_4096 = "CERTIFICATE_PUBLIC_KEY_LENGTH_4096"
    CSR_SIGNATURE_VALID = "CSR_SIGNATURE_VALID"
    CSR_SIGNATURE_ALGORITHM_SHA256_512 = "CSR_SIGNATURE_ALGORITHM_SHA256_512"
    CERTIFICATE_ALGORITHM_SHA256 = "CERTIFICATE_ALGORITHM_SHA256"
    JWS_PUBLIC_KEY_VALID = "JWS_PUBLIC_KEY_VALID"
    # 用途类
    CERTIFICATE_USAGE_SERVER = "CERTIFICATE_USAGE_SERVER"
    CERTIFICATE_USAGE_CLIENT = "CERTIFICATE_USAGE_CLIENT"
    CA_CERTIFICATE_USAGE = "CA_CERTIFICATE_USAGE"
    # 证书链类
    CERTIFICATE_CHAIN = "CERTIFICATE_CHAIN"
    VERIFY_ROOT_CERTIFICATE = "VERIFY_ROOT_CERTIFICATE"
    VERIFY_CHAIN_CERTIFICATES = "VERIFY_CHAIN_CERTIFICATES"
    # 一致性类
    CSR_CERT_SAME_SUBJECT_INFO = "CSR_CERT_SAME_SUBJECT_INFO"
    CSR_CERT_SAME_CN = "CSR_CERT_SAME_CN"
    CSR_CERT_SAME_PUBLIC_KEY = "CSR_CERT_SAME_PUBLIC_KEY"
    CSR_CERT_PUBLIC_PRIVATE_KEY_MATCH = "CSR_CERT_PUBLIC_PRIVATE_KEY_MATCH"
    # 签发机构关联
    CERTIFICATE_SIGNED_BY_DFSP_CA = "CERTIFICATE_SIGNED_BY_DFSP_CA"


SHA256_RSA = "sha256WithRSAEncryption"
SHA512_RSA = "sha512WithRSAEncryption"

VALIDATION_PARAMS: Dict[ValidationCode, Any] = {
    ValidationCode.CSR_PUBLIC_KEY_LENGTH_2048: 2048,
    ValidationCode.CSR_PUBLIC_KEY_LENGTH_4096: 4096,
    ValidationCode.CERTIFICATE_PUBLIC_KEY_LENGTH_2048: 2048,
    ValidationCode.CERTIFICATE_PUBLIC_KEY_LENGTH_4096: 4096,
    ValidationCode.CSR_SIGNATURE_ALGORITHM_SHA256_512: (SHA256_RSA, SHA512_RSA),
    ValidationCode.CERTIFICATE_ALGORITHM_SHA256: SHA256_RSA,
}


def parse_validation_code(code: Any) -> ValidationCode | None:
    """把字符串或枚举转换为 ValidationCode；未知的校验码返回 None。"""
    if isinstance(code, ValidationCode):
        return code
    try:
        return ValidationCode(code)
    except ValueError:
        return None
