"""
各类制品的校验配置：在引擎构造时确定，运行期不变。
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict

from .validation_codes import ValidationCode as VC


class ValidationsConfiguration(BaseModel):
    model_config = ConfigDict(frozen=True)

    jws_cert_validations: List[VC]
    dfsp_ca_validations: List[VC]
    server_cert_validations: List[VC]
    inbound_validations: List[VC]
    outbound_validations: List[VC]

    @classmethod
    def for_key_length(cls, key_length: int = 4096) -> "ValidationsConfiguration":
        """
        按配置的密钥长度生成校验配置。
        :param key_length: 2048 或 4096，决定服务端证书的公钥长度要求。
        """
        server_key_code = (
            VC.CERTIFICATE_PUBLIC_KEY_LENGTH_2048 if key_length == 2048 else VC.CERTIFICATE_PUBLIC_KEY_LENGTH_4096
        )
        return cls(
            jws_cert_validations=[VC.JWS_PUBLIC_KEY_VALID],
            dfsp_ca_validations=[
                VC.VERIFY_ROOT_CERTIFICATE,
                VC.VERIFY_CHAIN_CERTIFICATES,
                VC.CA_CERTIFICATE_USAGE,
            ],
            server_cert_validations=[
                VC.CERTIFICATE_USAGE_SERVER,
                VC.CERTIFICATE_VALIDITY,
                VC.CERTIFICATE_CHAIN,
                server_key_code,
                VC.VERIFY_ROOT_CERTIFICATE,
                VC.VERIFY_CHAIN_CERTIFICATES,
            ],
            inbound_validations=[
                VC.CSR_SIGNATURE_VALID,
                VC.CSR_SIGNATURE_ALGORITHM_SHA256_512,
                VC.CSR_PUBLIC_KEY_LENGTH_4096,
                VC.CSR_CERT_SAME_PUBLIC_KEY,
                VC.CSR_CERT_SAME_SUBJECT_INFO,
                VC.CSR_MANDATORY_DISTINGUISHED_NAME,
                VC.CERTIFICATE_VALIDITY,
                VC.CERTIFICATE_ALGORITHM_SHA256,
                VC.CSR_CERT_PUBLIC_PRIVATE_KEY_MATCH,
                VC.CSR_CERT_SAME_CN,
            ],
            outbound_validations=[
                VC.CSR_SIGNATURE_VALID,
                VC.CSR_SIGNATURE_ALGORITHM_SHA256_512,
                VC.CSR_PUBLIC_KEY_LENGTH_4096,
                VC.CSR_CERT_SAME_PUBLIC_KEY,
                VC.CSR_MANDATORY_DISTINGUISHED_NAME,
                VC.CSR_CERT_PUBLIC_PRIVATE_KEY_MATCH,
                VC.CERTIFICATE_VALIDITY,
                VC.CERTIFICATE_ALGORITHM_SHA256,
                VC.CERTIFICATE_SIGNED_BY_DFSP_CA,
            ],
        )

    def with_ca_key(self) -> List[VC]:
        """DFSP CA 携带私钥时追加公私钥匹配校验。"""
        return [*self.dfsp_ca_validations, VC.CSR_CERT_PUBLIC_PRIVATE_KEY_MATCH]
