"""
PKI 引擎抽象基类：校验编排 + CA 操作接口。

校验编排只有一份实现（_perform）：按调用方给出的顺序在校验目录中查找校验函数并执行，
未知或不属于该目录的校验码记录日志后跳过，最后聚合为 ValidationAggregate。
具体后端（如 VaultPKIEngine）只需实现 CA 相关的抽象方法，也可以替换校验目录。

公开接口：
- PKIEngine.validate_certificate_bundle / validate_ca_bundle / validate_enrollment
- PKIEngine.validate_jws_certificate / validate_server_certificate / validate_ca_certificate
- PKIEngine.validate_inbound_enrollment / validate_outbound_enrollment
- PKIEngine.get_csr_info / get_cert_info / split_certificate_chain
- 抽象方法：create_ca / create_intermediate_ca / create_csr / sign
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from . import checks, parser
from .schemas import (
    CABundle,
    CAInitialInfo,
    CAType,
    CertInfo,
    CSRInfo,
    CSRParameters,
    IntermediateCA,
    KeyCSRPair,
    RootCA,
    Validation,
    ValidationAggregate,
    ValidationSubject,
)
from .validation_codes import ValidationCode, parse_validation_code
from .validations_configuration import ValidationsConfiguration


class PKIEngine(ABC):
    certificate_checks: Dict[ValidationCode, checks.Check] = checks.CERTIFICATE_CHECKS
    ca_checks: Dict[ValidationCode, checks.Check] = checks.CA_CHECKS
    enrollment_checks: Dict[ValidationCode, checks.Check] = checks.ENROLLMENT_CHECKS
    jws_checks: Dict[ValidationCode, checks.Check] = checks.JWS_CHECKS

    def __init__(self, validations_config: Optional[ValidationsConfiguration] = None, trusted_roots=None):
        self.validations_config = validations_config or ValidationsConfiguration.for_key_length()
        self.trusted_roots = tuple(trusted_roots) if trusted_roots is not None else None

    # ------------------------------------------------------------------
    # 校验编排
    # ------------------------------------------------------------------

    def _perform(
        self,
        codes: Iterable[Any],
        catalogue: Dict[ValidationCode, checks.Check],
        subject: ValidationSubject,
    ) -> ValidationAggregate:
        validations: List[Validation] = []
        for raw in codes or []:
            code = parse_validation_code(raw)
            check = catalogue.get(code) if code is not None else None
            if check is None:
                logger.info(f"跳过未实现的校验: {raw}")
                continue
            validations.append(check(code, subject))
        return ValidationAggregate.from_validations(validations)

    def _subject(self, **kwargs) -> ValidationSubject:
        return ValidationSubject(trusted_roots=self.trusted_roots, **kwargs)

    def validate_certificate_bundle(
        self,
        codes: Iterable[Any],
        certificate: Optional[str],
        intermediate_chain: Optional[str],
        root_certificate: Optional[str],
        key: Optional[str] = None,
    ) -> ValidationAggregate:
        """
        对服务端证书执行指定校验。
        :param codes: 校验码列表（字符串或 ValidationCode），按此顺序执行。
        :return: ValidationAggregate
        :raises InvalidEntityError: 证书或证书链无法解析。
        """
        subject = self._subject(
            certificate=certificate,
            intermediate_chain=intermediate_chain,
            root_certificate=root_certificate,
            key=key,
        )
        return self._perform(codes, self.certificate_checks, subject)

    def validate_ca_bundle(
        self,
        codes: Iterable[Any],
        intermediate_chain: Optional[str],
        root_certificate: Optional[str],
        key: Optional[str] = None,
    ) -> ValidationAggregate:
        """对 CA 证书包（根证书 + 中间证书链 + 可选私钥）执行指定校验。"""
        subject = self._subject(intermediate_chain=intermediate_chain, root_certificate=root_certificate, key=key)
        return self._perform(codes, self.ca_checks, subject)

    def validate_enrollment(
        self,
        codes: Iterable[Any],
        enrollment: Any,
        ca_type: Optional[CAType] = None,
        dfsp_ca: Optional[CABundle] = None,
    ) -> ValidationAggregate:
        """
        对登记执行指定校验。
        :param enrollment: 带 csr / certificate / key 属性的对象（登记记录）或字典。
        :param ca_type: 签发方 CA 类型，影响主题一致性校验。
        :param dfsp_ca: DFSP 的 CA 证书包，用于 CERTIFICATE_SIGNED_BY_DFSP_CA。
        """
        def field(name):
            if isinstance(enrollment, dict):
                return enrollment.get(name)
            return getattr(enrollment, name, None)

        subject = self._subject(
            csr=field("csr"),
            certificate=field("certificate"),
            key=field("key"),
            ca_type=ca_type,
            dfsp_ca=dfsp_ca,
        )
        return self._perform(codes, self.enrollment_checks, subject)

    # ------------------------------------------------------------------
    # 按配置的校验入口
    # ------------------------------------------------------------------

    def validate_jws_certificate(self, public_key: Optional[str]) -> ValidationAggregate:
        subject = self._subject(public_key=public_key)
        return self._perform(self.validations_config.jws_cert_validations, self.jws_checks, subject)

    def validate_server_certificate(
        self, certificate: Optional[str], intermediate_chain: Optional[str], root_certificate: Optional[str]
    ) -> ValidationAggregate:
        return self.validate_certificate_bundle(
            self.validations_config.server_cert_validations, certificate, intermediate_chain, root_certificate
        )

    def validate_ca_certificate(
        self, root_certificate: Optional[str], intermediate_chain: Optional[str], key: Optional[str] = None
    ) -> ValidationAggregate:
        """提供私钥时追加公私钥匹配校验。"""
        codes = self.validations_config.with_ca_key() if key else self.validations_config.dfsp_ca_validations
        return self.validate_ca_bundle(codes, intermediate_chain, root_certificate, key)

    def validate_inbound_enrollment(self, enrollment: Any, ca_type: Optional[CAType] = None) -> ValidationAggregate:
        return self.validate_enrollment(self.validations_config.inbound_validations, enrollment, ca_type=ca_type)

    def validate_outbound_enrollment(
        self, enrollment: Any, dfsp_ca: Optional[CABundle] = None, ca_type: Optional[CAType] = None
    ) -> ValidationAggregate:
        return self.validate_enrollment(
            self.validations_config.outbound_validations, enrollment, ca_type=ca_type, dfsp_ca=dfsp_ca
        )

    # ------------------------------------------------------------------
    # 解析
    # ------------------------------------------------------------------

    def get_csr_info(self, csr: str) -> CSRInfo:
        return parser.parse_csr(csr)

    def get_cert_info(self, certificate: str) -> CertInfo:
        return parser.parse_cert(certificate)

    def split_certificate_chain(self, chain: Any) -> List[str]:
        return parser.split_certificate_chain(chain)

    # ------------------------------------------------------------------
    # CA 操作
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_ca(self, info: CAInitialInfo, ttl: Optional[str] = None) -> RootCA:
        """删除现有根 CA 并生成新的自签名根 CA。"""

    @abstractmethod
    async def create_intermediate_ca(self, info: CAInitialInfo) -> IntermediateCA:
        """生成中间 CA，由根 CA 签发并安装。"""

    @abstractmethod
    async def create_csr(self, params: CSRParameters) -> KeyCSRPair:
        """在本地生成密钥对与 CSR。"""

    @abstractmethod
    async def sign(
        self,
        csr: str,
        common_name: Optional[str] = None,
        ttl_hours: Optional[int] = None,
        signature_algorithm: Optional[str] = None,
    ) -> str:
        """签发 CSR，返回 PEM 证书。"""
