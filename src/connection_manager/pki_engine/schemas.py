"""
文件功能：
    定义 PKI 引擎相关的公开数据模型（Pydantic）。

公开接口：
    - SubjectAltName / Extensions: 规范化的 SAN 信息
    - CSRInfo / CertInfo: 解析 CSR、证书得到的描述对象（不可变）
    - Validation / ValidationAggregate: 单项校验结果与聚合结果
    - CAType / CABundle: CA 类型与 CA 证书包
    - CAInitialInfo / KeyParameters: 创建根 CA、中间 CA 所需的信息
    - CSRParameters: 本地生成 CSR 的参数
    - KeyCSRPair / RootCA / IntermediateCA: CA 操作的返回值
    - ValidationSubject: 校验函数接收的主体数据

内部方法：
    无
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from ..errors import ValidationError
from .validation_codes import SHA256_RSA, SHA512_RSA, ValidState


class SubjectAltName(BaseModel):
    """SAN 四种类型，缺省为空列表。"""

    model_config = ConfigDict(frozen=True)

    dns: List[str] = Field(default_factory=list)
    ips: List[str] = Field(default_factory=list)
    uris: List[str] = Field(default_factory=list)
    email_addresses: List[str] = Field(default_factory=list)


class Extensions(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject_alt_name: SubjectAltName = Field(default_factory=SubjectAltName)


class CSRInfo(BaseModel):
    """CSR 描述对象。"""

    model_config = ConfigDict(frozen=True)

    subject: Dict[str, str] = Field(description="按短名（CN、O、OU、C、L、ST、E）提取的主题字段")
    extensions: Extensions = Field(default_factory=Extensions)
    signature_algorithm: str = Field(description="签名算法，如 sha256WithRSAEncryption")
    public_key_length: Optional[int] = Field(default=None, description="公钥长度（bit）")


class CertInfo(BaseModel):
    """证书描述对象。"""

    model_config = ConfigDict(frozen=True)

    subject: Dict[str, str]
    issuer: Dict[str, str]
    extensions: Extensions = Field(default_factory=Extensions)
    serial_number: str = Field(description="十六进制序列号")
    not_before: datetime
    not_after: datetime
    signature_algorithm: str
    public_key_length: Optional[int] = None


class Validation(BaseModel):
    """单项校验结果。performed=False 时结果强制为 NOT_AVAILABLE。"""

    validation_code: str
    performed: bool = True
    result: ValidState = ValidState.VALID
    message: str = ""
    details: Any = None
    data: Dict[str, Any] = Field(default_factory=dict)
    message_template: str = ""

    @model_validator(mode="after")
    def force_not_available(self) -> "Validation":
        if not self.performed:
            self.result = ValidState.NOT_AVAILABLE
        return self


class ValidationAggregate(BaseModel):
    """校验结果聚合：任一项 INVALID 则整体 INVALID，否则 VALID。"""

    validations: List[Validation] = Field(default_factory=list)
    validation_state: ValidState = ValidState.VALID

    @classmethod
    def from_validations(cls, validations: List[Validation]) -> "ValidationAggregate":
        invalid = any(v.result == ValidState.INVALID for v in validations)
        return cls(
            validations=list(validations),
            validation_state=ValidState.INVALID if invalid else ValidState.VALID,
        )


class CAType(str, Enum):
    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"


class CABundle(BaseModel):
    """CA 证书包：根证书 + 0..n 个中间证书（PEM 拼接），可选私钥。"""

    root_certificate: Optional[str] = None
    intermediate_chain: Optional[str] = None
    key: Optional[str] = None
    validations: List[Validation] = Field(default_factory=list)
    validation_state: ValidState = ValidState.NOT_AVAILABLE


class KeyParameters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    algo: Literal["rsa", "ec"] = "rsa"
    size: Optional[int] = None

    @field_validator("size")
    @classmethod
    def check_size(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and (value <= 0 or value % 256 != 0):
            raise ValueError("key size must be a positive multiple of 256")
        return value


class CAInitialInfo(BaseModel):
    """创建根 CA / 中间 CA 所需的主题信息，CN 与 O 必填。"""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    CN: str = Field(description="Common Name")
    O: str = Field(description="Organization")
    OU: Optional[str] = Field(default=None, description="Organizational Unit")
    C: Optional[str] = Field(default=None, description="Country")
    ST: Optional[str] = Field(default=None, description="State")
    L: Optional[str] = Field(default=None, description="Location")
    E: Optional[str] = Field(default=None, description="Email")
    key: Optional[KeyParameters] = None
    signature_algorithm: Optional[Literal["sha256WithRSAEncryption", "sha512WithRSAEncryption"]] = Field(
        default=None,
        validation_alias=AliasChoices("signature_algorithm", "signatureAlgorithm"),
    )

    @classmethod
    def from_document(cls, doc: Any) -> "CAInitialInfo":
        """校验外部文档并构造 CAInitialInfo。
        :raises ValidationError: 文档不符合要求。
        """
        if isinstance(doc, cls):
            return doc
        try:
            return cls.model_validate(doc)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid CAInitialInfo document: {e}", e.errors()) from e

    def signature_bits(self) -> Optional[int]:
        """把签名算法转换为 Vault 的 signature_bits 参数。"""
        return SIGNATURE_BITS.get(self.signature_algorithm) if self.signature_algorithm else None


SIGNATURE_BITS: Dict[str, int] = {
    SHA256_RSA: 256,
    SHA512_RSA: 512,
}


class SubjectAltNameRequest(BaseModel):
    dns: Optional[List[str]] = None
    ips: Optional[List[str]] = None


class CSRExtensions(BaseModel):
    subject_alt_name: Optional[SubjectAltNameRequest] = Field(
        default=None,
        validation_alias=AliasChoices("subject_alt_name", "subjectAltName"),
    )


class CSRParameters(BaseModel):
    """本地生成 CSR 的参数，subject 以短名为键（emailAddress 视为 E）。"""

    subject: Dict[str, str] = Field(default_factory=dict)
    extensions: Optional[CSRExtensions] = None


class KeyCSRPair(BaseModel):
    csr: str
    private_key: str


class RootCA(BaseModel):
    cert: str
    key: str
    info: CAInitialInfo


class IntermediateCA(BaseModel):
    cert: str
    csr: str
    key: str


class ValidationSubject(BaseModel):
    """校验函数的输入：每个校验只读取自己需要的字段。"""

    csr: Optional[str] = None
    certificate: Optional[str] = None
    key: Optional[str] = None
    public_key: Optional[str] = None
    root_certificate: Optional[str] = None
    intermediate_chain: Optional[str] = None
    dfsp_ca: Optional[CABundle] = None
    ca_type: Optional[CAType] = None
    trusted_roots: Optional[Tuple[Any, ...]] = Field(
        default=None, description="公共根证书（x509.Certificate），为空时使用 certifi 证书库"
    )
