"""
登记记录模型：按 state 区分的两种形态，只能通过 load_csr / mark_cert_signed 构造，revalidate 只更新校验结果。

CSR_LOADED -> CERT_SIGNED
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from src.connection_manager.errors import ValidationError
from src.connection_manager.pki_engine.schemas import CertInfo, CSRInfo, Validation, ValidationAggregate
from src.connection_manager.pki_engine.validation_codes import ValidState


class EnrollmentState(str, Enum):
    CSR_LOADED = "CSR_LOADED"
    CERT_SIGNED = "CERT_SIGNED"


class _EnrollmentBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(description="登记 ID，在同一 DFSP 与方向内唯一")
    csr: str = Field(description="PEM 格式的 CSR")
    csr_info: CSRInfo
    key: Optional[str] = Field(default=None, description="由本系统生成 CSR 时保存的私钥")
    validations: List[Validation] = Field(default_factory=list)
    validation_state: ValidState = ValidState.VALID


class CsrLoadedEnrollment(_EnrollmentBase):
    state: Literal["CSR_LOADED"] = "CSR_LOADED"


class CertSignedEnrollment(_EnrollmentBase):
    state: Literal["CERT_SIGNED"] = "CERT_SIGNED"
    certificate: str = Field(description="PEM 格式的证书")
    cert_info: CertInfo


Enrollment = Annotated[Union[CsrLoadedEnrollment, CertSignedEnrollment], Field(discriminator="state")]

_enrollment_adapter: TypeAdapter = TypeAdapter(Enrollment)


def parse_enrollment(data: Any) -> Union[CsrLoadedEnrollment, CertSignedEnrollment]:
    """从 Vault 读出的字典恢复登记记录。"""
    return _enrollment_adapter.validate_python(data)


def load_csr(
    id: int,
    csr: str,
    csr_info: CSRInfo,
    aggregate: ValidationAggregate,
    key: Optional[str] = None,
) -> CsrLoadedEnrollment:
    return CsrLoadedEnrollment(
        id=id,
        csr=csr,
        csr_info=csr_info,
        key=key,
        validations=aggregate.validations,
        validation_state=aggregate.validation_state,
    )


def mark_cert_signed(
    enrollment: CsrLoadedEnrollment,
    certificate: str,
    cert_info: CertInfo,
    aggregate: ValidationAggregate,
) -> CertSignedEnrollment:
    """
    附加证书并进入 CERT_SIGNED 状态。CERT_SIGNED 为终态，重新登记需要创建新记录。
    :raises ValidationError: 登记不处于 CSR_LOADED 状态。
    """
    if not isinstance(enrollment, CsrLoadedEnrollment):
        raise ValidationError(f"Enrollment {enrollment.id} is already {enrollment.state}")
    return CertSignedEnrollment(
        id=enrollment.id,
        csr=enrollment.csr,
        csr_info=enrollment.csr_info,
        key=enrollment.key,
        certificate=certificate,
        cert_info=cert_info,
        validations=aggregate.validations,
        validation_state=aggregate.validation_state,
    )


def revalidate(
    enrollment: Union[CsrLoadedEnrollment, CertSignedEnrollment], aggregate: ValidationAggregate
) -> Union[CsrLoadedEnrollment, CertSignedEnrollment]:
    """只替换校验结果，状态与证书不变。"""
    return enrollment.model_copy(
        update={"validations": aggregate.validations, "validation_state": aggregate.validation_state}
    )
