"""
DFSP 登记（入站 / 出站）的业务流程。

入站：DFSP 提交 CSR，由 Hub CA 签发。
出站：Hub 提供 CSR（或在本地生成密钥对与 CSR），DFSP 的 CA 签发后上传证书。

公开接口：
- create_dfsp_inbound_enrollment / sign_dfsp_inbound_enrollment
- get_dfsp_inbound_enrollments / get_dfsp_inbound_enrollment
- create_dfsp_outbound_enrollment / create_csr_and_dfsp_outbound_enrollment
- add_dfsp_outbound_enrollment_certificate / validate_dfsp_outbound_enrollment_certificate
- get_dfsp_outbound_enrollments / get_dfsp_outbound_enrollment
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from loguru import logger

from src.connection_manager.config import config
from src.connection_manager.errors import InvalidEntityError, NotFoundError, ValidationError
from src.connection_manager.pki_engine.schemas import CABundle, CAType, CertInfo, CSRInfo, CSRParameters
from src.connection_manager.pki_engine.vault_engine import VaultPKIEngine

from .schemas import (
    CertSignedEnrollment,
    CsrLoadedEnrollment,
    EnrollmentState,
    load_csr,
    mark_cert_signed,
    parse_enrollment,
    revalidate,
)

AnyEnrollment = Union[CsrLoadedEnrollment, CertSignedEnrollment]


def _parse_csr(engine: VaultPKIEngine, csr: str) -> CSRInfo:
    try:
        return engine.get_csr_info(csr)
    except InvalidEntityError as e:
        raise ValidationError("Could not parse the CSR content", e.message) from e


def _parse_certificate(engine: VaultPKIEngine, certificate: str) -> CertInfo:
    try:
        return engine.get_cert_info(certificate)
    except InvalidEntityError as e:
        raise ValidationError("Could not parse the Certificate content", e.message) from e


def _next_id(records: List[Dict[str, Any]]) -> int:
    """下一个登记 ID：已有最大 ID + 1，没有记录时为 1。"""
    return max((int(record["id"]) for record in records), default=0) + 1


def _filter_state(enrollments: List[AnyEnrollment], state: Optional[Any]) -> List[AnyEnrollment]:
    if state is None:
        return enrollments
    wanted = EnrollmentState(state).value
    return [en for en in enrollments if en.state == wanted]


def _require_csr_loaded(enrollment: AnyEnrollment) -> None:
    if enrollment.state != EnrollmentState.CSR_LOADED.value:
        raise ValidationError(f"Enrollment {enrollment.id} is already {enrollment.state}")


def _without_key(enrollment: AnyEnrollment) -> AnyEnrollment:
    return enrollment.model_copy(update={"key": None})


# region 入站登记

async def create_dfsp_inbound_enrollment(engine: VaultPKIEngine, dfsp_id: Any, csr: str) -> CsrLoadedEnrollment:
    """
    保存 DFSP 提交的 CSR 并执行入站校验。
    :param dfsp_id: DFSP 的数字 ID。
    :param csr: PEM 格式的 CSR。
    :return: CSR_LOADED 状态的登记。
    :raises ValidationError: CSR 无法解析。
    """
    csr_info = _parse_csr(engine, csr)
    existing = await engine.get_dfsp_inbound_enrollments(dfsp_id)
    en_id = _next_id(existing)

    aggregate = engine.validate_inbound_enrollment({"csr": csr})
    enrollment = load_csr(en_id, csr, csr_info, aggregate)
    await engine.set_dfsp_inbound_enrollment(dfsp_id, en_id, enrollment.model_dump(mode="json"))
    logger.info(f"DFSP {dfsp_id} 入站登记 {en_id} 已创建，校验结果: {aggregate.validation_state.value}")
    return enrollment


async def sign_dfsp_inbound_enrollment(engine: VaultPKIEngine, dfsp_id: Any, en_id: Any) -> CertSignedEnrollment:
    """
    使用 Hub CA 签发入站登记的 CSR，并以 EXTERNAL 类型重新执行入站校验。
    :raises InvalidEntityError: 登记或 Hub CA 不存在。
    :raises ValidationError: 登记已是 CERT_SIGNED 状态。
    :raises ExternalProcessError: Vault 签发失败（原样抛出）。
    """
    try:
        record = await engine.get_dfsp_inbound_enrollment(dfsp_id, en_id)
    except NotFoundError:
        record = None
    hub_ca = await engine.get_hub_ca_cert_details(default=None)
    if record is None or hub_ca is None:
        raise InvalidEntityError(f"Could not retrieve current CA for the endpoint {en_id}, dfsp id {dfsp_id}")

    enrollment = parse_enrollment(record)
    _require_csr_loaded(enrollment)
    certificate = await engine.sign(
        enrollment.csr,
        config.switch_fqdn,
        signature_algorithm=hub_ca.get("signature_algorithm"),
    )
    cert_info = engine.get_cert_info(certificate)

    aggregate = engine.validate_inbound_enrollment(
        {"csr": enrollment.csr, "certificate": certificate, "key": enrollment.key},
        ca_type=CAType.EXTERNAL,
    )
    signed = mark_cert_signed(enrollment, certificate, cert_info, aggregate)
    await engine.set_dfsp_inbound_enrollment(dfsp_id, en_id, signed.model_dump(mode="json"))
    logger.info(f"DFSP {dfsp_id} 入站登记 {en_id} 已签发，签名算法: {cert_info.signature_algorithm}")
    return signed


async def get_dfsp_inbound_enrollments(
    engine: VaultPKIEngine, dfsp_id: Any, state: Optional[Any] = None
) -> List[AnyEnrollment]:
    """
    :param state: 可选的状态过滤（CSR_LOADED / CERT_SIGNED）。
    :return: 按 ID 升序排列的登记。
    """
    records = await engine.get_dfsp_inbound_enrollments(dfsp_id)
    enrollments = sorted((parse_enrollment(r) for r in records), key=lambda en: en.id)
    return _filter_state(enrollments, state)


async def get_dfsp_inbound_enrollment(engine: VaultPKIEngine, dfsp_id: Any, en_id: Any) -> AnyEnrollment:
    return parse_enrollment(await engine.get_dfsp_inbound_enrollment(dfsp_id, en_id))

# endregion


# region 出站登记

async def create_dfsp_outbound_enrollment(
    engine: VaultPKIEngine, dfsp_id: Any, csr: str, key: Optional[str] = None
) -> CsrLoadedEnrollment:
    """
    保存 Hub 提供的 CSR（及可选私钥），执行出站校验。
    返回值不包含私钥。
    :raises ValidationError: CSR 无法解析。
    """
    csr_info = _parse_csr(engine, csr)
    existing = await engine.get_dfsp_outbound_enrollments(dfsp_id)
    en_id = _next_id(existing)

    aggregate = engine.validate_outbound_enrollment({"csr": csr, "key": key})
    enrollment = load_csr(en_id, csr, csr_info, aggregate, key=key)
    await engine.set_dfsp_outbound_enrollment(dfsp_id, en_id, enrollment.model_dump(mode="json"))
    logger.info(f"DFSP {dfsp_id} 出站登记 {en_id} 已创建")
    return _without_key(enrollment)


def _check_csr_parameters(csr_parameters: Any) -> CSRParameters:
    if not isinstance(csr_parameters, dict):
        raise ValidationError("No subject specified")
    subject = csr_parameters.get("subject")
    if not subject:
        raise ValidationError("No subject specified")
    if not subject.get("CN"):
        raise ValidationError("No subject CN specified")
    extensions = csr_parameters.get("extensions")
    if not extensions:
        raise ValidationError("No extensions specified")
    san = extensions.get("subjectAltName") or extensions.get("subject_alt_name")
    if not san:
        raise ValidationError("No extensions subjectAltName specified")
    if not san.get("dns") and not san.get("ips"):
        raise ValidationError("Must specify a DNS or IP subjectAltName")
    return CSRParameters.model_validate(csr_parameters)


async def create_csr_and_dfsp_outbound_enrollment(
    engine: VaultPKIEngine, dfsp_id: Any, csr_parameters: Optional[Dict[str, Any]] = None
) -> CsrLoadedEnrollment:
    """
    在本地生成密钥对与 CSR 后创建出站登记。
    :param csr_parameters: subject 与 extensions.subjectAltName；缺省使用 config.client_csr_parameters。
    :raises ValidationError: 参数缺少 subject、CN 或 SAN。
    """
    if csr_parameters is None:
        csr_parameters = config.client_csr_parameters
    params = _check_csr_parameters(csr_parameters)
    pair = await engine.create_csr(params)
    return await create_dfsp_outbound_enrollment(engine, dfsp_id, pair.csr, pair.private_key)


async def _load_dfsp_ca(engine: VaultPKIEngine, dfsp_id: Any) -> Optional[CABundle]:
    stored = await engine.get_dfsp_ca(dfsp_id, default=None)
    return CABundle.model_validate(stored) if stored is not None else None


async def add_dfsp_outbound_enrollment_certificate(
    engine: VaultPKIEngine, dfsp_id: Any, en_id: Any, certificate: str
) -> CertSignedEnrollment:
    """
    上传 DFSP CA 签发的证书，结合 DFSP CA 证书包执行出站校验并进入 CERT_SIGNED。
    返回值不包含私钥。
    :raises NotFoundError: 登记不存在。
    :raises ValidationError: 证书无法解析，或登记已是 CERT_SIGNED 状态。
    """
    enrollment = parse_enrollment(await engine.get_dfsp_outbound_enrollment(dfsp_id, en_id))
    _require_csr_loaded(enrollment)
    cert_info = _parse_certificate(engine, certificate)
    dfsp_ca = await _load_dfsp_ca(engine, dfsp_id)

    aggregate = engine.validate_outbound_enrollment(
        {"csr": enrollment.csr, "certificate": certificate, "key": enrollment.key},
        dfsp_ca=dfsp_ca,
    )
    signed = mark_cert_signed(enrollment, certificate, cert_info, aggregate)
    await engine.set_dfsp_outbound_enrollment(dfsp_id, en_id, signed.model_dump(mode="json"))
    logger.info(
        f"DFSP {dfsp_id} 出站登记 {en_id} 已上传证书，校验结果: {aggregate.validation_state.value}"
    )
    return _without_key(signed)


async def validate_dfsp_outbound_enrollment_certificate(
    engine: VaultPKIEngine, dfsp_id: Any, en_id: Any
) -> CertSignedEnrollment:
    """
    对已上传证书的出站登记重新执行出站校验（例如 DFSP CA 更新之后）。
    :raises ValidationError: 登记尚未上传证书。
    """
    enrollment = parse_enrollment(await engine.get_dfsp_outbound_enrollment(dfsp_id, en_id))
    if not isinstance(enrollment, CertSignedEnrollment):
        raise ValidationError(f"Enrollment {en_id} has no certificate")
    dfsp_ca = await _load_dfsp_ca(engine, dfsp_id)

    aggregate = engine.validate_outbound_enrollment(
        {"csr": enrollment.csr, "certificate": enrollment.certificate, "key": enrollment.key},
        dfsp_ca=dfsp_ca,
    )
    updated = revalidate(enrollment, aggregate)
    await engine.set_dfsp_outbound_enrollment(dfsp_id, en_id, updated.model_dump(mode="json"))
    return _without_key(updated)


async def get_dfsp_outbound_enrollments(
    engine: VaultPKIEngine, dfsp_id: Any, state: Optional[Any] = None
) -> List[AnyEnrollment]:
    records = await engine.get_dfsp_outbound_enrollments(dfsp_id)
    enrollments = sorted((_without_key(parse_enrollment(r)) for r in records), key=lambda en: en.id)
    return _filter_state(enrollments, state)


async def get_dfsp_outbound_enrollment(engine: VaultPKIEngine, dfsp_id: Any, en_id: Any) -> AnyEnrollment:
    return _without_key(parse_enrollment(await engine.get_dfsp_outbound_enrollment(dfsp_id, en_id)))

# endregion
