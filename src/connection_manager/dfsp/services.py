"""
DFSP 证书材料的业务逻辑层：DFSP CA、服务端证书、JWS 证书、网关证书包与 DFSP 数据清理。
Hub 服务端证书也在这里维护。
"""

from typing import Any, Dict, Iterable, List, Optional, Union

from loguru import logger

from src.connection_manager.config import config
from src.connection_manager.errors import ValidationError
from src.connection_manager.pki_engine.schemas import CABundle, CertInfo
from src.connection_manager.pki_engine.validation_codes import ValidState
from src.connection_manager.pki_engine.vault_engine import VaultPKIEngine

from .schemas import ExternalJWSItem, JWSCertificate, ServerCertificates


def _normalize_chain(chain: Union[str, List[str], None]) -> Optional[str]:
    """证书链可以是 PEM 列表，统一用换行拼接。"""
    if isinstance(chain, list):
        return "\n".join(chain)
    return chain


def _cert_info(engine: VaultPKIEngine, certificate: Optional[str]) -> Optional[CertInfo]:
    return engine.get_cert_info(certificate) if certificate else None


def _chain_info(engine: VaultPKIEngine, chain: Optional[str]) -> List[CertInfo]:
    return [engine.get_cert_info(cert) for cert in engine.split_certificate_chain(chain or "")]


# region DFSP CA

async def set_dfsp_ca(
    engine: VaultPKIEngine,
    dfsp_id: Any,
    root_certificate: Optional[str],
    intermediate_chain: Optional[str],
) -> CABundle:
    """
    保存 DFSP 的 CA（替换已有的），保存前执行 CA 校验。
    根证书可以是自签名证书，也可以是公共 CA 签发的证书。
    :return: 含校验结果的 CA 证书包。
    """
    root_certificate = root_certificate or ""
    intermediate_chain = intermediate_chain or ""
    aggregate = engine.validate_ca_certificate(root_certificate, intermediate_chain)
    bundle = CABundle(
        root_certificate=root_certificate,
        intermediate_chain=intermediate_chain,
        validations=aggregate.validations,
        validation_state=aggregate.validation_state,
    )
    await engine.set_dfsp_ca(dfsp_id, bundle.model_dump(mode="json"))
    logger.info(f"DFSP {dfsp_id} 的 CA 已保存，校验结果: {aggregate.validation_state.value}")
    return bundle


async def get_dfsp_ca(engine: VaultPKIEngine, dfsp_id: Any) -> CABundle:
    """DFSP 尚未上传 CA 时返回 NOT_AVAILABLE 的空证书包。"""
    stored = await engine.get_dfsp_ca(dfsp_id, default=None)
    if stored is None:
        return CABundle(validation_state=ValidState.NOT_AVAILABLE)
    return CABundle.model_validate(stored)


async def delete_dfsp_ca(engine: VaultPKIEngine, dfsp_id: Any) -> None:
    await engine.delete_dfsp_ca(dfsp_id)

# endregion


# region 服务端证书

async def create_dfsp_server_certs(
    engine: VaultPKIEngine,
    dfsp_id: Any,
    server_certificate: Optional[str],
    intermediate_chain: Union[str, List[str], None],
    root_certificate: Optional[str],
) -> ServerCertificates:
    """
    保存 DFSP 的服务端证书，保存前执行服务端证书校验。
    :param intermediate_chain: PEM 字符串或 PEM 列表。
    """
    intermediate_chain = _normalize_chain(intermediate_chain)
    aggregate = engine.validate_server_certificate(server_certificate, intermediate_chain, root_certificate)
    certs = ServerCertificates(
        dfsp_id=str(dfsp_id),
        root_certificate=root_certificate,
        root_certificate_info=_cert_info(engine, root_certificate),
        intermediate_chain=intermediate_chain,
        intermediate_chain_info=_chain_info(engine, intermediate_chain),
        server_certificate=server_certificate,
        server_certificate_info=_cert_info(engine, server_certificate),
        validations=aggregate.validations,
        validation_state=aggregate.validation_state,
    )
    await engine.set_dfsp_server_certs(dfsp_id, certs.model_dump(mode="json"))
    return certs


async def get_dfsp_server_certs(engine: VaultPKIEngine, dfsp_id: Any) -> ServerCertificates:
    return ServerCertificates.model_validate(await engine.get_dfsp_server_certs(dfsp_id))


async def delete_dfsp_server_certs(engine: VaultPKIEngine, dfsp_id: Any) -> None:
    await engine.delete_dfsp_server_certs(dfsp_id)


async def create_hub_server_certs(
    engine: VaultPKIEngine, csr_parameters: Optional[Dict[str, Any]] = None
) -> ServerCertificates:
    """
    由 Vault 签发 Hub 的服务端证书并保存。
    :param csr_parameters: 缺省使用 config.server_csr_parameters。
    """
    if csr_parameters is None:
        csr_parameters = config.server_csr_parameters
    issued = await engine.create_hub_server_cert(csr_parameters)
    root_certificate = await engine.get_root_ca_cert()
    intermediate_chain = _normalize_chain(issued.get("ca_chain"))
    server_certificate = issued["certificate"]

    aggregate = engine.validate_server_certificate(server_certificate, intermediate_chain, root_certificate)
    certs = ServerCertificates(
        root_certificate=root_certificate,
        root_certificate_info=_cert_info(engine, root_certificate),
        intermediate_chain=intermediate_chain,
        intermediate_chain_info=_chain_info(engine, intermediate_chain),
        server_certificate=server_certificate,
        server_certificate_info=_cert_info(engine, server_certificate),
        serial_number=issued.get("serial_number"),
        validations=aggregate.validations,
        validation_state=aggregate.validation_state,
    )
    await engine.set_hub_server_cert(certs.model_dump(mode="json"))
    logger.info(f"Hub 服务端证书已签发，序列号: {certs.serial_number}")
    return certs


async def get_hub_server_certs(engine: VaultPKIEngine) -> ServerCertificates:
    return ServerCertificates.model_validate(await engine.get_hub_server_cert())


async def delete_hub_server_certs(engine: VaultPKIEngine) -> None:
    """先吊销再删除；没有 Hub 服务端证书时不做任何事。"""
    stored = await engine.get_hub_server_cert(default=None)
    if stored is None:
        return
    certs = ServerCertificates.model_validate(stored)
    if certs.serial_number:
        await engine.revoke_hub_server_cert(certs.serial_number)
    await engine.delete_hub_server_cert()
    logger.info(f"Hub 服务端证书已吊销并删除，序列号: {certs.serial_number}")

# endregion


# region JWS 证书

async def create_dfsp_jws_certs(
    engine: VaultPKIEngine, dfsp_id: Any, public_key: Optional[str], created_at: int = 0
) -> JWSCertificate:
    aggregate = engine.validate_jws_certificate(public_key)
    jws = JWSCertificate(
        dfsp_id=str(dfsp_id),
        public_key=public_key,
        created_at=created_at,
        validations=aggregate.validations,
        validation_state=aggregate.validation_state,
    )
    await engine.set_dfsp_jws_certs(dfsp_id, jws.model_dump(mode="json"))
    return jws


async def create_dfsp_external_jws_certs(
    engine: VaultPKIEngine, items: List[Any], native_dfsp_ids: Iterable[Any] = ()
) -> List[JWSCertificate]:
    """
    保存其他 Hub 转发来的 JWS 证书，跳过本 Hub 原生 DFSP 的条目。
    :param items: ExternalJWSItem 或等价字典的列表，不能为空。
    :param native_dfsp_ids: 本 Hub 原生 DFSP 的 ID。
    :raises ValidationError: items 为空或不是列表。
    """
    if not isinstance(items, list) or not items:
        raise ValidationError(f"Invalid body {items}")
    native = {str(dfsp_id) for dfsp_id in native_dfsp_ids}

    result: List[JWSCertificate] = []
    for raw in items:
        item = ExternalJWSItem.model_validate(raw)
        if item.dfsp_id in native:
            continue
        aggregate = engine.validate_jws_certificate(item.public_key)
        jws = JWSCertificate(
            dfsp_id=item.dfsp_id,
            public_key=item.public_key,
            created_at=item.created_at,
            validations=aggregate.validations,
            validation_state=aggregate.validation_state,
        )
        await engine.set_dfsp_external_jws_certs(item.dfsp_id, jws.model_dump(mode="json"))
        result.append(jws)
    return result


async def get_dfsp_jws_certs(engine: VaultPKIEngine, dfsp_id: Any) -> JWSCertificate:
    return JWSCertificate.model_validate(await engine.get_dfsp_jws_certs(dfsp_id))


async def get_all_dfsp_jws_certs(engine: VaultPKIEngine) -> List[JWSCertificate]:
    """原生 DFSP 在前，外部 DFSP 在后。"""
    return [JWSCertificate.model_validate(item) for item in await engine.get_all_dfsp_jws_certs()]


async def delete_dfsp_jws_certs(engine: VaultPKIEngine, dfsp_id: Any) -> None:
    await engine.delete_dfsp_jws_certs(dfsp_id)

# endregion


async def delete_dfsp(engine: VaultPKIEngine, dfsp_id: Any) -> None:
    """删除某 DFSP 在 Vault 中的全部数据。"""
    await engine.delete_all_dfsp_data(dfsp_id)


async def publish_dfsp_client_cert_bundle(
    engine: VaultPKIEngine,
    dfsp_id: Any,
    dfsp_name: str,
    monetary_zone_id: Optional[str] = None,
    is_proxy: bool = False,
    fxp_currencies: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    把最新已签发的出站登记推送到网关的客户端证书包挂载点。
    :raises NotFoundError: DFSP CA 不存在，或没有已签发的出站登记。
    """
    return await engine.populate_dfsp_client_cert_bundle(
        dfsp_id, dfsp_name, monetary_zone_id=monetary_zone_id, is_proxy=is_proxy, fxp_currencies=fxp_currencies
    )
