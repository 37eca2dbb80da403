"""
Hub CA 的业务逻辑层：内部 CA（由 Vault 生成）与外部 CA（导入证书链与私钥）。
"""

from typing import Any, List, Optional

from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from loguru import logger

from src.connection_manager.config import config
from src.connection_manager.errors import ValidationError
from src.connection_manager.pki_engine import parser
from src.connection_manager.pki_engine.schemas import CAInitialInfo, CAType, CertInfo, IntermediateCA
from src.connection_manager.pki_engine.validation_codes import ValidState
from src.connection_manager.pki_engine.vault_engine import VaultPKIEngine

from .schemas import HubCA, HubCAInfo


def _chain_info(engine: VaultPKIEngine, intermediate_chain: Optional[str]) -> List[CertInfo]:
    return [engine.get_cert_info(cert) for cert in engine.split_certificate_chain(intermediate_chain or "")]


def _spki(public_key) -> bytes:
    return public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)


def _pem_bundle(root_certificate: str, intermediate_chain: str, private_key: str) -> str:
    """
    组装写入 Vault 的证书包：与私钥匹配的证书在前，其余按中间证书、根证书的顺序，以换行分隔。
    """
    certs = parser.split_certificate_chain(intermediate_chain) + parser.split_certificate_chain(root_certificate)
    key_spki = _spki(parser.load_private_key(private_key).public_key())
    signing = [pem for pem in certs if _spki(parser.load_certificate(pem).public_key()) == key_spki]
    rest = [pem for pem in certs if pem not in signing]
    return "\n".join(signing + rest)


async def create_internal_hub_ca(engine: VaultPKIEngine, info: Any, ttl: Optional[str] = None) -> HubCAInfo:
    """
    在 Vault 中生成新的自签名根 CA 作为 Hub CA。
    :param info: CAInitialInfo 或等价字典。
    :param ttl: 有效期，缺省使用 config.vault_internal_ca_ttl。
    :return: 已保存的 Hub CA 描述。
    :raises ValidationError: info 不合法。
    """
    if not ttl:
        ttl = config.vault_internal_ca_ttl
    root = await engine.create_ca(info, ttl)
    hub_ca = HubCAInfo(
        type=CAType.INTERNAL,
        root_certificate=root.cert,
        root_certificate_info=engine.get_cert_info(root.cert),
        signature_algorithm=root.info.signature_algorithm,
    )
    await engine.set_hub_ca_cert_details(hub_ca.model_dump(mode="json"))
    logger.info(f"内部 Hub CA 已创建: CN={root.info.CN}, TTL={ttl}")
    return hub_ca


async def create_external_hub_ca(
    engine: VaultPKIEngine,
    root_certificate: Optional[str],
    intermediate_chain: Optional[str],
    private_key: Optional[str],
) -> HubCAInfo:
    """
    导入外部 CA。只有校验通过时才安装到 Vault 并保存描述。
    :raises ValidationError: 未提供私钥。
    """
    if not private_key:
        raise ValidationError('Missing "privateKey" property')
    root_certificate = root_certificate or ""
    intermediate_chain = intermediate_chain or ""

    aggregate = engine.validate_ca_certificate(root_certificate, intermediate_chain, private_key)
    hub_ca = HubCAInfo(
        type=CAType.EXTERNAL,
        root_certificate=root_certificate,
        root_certificate_info=engine.get_cert_info(root_certificate) if root_certificate else None,
        intermediate_chain=intermediate_chain,
        intermediate_chain_info=_chain_info(engine, intermediate_chain),
        validations=aggregate.validations,
        validation_state=aggregate.validation_state,
    )

    if aggregate.validation_state == ValidState.VALID:
        await engine.set_hub_ca_cert_chain(_pem_bundle(root_certificate, intermediate_chain, private_key), private_key)
        await engine.set_hub_ca_cert_details(hub_ca.model_dump(mode="json"))
        logger.info("外部 Hub CA 已安装")
    else:
        logger.warning("外部 Hub CA 校验未通过，未安装")
    return hub_ca


async def get_hub_ca(engine: VaultPKIEngine) -> HubCA:
    return HubCA(root_certificate=await engine.get_root_ca_cert())


async def get_hub_ca_info(engine: VaultPKIEngine) -> HubCAInfo:
    """
    :raises NotFoundError: 尚未创建 Hub CA。
    """
    return HubCAInfo.model_validate(await engine.get_hub_ca_cert_details())


async def delete_hub_ca(engine: VaultPKIEngine) -> None:
    await engine.delete_hub_ca_cert_details()
    await engine.delete_ca()
    logger.info("Hub CA 已删除")


async def create_hub_intermediate_ca(engine: VaultPKIEngine, info: Any) -> IntermediateCA:
    return await engine.create_intermediate_ca(CAInitialInfo.from_document(info))
