"""
DFSP 证书材料的数据模型定义。
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from src.connection_manager.pki_engine.schemas import CertInfo, Validation
from src.connection_manager.pki_engine.validation_codes import ValidState


class ServerCertificates(BaseModel):
    """
    DFSP 或 Hub 的服务端证书及其证书链。
    """
    dfsp_id: Optional[str] = None
    root_certificate: Optional[str] = None
    root_certificate_info: Optional[CertInfo] = None
    intermediate_chain: Optional[str] = None
    intermediate_chain_info: List[CertInfo] = Field(default_factory=list)
    server_certificate: Optional[str] = None
    server_certificate_info: Optional[CertInfo] = None
    serial_number: Optional[str] = None  # Vault 签发时返回的序列号，吊销时使用
    validations: List[Validation] = Field(default_factory=list)
    validation_state: ValidState = ValidState.VALID


class JWSCertificate(BaseModel):
    """
    DFSP 的 JWS 公钥。
    """
    dfsp_id: str
    public_key: Optional[str] = None
    created_at: int = 0
    validations: List[Validation] = Field(default_factory=list)
    validation_state: ValidState = ValidState.VALID


class ExternalJWSItem(BaseModel):
    dfsp_id: str
    public_key: Optional[str] = None
    created_at: int = 0
