"""
Hub CA 相关的数据模型定义。
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from src.connection_manager.pki_engine.schemas import CAType, CertInfo, Validation
from src.connection_manager.pki_engine.validation_codes import ValidState


class HubCAInfo(BaseModel):
    """
    保存在 hub-ca-details 中的 Hub CA 描述。
    """
    type: CAType
    root_certificate: Optional[str] = None
    root_certificate_info: Optional[CertInfo] = None
    intermediate_chain: Optional[str] = None
    intermediate_chain_info: List[CertInfo] = Field(default_factory=list)
    signature_algorithm: Optional[str] = None  # 签发入站登记时使用
    validations: List[Validation] = Field(default_factory=list)
    validation_state: ValidState = ValidState.VALID


class HubCA(BaseModel):
    """
    Vault 当前安装的根 CA 证书。
    """
    root_certificate: str
    validation_state: ValidState = ValidState.VALID
    type: CAType = CAType.INTERNAL
