"""
根据配置构造 VaultPKIEngine。

公开接口：
- build_pki_engine: 创建未连接的引擎
- pki_engine_session: 连接 Vault 并在退出时关闭引擎的异步上下文管理器
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from .config import Config, config as default_config
from .pki_engine.vault_engine import VaultAuth, VaultMounts, VaultPKIEngine


def build_pki_engine(
    cfg: Optional[Config] = None, transport: Optional[httpx.AsyncBaseTransport] = None
) -> VaultPKIEngine:
    """
    :param cfg: 缺省使用全局 config。
    :param transport: 可选的 httpx 传输层（测试时注入）。
    """
    cfg = cfg or default_config
    auth = VaultAuth(
        method=cfg.vault_auth_method,
        role_id=cfg.vault_role_id,
        secret_id=cfg.vault_role_secret_id,
        k8s_role=cfg.vault_k8s_role,
        k8s_token_file=cfg.vault_k8s_token_file,
        k8s_mount=cfg.vault_k8s_auth_mount,
    )
    mounts = VaultMounts(
        pki=cfg.vault_mount_pki,
        intermediate_pki=cfg.vault_mount_intermediate_pki,
        kv=cfg.vault_mount_kv,
        dfsp_client_cert_bundle=cfg.vault_mount_dfsp_client_cert_bundle,
        dfsp_internal_ip_whitelist_bundle=cfg.vault_mount_dfsp_int_ip_whitelist_bundle,
        dfsp_external_ip_whitelist_bundle=cfg.vault_mount_dfsp_ext_ip_whitelist_bundle,
    )
    return VaultPKIEngine(
        cfg.vault_endpoint,
        auth,
        mounts=mounts,
        pki_server_role=cfg.vault_pki_server_role,
        pki_client_role=cfg.vault_pki_client_role,
        sign_expiry_hours=cfg.vault_sign_expiry_hours,
        key_length=cfg.private_key_length,
        key_algorithm=cfg.private_key_algorithm,
        timeout=cfg.vault_timeout_seconds,
        reconnect_retry_seconds=cfg.vault_reconnect_retry_seconds,
        transport=transport,
    )


@asynccontextmanager
async def pki_engine_session(
    cfg: Optional[Config] = None, transport: Optional[httpx.AsyncBaseTransport] = None
) -> AsyncIterator[VaultPKIEngine]:
    engine = build_pki_engine(cfg, transport)
    try:
        await engine.connect()
        yield engine
    finally:
        await engine.aclose()
