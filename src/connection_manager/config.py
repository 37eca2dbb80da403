"""
配置加载模块：支持 .env、环境变量、工作目录 config.json（或 CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.parse_csr_parameters: 将 JSON 字符串解析为 CSR 参数字典
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


class Config(BaseSettings):
    # Vault 连接与认证
    vault_endpoint: str = "http://127.0.0.1:8233"
    vault_auth_method: Literal["APP_ROLE", "K8S"] = "APP_ROLE"
    vault_role_id: str = ""
    vault_role_secret_id: str = ""
    vault_k8s_role: str = ""
    vault_k8s_token_file: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    vault_k8s_auth_mount: str = "kubernetes"
    vault_timeout_seconds: float = 30.0
    vault_reconnect_retry_seconds: float = 10.0

    # Vault 挂载点
    vault_mount_pki: str = "pki"
    vault_mount_intermediate_pki: str = "pki_int"
    vault_mount_kv: str = "secrets"
    vault_mount_dfsp_client_cert_bundle: str = "onboarding_pm4mls"
    vault_mount_dfsp_int_ip_whitelist_bundle: str = "whitelist_pm4mls"
    vault_mount_dfsp_ext_ip_whitelist_bundle: str = "whitelist_fsps"

    # PKI 角色与签发策略
    vault_pki_server_role: str = "example.com"
    vault_pki_client_role: str = "example.com"
    vault_sign_expiry_hours: int = 43800
    vault_internal_ca_ttl: str = "87600h"
    private_key_length: int = 4096
    private_key_algorithm: str = "rsa"

    switch_fqdn: str = "switch.example.com"
    client_csr_parameters: Dict[str, Any] = {}
    server_csr_parameters: Dict[str, Any] = {}

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("client_csr_parameters", "server_csr_parameters", mode="before")
    @classmethod
    def parse_csr_parameters(cls, value: Any) -> Dict[str, Any]:
        """支持从环境变量以 JSON 字符串形式提供 CSR 参数。"""
        if value is None or value == "":
            return {}
        if isinstance(value, str):
            loaded = json.loads(value)
            if not isinstance(loaded, dict):
                raise ValueError("CSR 参数必须是 JSON 对象")
            return loaded
        return value

    @field_validator("private_key_length")
    @classmethod
    def check_key_length(cls, value: int) -> int:
        if value not in (2048, 4096):
            raise ValueError("private_key_length 只支持 2048 或 4096")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """从工作目录的 config.json（或 CONFIG_FILE 指定路径）加载配置的自定义 Source。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                self._data: Dict[str, Any] | None = None

            def _load(self) -> None:
                if self._data is not None:
                    return
                cfg_path = os.environ.get("CONFIG_FILE")
                path = Path(cfg_path) if cfg_path else Path.cwd() / "config.json"
                if not path.exists():
                    self._data = {}
                    return
                with path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
                self._data = data if isinstance(data, dict) else {}

            def __call__(self) -> Dict[str, Any]:
                self._load()
                return dict(self._data or {})

            def get_field_value(self, field, field_name):  # type: ignore[override]
                """为满足抽象基类要求，按字段名返回字段值。"""
                self._load()
                data = self._data or {}
                if field_name in data:
                    return data[field_name], field_name, False
                return None, field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
