"""
Vault HTTP API 的异步客户端（基于 httpx.AsyncClient）。

只封装本项目用到的接口：登录、KV v1 读写、通用 request。
所有非 2xx 响应都转换为 ExternalProcessError（携带状态码与 Vault 的 errors 列表），
由上层按需把 404 映射为缺省值。

公开接口：
- VaultClient.request: 通用请求
- VaultClient.login_app_role / login_kubernetes: 登录并返回 auth 信息
- VaultClient.read / list / write / delete: KV 操作
- VaultClient.aclose: 关闭底层连接
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from ..errors import ExternalProcessError


def _vault_errors(response: httpx.Response) -> List[str]:
    try:
        body = response.json()
    except ValueError:
        return [response.text] if response.text else []
    if isinstance(body, dict):
        return list(body.get("errors") or [])
    return []


class VaultClient:
    def __init__(self, endpoint: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(base_url=endpoint.rstrip("/"), timeout=timeout, transport=transport)
        self.token: Optional[str] = None

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        raw: bool = False,
    ) -> Any:
        """
        发送请求到 /v1/{path}。
        :param raw: 为 True 时返回响应文本（用于 ca/pem、ca_chain 等非 JSON 接口）。
        :return: 响应 JSON；无内容时返回 None。
        :raises ExternalProcessError: 网络错误或非 2xx 响应。
        """
        url = f"/v1/{path.lstrip('/')}"
        headers = {"X-Vault-Token": self.token} if self.token else {}
        try:
            response = await self._client.request(method, url, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Vault 请求失败: {method} {url}: {e}")
            raise ExternalProcessError(f"Vault request {method} {url} failed: {e}") from e

        if response.status_code >= 400:
            errors = _vault_errors(response)
            raise ExternalProcessError(
                f"Vault request {method} {url} failed with status {response.status_code}",
                details={"path": path},
                status_code=response.status_code,
                errors=errors,
            )
        if raw:
            return response.text
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def login_app_role(self, role_id: str, secret_id: str) -> Dict[str, Any]:
        body = await self.request("POST", "auth/approle/login", json={"role_id": role_id, "secret_id": secret_id})
        return self._apply_auth(body)

    async def login_kubernetes(self, mount: str, role: str, jwt: str) -> Dict[str, Any]:
        body = await self.request("POST", f"auth/{mount}/login", json={"role": role, "jwt": jwt})
        return self._apply_auth(body)

    def _apply_auth(self, body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        auth = (body or {}).get("auth") or {}
        token = auth.get("client_token")
        if not token:
            raise ExternalProcessError("Vault login response has no client token")
        self.token = token
        return auth

    async def read(self, path: str) -> Optional[Dict[str, Any]]:
        """读取 KV，路径不存在时返回 None。"""
        try:
            body = await self.request("GET", path)
        except ExternalProcessError as e:
            if e.status_code == 404:
                return None
            raise
        return (body or {}).get("data")

    async def list(self, path: str) -> List[str]:
        """列出目录下的键，目录不存在时返回空列表。"""
        try:
            body = await self.request("GET", path, params={"list": "true"})
        except ExternalProcessError as e:
            if e.status_code == 404:
                return []
            raise
        return list(((body or {}).get("data") or {}).get("keys") or [])

    async def write(self, path: str, data: Dict[str, Any]) -> Any:
        return await self.request("POST", path, json=data)

    async def delete(self, path: str) -> None:
        try:
            await self.request("DELETE", path)
        except ExternalProcessError as e:
            if e.status_code != 404:
                raise

    async def aclose(self) -> None:
        await self._client.aclose()
