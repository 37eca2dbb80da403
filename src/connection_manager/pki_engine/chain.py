"""
证书链校验：按“叶子 -> 根”的顺序逐级验证签名、有效期与 CA 约束，
最后一张证书必须本身是信任锚，或由某个信任锚直接签发。

公开接口：
- ChainVerificationError: 证书链校验失败
- verify_certificate_chain: 校验证书链
- is_self_signed: 判断证书是否自签名
- load_trusted_roots: 加载公共根证书（certifi）
"""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Tuple

import certifi
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import Encoding
from loguru import logger

from ..errors import InvalidEntityError
from .parser import load_certificate, split_certificate_chain


class ChainVerificationError(ValueError):
    """证书链校验失败。"""


def _issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
        return True
    except (ValueError, TypeError, InvalidSignature, UnsupportedAlgorithm):
        return False


def _is_ca(cert: x509.Certificate) -> Optional[bool]:
    """返回 basicConstraints 的 CA 标志；扩展缺失时返回 None。"""
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return None


def is_self_signed(cert: x509.Certificate) -> bool:
    return cert.subject == cert.issuer


def verify_certificate_chain(
    chain: Sequence[x509.Certificate],
    anchors: Iterable[x509.Certificate],
    now: Optional[datetime] = None,
) -> None:
    """
    校验证书链。
    :param chain: 按叶子到根排列的证书列表。
    :param anchors: 信任锚列表。
    :param now: 校验时刻，默认当前 UTC 时间。
    :raises ChainVerificationError: 任一环节失败。
    """
    if not chain:
        raise ChainVerificationError("Empty certificate chain")
    now = now or datetime.now(timezone.utc)
    anchors = list(anchors)

    for index, cert in enumerate(chain):
        if now < cert.not_valid_before_utc or now > cert.not_valid_after_utc:
            raise ChainVerificationError(f"Certificate {cert.subject.rfc4514_string()} is not valid for the current date")
        if index + 1 >= len(chain):
            break
        parent = chain[index + 1]
        if not _issued_by(cert, parent):
            raise ChainVerificationError(
                f"Certificate {cert.subject.rfc4514_string()} is not signed by {parent.subject.rfc4514_string()}"
            )
        if _is_ca(parent) is False:
            raise ChainVerificationError(f"Certificate {parent.subject.rfc4514_string()} is not a CA")

    last = chain[-1]
    last_der = last.public_bytes(Encoding.DER)
    for anchor in anchors:
        if anchor.public_bytes(Encoding.DER) == last_der:
            return
        if anchor.subject == last.issuer and _issued_by(last, anchor):
            return
    raise ChainVerificationError(f"Certificate {last.subject.rfc4514_string()} is not issued by a trusted authority")


@lru_cache(maxsize=1)
def load_trusted_roots() -> Tuple[x509.Certificate, ...]:
    """从 certifi 读取公共根证书，无法解析的条目跳过。"""
    with open(certifi.where(), "r", encoding="utf-8") as f:
        bundle = f.read()
    roots: List[x509.Certificate] = []
    for pem in split_certificate_chain(bundle):
        try:
            roots.append(load_certificate(pem))
        except InvalidEntityError as e:
            logger.debug(f"跳过无法解析的根证书: {e}")
    logger.debug(f"已加载 {len(roots)} 个公共根证书")
    return tuple(roots)
