"""
校验函数与校验目录。

每个校验函数签名为 ``check(code, subject) -> Validation``，只读取 subject 中自己需要的字段；
缺少所需材料时返回 performed=False（NOT_AVAILABLE），不视为失败。
CSR/证书无法解析时抛出 InvalidEntityError，由调用方处理。

公开接口：
- CERTIFICATE_CHECKS: 服务端证书校验目录
- CA_CHECKS: CA 证书包校验目录
- ENROLLMENT_CHECKS: 登记（CSR + 证书）校验目录
- JWS_CHECKS: JWS 公钥校验目录
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from cryptography.x509.oid import ExtendedKeyUsageOID
from loguru import logger

from ..errors import InvalidEntityError
from . import parser
from .chain import ChainVerificationError, is_self_signed, load_trusted_roots, verify_certificate_chain
from .schemas import CAType, Validation, ValidationSubject
from .validation_codes import VALIDATION_PARAMS, ValidationCode as VC, ValidState

Check = Callable[[VC, ValidationSubject], Validation]

MANDATORY_DISTINGUISHED_NAMES = ["CN", "OU", "O", "L", "ST", "C", "E"]

VALID_SELF_SIGNED = "VALID(SELF_SIGNED)"
VALID_SIGNED = "VALID(SIGNED)"


def _result(code: VC, result: ValidState, message: str = "", details: Any = None) -> Validation:
    return Validation(validation_code=code.value, performed=True, result=result, message=message, details=details)


def _not_available(code: VC, message: str) -> Validation:
    return Validation(validation_code=code.value, performed=False, message=message)


def _spki(public_key) -> bytes:
    return public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)


def _anchors(subject: ValidationSubject):
    return subject.trusted_roots if subject.trusted_roots is not None else load_trusted_roots()


def _ca_certificates(root_certificate: Optional[str], intermediate_chain: Optional[str]) -> List[x509.Certificate]:
    certs = parser.load_chain(intermediate_chain)
    if root_certificate:
        certs.insert(0, parser.load_certificate(root_certificate))
    return certs


def _extended_key_usage(cert: x509.Certificate) -> List[x509.ObjectIdentifier]:
    try:
        return list(cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value)
    except x509.ExtensionNotFound:
        return []


# ---------------------------------------------------------------------------
# 证书类
# ---------------------------------------------------------------------------


def check_certificate_validity(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.certificate:
        return _not_available(code, "No certificate")
    info = parser.parse_cert(subject.certificate)
    now = datetime.now(timezone.utc)
    if info.not_before <= now <= info.not_after:
        return _result(code, ValidState.VALID, "Certificate is valid for the current date.")
    return _result(code, ValidState.INVALID, "Certificate is not valid for the current date.")


def _check_usage(code: VC, subject: ValidationSubject, usage: x509.ObjectIdentifier, label: str) -> Validation:
    if not subject.certificate:
        return _not_available(code, "No certificate")
    cert = parser.load_certificate(subject.certificate)
    if usage not in _extended_key_usage(cert):
        return _result(code, ValidState.INVALID, f'Certificate doesn\'t have the "{label}" key usage extension')
    return _result(code, ValidState.VALID, f'Certificate has the "{label}" key usage extension')


def check_certificate_usage_server(code: VC, subject: ValidationSubject) -> Validation:
    return _check_usage(code, subject, ExtendedKeyUsageOID.SERVER_AUTH, "TLS WWW server authentication")


def check_certificate_usage_client(code: VC, subject: ValidationSubject) -> Validation:
    return _check_usage(code, subject, ExtendedKeyUsageOID.CLIENT_AUTH, "TLS WWW client authentication")


def check_certificate_chain(code: VC, subject: ValidationSubject) -> Validation:
    """证书须由根证书或中间证书之一直接签发。"""
    if not subject.certificate:
        return _not_available(code, "No certificate")
    cert = parser.load_certificate(subject.certificate)
    anchors = _ca_certificates(subject.root_certificate, subject.intermediate_chain)
    try:
        verify_certificate_chain([cert], anchors)
    except ChainVerificationError as e:
        return _result(code, ValidState.INVALID, str(e))
    return _result(code, ValidState.VALID, "Certificate chain valid")


def check_certificate_key_length(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.certificate:
        return _not_available(code, "No certificate")
    key_length = VALIDATION_PARAMS[code]
    actual = parser.parse_cert(subject.certificate).public_key_length or 0
    if actual >= key_length:
        return _result(code, ValidState.VALID, "Certificate key length valid")
    template = "Certificate key length ${data.actualKeySize.value} invalid, should be ${data.keyLength.value}"
    return Validation(
        validation_code=code.value,
        result=ValidState.INVALID,
        message=f"Certificate key length {actual} invalid, should be {key_length}",
        details={"actualKeySize": actual, "minKeySize": key_length},
        data={
            "actualKeySize": {"type": "INTEGER", "value": actual},
            "keyLength": {"type": "INTEGER", "value": key_length},
        },
        message_template=template,
    )


def check_certificate_algorithm(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.certificate:
        return _not_available(code, "No certificate")
    expected = VALIDATION_PARAMS[code]
    actual = parser.parse_cert(subject.certificate).signature_algorithm
    if actual == expected:
        return _result(code, ValidState.VALID, f"certificate has a valid Signature Algorithm : {actual}")
    return _result(code, ValidState.INVALID, f"certificate has a an invalid Signature Algorithm {actual}")


# ---------------------------------------------------------------------------
# 证书链 / CA 类
# ---------------------------------------------------------------------------


def check_root_certificate(code: VC, subject: ValidationSubject) -> Validation:
    """根证书须自签名，或由某个公共根证书签发。"""
    if not subject.root_certificate:
        return _not_available(code, "No root certificate")
    cert = parser.load_certificate(subject.root_certificate)
    if is_self_signed(cert):
        state = VALID_SELF_SIGNED
    else:
        try:
            verify_certificate_chain([cert], _anchors(subject))
        except ChainVerificationError as e:
            logger.warning(f"根证书校验失败: {e}, subject={cert.subject.rfc4514_string()}")
            return _result(
                code,
                ValidState.INVALID,
                "The root certificate must be valid and be self-signed or signed by a global root.",
            )
        state = VALID_SIGNED
    return _result(code, ValidState.VALID, f"The root certificate is valid with {state} state.", state)


def check_chain_certificates(code: VC, subject: ValidationSubject) -> Validation:
    """中间证书须都是有效 CA，且链顶由根证书（缺省时为公共根证书）签发。"""
    intermediates = parser.load_chain(subject.intermediate_chain)
    if not intermediates:
        return _not_available(code, "No intermediate chain")
    if subject.root_certificate:
        anchors = [parser.load_certificate(subject.root_certificate)]
    else:
        anchors = list(_anchors(subject))
    try:
        verify_certificate_chain(intermediates, anchors)
    except ChainVerificationError as e:
        return _result(
            code,
            ValidState.INVALID,
            "the intermediateChain must be made of valid CAs and that the top of the chain is signed by the root",
            str(e),
        )
    return _result(
        code,
        ValidState.VALID,
        "The intermediateChain is made of valid CAs and at the top of the chain is signed by the root.",
    )


def check_ca_certificate_usage(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.root_certificate:
        return _not_available(code, "No root certificate and currently not validating intermediate CAs if present")
    cert = parser.load_certificate(subject.root_certificate)
    try:
        is_ca = cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        is_ca = False
    if not is_ca:
        return _result(
            code, ValidState.INVALID, "The root certificate doesn't have the CA basic contraint extension ( CA = true )"
        )
    return _result(code, ValidState.VALID, "The root certificate has the CA basic contraint extension ( CA = true )")


def _key_matches(cert: x509.Certificate, key) -> bool:
    return _spki(cert.public_key()) == _spki(key.public_key())


def check_ca_key_match(code: VC, subject: ValidationSubject) -> Validation:
    """根证书或任一中间证书与私钥匹配即通过。"""
    if not subject.key:
        return _not_available(code, "No private key")
    key = parser.load_private_key(subject.key)
    certs = _ca_certificates(subject.root_certificate, subject.intermediate_chain)
    if any(_key_matches(cert, key) for cert in certs):
        return _result(code, ValidState.VALID, "A certificate of the chain matches the private key")
    return _result(code, ValidState.INVALID, "No certificate matches the private key")


# ---------------------------------------------------------------------------
# 登记类（CSR 及 CSR 与证书的一致性）
# ---------------------------------------------------------------------------


def check_csr_signature(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.csr:
        return _not_available(code, "No CSR")
    csr = parser.load_csr(subject.csr)
    if csr.is_signature_valid:
        return _result(code, ValidState.VALID, "CSR passed verification")
    return _result(code, ValidState.INVALID, "CSR failed verification: signature does not match the public key")


def check_csr_signature_algorithm(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.csr:
        return _not_available(code, "No CSR")
    algorithms = VALIDATION_PARAMS[code]
    actual = parser.parse_csr(subject.csr).signature_algorithm
    if actual in algorithms:
        return _result(code, ValidState.VALID, f"CSR has a valid Signature Algorithm : {actual}")
    return _result(code, ValidState.INVALID, f"CSR has a an invalid Signature Algorithm {actual}")


def check_csr_key_length(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.csr:
        return _not_available(code, "No CSR")
    length = VALIDATION_PARAMS[code]
    actual = parser.parse_csr(subject.csr).public_key_length or 0
    if actual >= length:
        return _result(code, ValidState.VALID, f"CSR has a valid Public Key length of {length}")
    return _result(
        code,
        ValidState.INVALID,
        f"CSR Public Key length is not {length}, it is {actual}",
        {"actualKeySize": actual, "minKeySize": length},
    )


def check_csr_mandatory_names(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.csr:
        return _not_available(code, "No CSR")
    info = parser.parse_csr(subject.csr)
    for field in MANDATORY_DISTINGUISHED_NAMES:
        if not info.subject.get(field):
            return _result(
                code, ValidState.INVALID, f"CSR missing required distinguished name attributes. Missing: {field}"
            )
    return _result(code, ValidState.VALID, "CSR has all mandatory distiguished name attributes")


def _missing_pair(code: VC, subject: ValidationSubject) -> Optional[Validation]:
    if not subject.certificate:
        return _not_available(code, "No certificate")
    if not subject.csr:
        return _not_available(code, "No CSR")
    return None


def check_csr_cert_same_public_key(code: VC, subject: ValidationSubject) -> Validation:
    missing = _missing_pair(code, subject)
    if missing is not None:
        return missing
    cert_key = _spki(parser.load_certificate(subject.certificate).public_key())
    csr_key = _spki(parser.load_csr(subject.csr).public_key())
    if cert_key == csr_key:
        return _result(code, ValidState.VALID, "CSR and Certificate have the same Public Key")
    return _result(code, ValidState.INVALID, "CSR and Certificate have different Public Keys")


def compare_subjects(csr_subject: Dict[str, str], cert_subject: Dict[str, str]) -> Optional[str]:
    """返回第一个不一致字段的描述，一致时返回 None。"""
    for field in [*csr_subject, *cert_subject]:
        if csr_subject.get(field) != cert_subject.get(field):
            return (
                f"csr subject {field}: {csr_subject.get(field)} is not equals "
                f"cert subject {field}: {cert_subject.get(field)}"
            )
    return None


def compare_subject_alt_names(csr_san, cert_san) -> Optional[str]:
    """逐类比较 SAN，列表按排序后比较，与顺序无关。"""
    for field in ("dns", "ips", "uris", "email_addresses"):
        csr_values = sorted(getattr(csr_san, field))
        cert_values = sorted(getattr(cert_san, field))
        if csr_values != cert_values:
            return f"csr subject {field}: {csr_values} is not equal to cert subject {field}: {cert_values}"
    return None


def check_csr_cert_same_subject(code: VC, subject: ValidationSubject) -> Validation:
    missing = _missing_pair(code, subject)
    if missing is not None:
        return missing
    if subject.ca_type == CAType.EXTERNAL:
        return _not_available(code, "It has an External CA")
    csr_info = parser.parse_csr(subject.csr)
    cert_info = parser.parse_cert(subject.certificate)
    reason = compare_subjects(csr_info.subject, cert_info.subject)
    if reason:
        return _result(
            code, ValidState.INVALID, "The CSR and the Certificate must have the same Subject Information", reason
        )
    reason = compare_subject_alt_names(
        csr_info.extensions.subject_alt_name, cert_info.extensions.subject_alt_name
    )
    if reason:
        return _result(
            code,
            ValidState.INVALID,
            "The CSR and the Certificate must have the same Subject Extension Information",
            reason,
        )
    return _result(code, ValidState.VALID, "The CSR and the Certificate have the same Subject Information")


def check_csr_cert_same_cn(code: VC, subject: ValidationSubject) -> Validation:
    missing = _missing_pair(code, subject)
    if missing is not None:
        return missing
    if subject.ca_type == CAType.INTERNAL:
        return _not_available(code, "It has an Internal CA")
    csr_cn = parser.parse_csr(subject.csr).subject.get("CN")
    cert_cn = parser.parse_cert(subject.certificate).subject.get("CN")
    if csr_cn != cert_cn:
        return _result(
            code,
            ValidState.INVALID,
            "The CSR and the Certificate must have the same CN",
            f"csr subject CN: {csr_cn} and cert subject CN: {cert_cn} are different",
        )
    return _result(code, ValidState.VALID, "The CSR and the Certificate have the same CN")


def check_certificate_key_match(code: VC, subject: ValidationSubject) -> Validation:
    if not subject.certificate:
        return _not_available(code, "No certificate")
    if not subject.key:
        return _not_available(code, "No private key")
    cert = parser.load_certificate(subject.certificate)
    key = parser.load_private_key(subject.key)
    if not _key_matches(cert, key):
        return _result(
            code, ValidState.INVALID, "the Certificate Public Key doesn't match the private key used to sign the CSR"
        )
    return _result(code, ValidState.VALID, "the Certificate Public Key matches the private key used to sign the CSR")


def check_signed_by_dfsp_ca(code: VC, subject: ValidationSubject) -> Validation:
    ca = subject.dfsp_ca
    if ca is None or not (ca.root_certificate or ca.intermediate_chain):
        return _not_available(code, "No dfsp CA")
    if not subject.certificate:
        return _not_available(code, "No certificate")
    if ca.validation_state == ValidState.INVALID:
        return _result(code, ValidState.INVALID, "Invalid dfsp ca root or chain")
    cert = parser.load_certificate(subject.certificate)
    try:
        verify_certificate_chain([cert], _ca_certificates(ca.root_certificate, ca.intermediate_chain))
    except ChainVerificationError as e:
        return _result(code, ValidState.INVALID, str(e))
    return _result(code, ValidState.VALID, "The Certificate is signed by the DFSP CA")


# ---------------------------------------------------------------------------
# JWS
# ---------------------------------------------------------------------------


def check_jws_public_key(code: VC, subject: ValidationSubject) -> Validation:
    """公钥能被解析即视为有效。"""
    try:
        parser.load_public_key(subject.public_key)
    except InvalidEntityError as e:
        return _result(code, ValidState.INVALID, e.message)
    return _result(code, ValidState.VALID, "JWS public key is valid")


CERTIFICATE_CHECKS: Dict[VC, Check] = {
    VC.CERTIFICATE_VALIDITY: check_certificate_validity,
    VC.CERTIFICATE_USAGE_SERVER: check_certificate_usage_server,
    VC.CERTIFICATE_USAGE_CLIENT: check_certificate_usage_client,
    VC.CERTIFICATE_CHAIN: check_certificate_chain,
    VC.CERTIFICATE_PUBLIC_KEY_LENGTH_2048: check_certificate_key_length,
    VC.CERTIFICATE_PUBLIC_KEY_LENGTH_4096: check_certificate_key_length,
    VC.VERIFY_ROOT_CERTIFICATE: check_root_certificate,
    VC.VERIFY_CHAIN_CERTIFICATES: check_chain_certificates,
}

CA_CHECKS: Dict[VC, Check] = {
    VC.VERIFY_ROOT_CERTIFICATE: check_root_certificate,
    VC.VERIFY_CHAIN_CERTIFICATES: check_chain_certificates,
    VC.CA_CERTIFICATE_USAGE: check_ca_certificate_usage,
    VC.CSR_CERT_PUBLIC_PRIVATE_KEY_MATCH: check_ca_key_match,
}

ENROLLMENT_CHECKS: Dict[VC, Check] = {
    VC.CSR_SIGNATURE_VALID: check_csr_signature,
    VC.CSR_SIGNATURE_ALGORITHM_SHA256_512: check_csr_signature_algorithm,
    VC.CSR_PUBLIC_KEY_LENGTH_2048: check_csr_key_length,
    VC.CSR_PUBLIC_KEY_LENGTH_4096: check_csr_key_length,
    VC.CSR_CERT_SAME_PUBLIC_KEY: check_csr_cert_same_public_key,
    VC.CSR_CERT_SAME_SUBJECT_INFO: check_csr_cert_same_subject,
    VC.CSR_CERT_SAME_CN: check_csr_cert_same_cn,
    VC.CSR_MANDATORY_DISTINGUISHED_NAME: check_csr_mandatory_names,
    VC.CERTIFICATE_USAGE_CLIENT: check_certificate_usage_client,
    VC.CERTIFICATE_VALIDITY: check_certificate_validity,
    VC.CERTIFICATE_ALGORITHM_SHA256: check_certificate_algorithm,
    VC.CSR_CERT_PUBLIC_PRIVATE_KEY_MATCH: check_certificate_key_match,
    VC.CERTIFICATE_SIGNED_BY_DFSP_CA: check_signed_by_dfsp_ca,
}

JWS_CHECKS: Dict[VC, Check] = {
    VC.JWS_PUBLIC_KEY_VALID: check_jws_public_key,
}
