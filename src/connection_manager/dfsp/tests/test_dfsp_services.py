"""
dfsp/services.py 的测试：DFSP CA、服务端证书、JWS 证书与数据清理。
"""

import pytest
from cryptography.x509.oid import ExtendedKeyUsageOID

from src.connection_manager.conftest import DFSP_SUBJECT
from src.connection_manager.config import config
from src.connection_manager.dfsp import services
from src.connection_manager.enrollment import services as enrollment_services
from src.connection_manager.errors import NotFoundError, ValidationError
from src.connection_manager.hub_ca import services as hub_ca_services
from src.connection_manager.pki_engine.validation_codes import ValidState

HUB_SERVER_PARAMS = {
    "subject": {"CN": "hub.test.io", "O": "Hub"},
    "extensions": {"subjectAltName": {"dns": ["hub.test.io"], "ips": ["10.1.1.1"]}},
}


def _by_code(item):
    return {v.validation_code: v for v in item.validations}


@pytest.fixture
def server_chain(pki, rsa_key, rsa_key_4096, other_rsa_key):
    """根 CA -> 中间 CA -> 服务端证书"""
    root = pki.root(key=other_rsa_key, cn="DFSP Root")
    intermediate = pki.certificate(
        key=rsa_key_4096, subject={"CN": "DFSP Intermediate", "O": "TestOrg"},
        issuer=root, issuer_key=other_rsa_key, is_ca=True,
    )
    server = pki.certificate(
        key=rsa_key, subject={"CN": "dfsp.test.io", "O": "TestOrg"},
        issuer=intermediate, issuer_key=rsa_key_4096,
        usages=[ExtendedKeyUsageOID.SERVER_AUTH], dns=["dfsp.test.io"],
    )
    return pki.pem(root), pki.pem(intermediate), pki.pem(server)


# region DFSP CA


async def test_set_and_get_dfsp_ca(engine, fake_vault, pki, other_rsa_key):
    root = pki.pem(pki.root(key=other_rsa_key))
    bundle = await services.set_dfsp_ca(engine, 1, root, None)

    assert bundle.validation_state == ValidState.VALID
    assert _by_code(bundle)["VERIFY_ROOT_CERTIFICATE"].details == "VALID(SELF_SIGNED)"
    assert fake_vault.kv["secrets/dfsp-ca/1"]["root_certificate"] == root
    assert await services.get_dfsp_ca(engine, 1) == bundle


async def test_set_dfsp_ca_with_chain(engine, server_chain):
    root, intermediate, _ = server_chain
    bundle = await services.set_dfsp_ca(engine, 1, root, intermediate)
    assert _by_code(bundle)["VERIFY_CHAIN_CERTIFICATES"].result == ValidState.VALID
    assert bundle.validation_state == ValidState.VALID


async def test_set_dfsp_ca_rejects_non_ca(engine, pki, rsa_key):
    bundle = await services.set_dfsp_ca(engine, 1, pki.pem(pki.certificate(key=rsa_key)), "")
    assert _by_code(bundle)["CA_CERTIFICATE_USAGE"].result == ValidState.INVALID
    assert bundle.validation_state == ValidState.INVALID


async def test_get_dfsp_ca_missing(engine):
    bundle = await services.get_dfsp_ca(engine, 1)
    assert bundle.validation_state == ValidState.NOT_AVAILABLE
    assert bundle.root_certificate is None


async def test_delete_dfsp_ca(engine, pki):
    await services.set_dfsp_ca(engine, 1, pki.pem(pki.root()), "")
    await services.delete_dfsp_ca(engine, 1)
    assert (await services.get_dfsp_ca(engine, 1)).validation_state == ValidState.NOT_AVAILABLE


# endregion


# region 服务端证书


async def test_create_dfsp_server_certs(engine, fake_vault, server_chain):
    root, intermediate, server = server_chain
    certs = await services.create_dfsp_server_certs(engine, 3, server, [intermediate], root)

    assert certs.dfsp_id == "3"
    assert certs.intermediate_chain == intermediate
    assert [info.subject["CN"] for info in certs.intermediate_chain_info] == ["DFSP Intermediate"]
    assert certs.server_certificate_info.subject["CN"] == "dfsp.test.io"
    by_code = _by_code(certs)
    assert by_code["CERTIFICATE_USAGE_SERVER"].result == ValidState.VALID
    assert by_code["CERTIFICATE_CHAIN"].result == ValidState.VALID
    assert by_code["CERTIFICATE_PUBLIC_KEY_LENGTH_2048"].result == ValidState.VALID
    assert certs.validation_state == ValidState.VALID

    assert "secrets/dfsp-server-cert/3" in fake_vault.kv
    assert await services.get_dfsp_server_certs(engine, 3) == certs


async def test_create_dfsp_server_certs_without_server_usage(engine, pki, rsa_key, other_rsa_key):
    root = pki.root(key=other_rsa_key)
    client_only = pki.certificate(key=rsa_key, issuer=root, issuer_key=other_rsa_key)
    certs = await services.create_dfsp_server_certs(engine, 3, pki.pem(client_only), None, pki.pem(root))
    assert _by_code(certs)["CERTIFICATE_USAGE_SERVER"].result == ValidState.INVALID
    assert certs.intermediate_chain_info == []


async def test_delete_dfsp_server_certs(engine, server_chain):
    root, intermediate, server = server_chain
    await services.create_dfsp_server_certs(engine, 3, server, intermediate, root)
    await services.delete_dfsp_server_certs(engine, 3)
    with pytest.raises(NotFoundError):
        await services.get_dfsp_server_certs(engine, 3)


async def test_hub_server_certs_lifecycle(engine, fake_vault):
    await hub_ca_services.create_internal_hub_ca(engine, {"CN": "Hub Root", "O": "Hub"})
    certs = await services.create_hub_server_certs(engine, HUB_SERVER_PARAMS)

    assert certs.server_certificate_info.subject["CN"] == "hub.test.io"
    assert certs.server_certificate_info.extensions.subject_alt_name.dns == ["hub.test.io"]
    assert certs.root_certificate_info.subject["CN"] == "Hub Root"
    assert certs.serial_number
    assert _by_code(certs)["CERTIFICATE_USAGE_SERVER"].result == ValidState.VALID
    assert (await services.get_hub_server_certs(engine)).serial_number == certs.serial_number

    await services.delete_hub_server_certs(engine)
    assert fake_vault.revoked == [certs.serial_number]
    assert "secrets/hub-server-cert" not in fake_vault.kv
    with pytest.raises(NotFoundError):
        await services.get_hub_server_certs(engine)


async def test_hub_server_certs_default_parameters(engine, monkeypatch):
    monkeypatch.setattr(config, "server_csr_parameters", HUB_SERVER_PARAMS)
    await hub_ca_services.create_internal_hub_ca(engine, {"CN": "Hub Root", "O": "Hub"})
    certs = await services.create_hub_server_certs(engine)
    assert certs.server_certificate_info.subject["CN"] == "hub.test.io"


async def test_delete_hub_server_certs_when_absent(engine, fake_vault):
    await services.delete_hub_server_certs(engine)
    assert fake_vault.revoked == []
    assert ("POST", "pki/revoke") not in fake_vault.requests


# endregion


# region JWS


async def test_create_dfsp_jws_certs(engine, fake_vault, pki, rsa_key):
    jws = await services.create_dfsp_jws_certs(engine, "dfsp1", pki.public_key_pem(rsa_key), created_at=1700000000)
    assert jws.validation_state == ValidState.VALID
    assert fake_vault.kv["secrets/dfsp-jws-certs/dfsp1"]["created_at"] == 1700000000
    assert await services.get_dfsp_jws_certs(engine, "dfsp1") == jws


async def test_create_dfsp_jws_certs_invalid_key(engine):
    jws = await services.create_dfsp_jws_certs(engine, "dfsp1", "not a key")
    assert jws.validation_state == ValidState.INVALID


@pytest.mark.parametrize("items", [[], {}, None, "dfsp1"])
async def test_create_external_jws_rejects_body(engine, items):
    with pytest.raises(ValidationError, match="Invalid body"):
        await services.create_dfsp_external_jws_certs(engine, items)


async def test_create_external_jws_skips_native(engine, fake_vault, pki, rsa_key, other_rsa_key):
    items = [
        {"dfsp_id": "local", "public_key": pki.public_key_pem(rsa_key)},
        {"dfsp_id": "remote", "public_key": pki.public_key_pem(other_rsa_key), "created_at": 5},
    ]
    stored = await services.create_dfsp_external_jws_certs(engine, items, native_dfsp_ids=["local"])

    assert [jws.dfsp_id for jws in stored] == ["remote"]
    assert "secrets/dfsp-external-jws-certs/remote" in fake_vault.kv
    assert "secrets/dfsp-external-jws-certs/local" not in fake_vault.kv


async def test_get_all_dfsp_jws_certs(engine, pki, rsa_key, other_rsa_key):
    await services.create_dfsp_external_jws_certs(
        engine, [{"dfsp_id": "remote", "public_key": pki.public_key_pem(other_rsa_key)}]
    )
    await services.create_dfsp_jws_certs(engine, "local", pki.public_key_pem(rsa_key))

    everything = await services.get_all_dfsp_jws_certs(engine)
    assert [jws.dfsp_id for jws in everything] == ["local", "remote"]


async def test_delete_dfsp_jws_certs(engine, pki, rsa_key):
    await services.create_dfsp_jws_certs(engine, "dfsp1", pki.public_key_pem(rsa_key))
    await services.delete_dfsp_jws_certs(engine, "dfsp1")
    with pytest.raises(NotFoundError):
        await services.get_dfsp_jws_certs(engine, "dfsp1")


# endregion


async def test_delete_dfsp(engine, fake_vault, pki, server_chain):
    root, intermediate, server = server_chain
    await services.set_dfsp_ca(engine, 4, root, intermediate)
    await services.create_dfsp_server_certs(engine, 4, server, intermediate, root)
    await enrollment_services.create_dfsp_inbound_enrollment(engine, 4, pki.csr())
    await enrollment_services.create_dfsp_outbound_enrollment(engine, 4, pki.csr())
    await enrollment_services.create_dfsp_inbound_enrollment(engine, 5, pki.csr())

    await services.delete_dfsp(engine, 4)

    assert list(fake_vault.kv) == ["secrets/dfsp-inbound-enrollment/5/1"]


async def test_publish_dfsp_client_cert_bundle(engine, fake_vault, pki, rsa_key_4096, other_rsa_key):
    root = pki.root(key=other_rsa_key, cn="DFSP Root")
    await services.set_dfsp_ca(engine, 1, pki.pem(root), "")
    created = await enrollment_services.create_dfsp_outbound_enrollment(
        engine, 1, pki.csr(key=rsa_key_4096), pki.key_pem(rsa_key_4096)
    )
    cert = pki.pem(pki.certificate(key=rsa_key_4096, subject=DFSP_SUBJECT, issuer=root, issuer_key=other_rsa_key))
    await enrollment_services.add_dfsp_outbound_enrollment_certificate(engine, 1, created.id, cert)

    bundle = await services.publish_dfsp_client_cert_bundle(engine, 1, "dfsp-one", monetary_zone_id="USD")

    assert bundle["fqdn"] == "dfsp.test.io"
    assert bundle["client_key"] == pki.key_pem(rsa_key_4096)
    assert bundle["client_cert_chain"].startswith(cert)
    assert bundle["currency_code"] == "USD"
    assert fake_vault.kv["onboarding_pm4mls/dfsp-one"]["host"] == "dfsp-one"


async def test_publish_dfsp_client_cert_bundle_without_signed(engine, pki):
    await services.set_dfsp_ca(engine, 1, pki.pem(pki.root()), "")
    await enrollment_services.create_dfsp_outbound_enrollment(engine, 1, pki.csr())
    with pytest.raises(NotFoundError):
        await services.publish_dfsp_client_cert_bundle(engine, 1, "dfsp-one")
