import pytest
import sys
import time
from pathlib import Path
from unittest.mock import MagicMock, AsyncMock, patch

from eth_utils import to_checksum_address
from fastapi.testclient import TestClient

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from signless.main import app
from signless.core.config import settings
from signless.core.errors import AlreadyExists
from signless.core.testing import create_return_value_override, create_session_factory_override
from signless.dependencies import get_chain, get_delegate_key_store
from signless.schemas.delegate_key import DelegateKeyMaterial
from signless.services.submissions import SubmissionService

PREFIX = f"{settings.API_V1_STR}/signless"
WALLET = to_checksum_address("0x0000000000000000000000000000000000000AAA")
DELEGATE_KEY = "0x" + "11" * 32
MULTISEND = "0x40A2aCCbd92BCA938b02010E17A5b8929b49130D"


@pytest.fixture
def mock_store():
    store = MagicMock()
    store.create = AsyncMock(return_value=DelegateKeyMaterial(wallet_address=WALLET, private_key=DELEGATE_KEY))
    store.get_delegate_address = AsyncMock(return_value=None)
    store.delete = AsyncMock(return_value=False)
    return store


@pytest.fixture
def client(mock_store):
    """Test client with the key store overridden and background submissions kept off the network."""
    app.dependency_overrides[get_delegate_key_store] = create_return_value_override(mock_store)

    with TestClient(app) as test_client:
        app.state.submission_service = SubmissionService(
            app.state.relay_client,
            app.state.submission_tracker,
            session_factory=create_session_factory_override(MagicMock()),
            chain_client_factory=lambda chain_id: None,
        )
        yield test_client

    app.dependency_overrides.clear()


class TestDelegateKeyRoutes:

    def test_create_returns_address_only(self, client, mock_store):
        response = client.post(f"{PREFIX}/wallets/{WALLET}/delegate-key")

        assert response.status_code == 201
        body = response.json()
        assert body["wallet_address"] == WALLET
        assert body["delegate_address"].startswith("0x")
        assert "private_key" not in body
        assert "11" * 32 not in response.text

    def test_create_twice_conflicts(self, client, mock_store):
        mock_store.create.side_effect = AlreadyExists("exists")

        response = client.post(f"{PREFIX}/wallets/{WALLET}/delegate-key")

        assert response.status_code == 409
        assert response.json()["error"]["type"] == "already_exists"

    def test_status_without_key(self, client):
        response = client.get(f"{PREFIX}/wallets/{WALLET}/delegate-key")

        assert response.status_code == 200
        assert response.json()["has_key"] is False

    def test_delete_missing_key_is_ok(self, client, mock_store):
        response = client.delete(f"{PREFIX}/wallets/{WALLET}/delegate-key")

        assert response.status_code == 200
        assert response.json()["deleted"] is False
        mock_store.delete.assert_awaited_once_with(WALLET)


class TestWalletAddressValidation:

    @pytest.mark.parametrize("method, path", [
        ("post", "/wallets/not-an-address/delegate-key"),
        ("get", "/wallets/not-an-address/delegate-key"),
        ("delete", "/wallets/0x1234/delegate-key"),
        ("get", "/chains/100/wallets/not-an-address/delegates"),
    ])
    def test_malformed_wallet_rejected(self, client, mock_store, method, path):
        response = getattr(client, method)(f"{PREFIX}{path}")

        assert response.status_code == 400
        assert "Invalid wallet address" in response.json()["detail"]
        mock_store.create.assert_not_awaited()
        mock_store.delete.assert_not_awaited()

    def test_malformed_wallet_rejected_on_submission(self, client):
        response = client.post(
            f"{PREFIX}/chains/100/wallets/not-an-address/transactions",
            json={"txs": [{"to": "0x0000000000000000000000000000000000000001"}]},
        )

        assert response.status_code == 400
        assert not app.state.submission_tracker.is_in_flight(100, WALLET)

    def test_lowercase_wallet_is_checksummed(self, client, mock_store):
        response = client.delete(f"{PREFIX}/wallets/{WALLET.lower()}/delegate-key")

        assert response.status_code == 200
        assert response.json()["wallet_address"] == WALLET
        mock_store.delete.assert_awaited_once_with(WALLET)


class TestRegistryRoutes:

    def test_list_delegates(self, client):
        chain = MagicMock()
        chain.chain_id = 100
        functions = chain.module_contract.functions
        functions.getDelegateSignersCount.return_value.call = AsyncMock(return_value=0)
        app.dependency_overrides[get_chain] = create_return_value_override(chain)

        response = client.get(f"{PREFIX}/chains/100/wallets/{WALLET}/delegates")

        assert response.status_code == 200
        assert response.json() == {"wallet_address": WALLET, "chain_id": 100, "delegates": []}

    def test_register_uses_local_delegate(self, client, mock_store):
        mock_store.get_delegate_address.return_value = "0x000000000000000000000000000000000000000A"

        response = client.post(f"{PREFIX}/chains/100/wallets/{WALLET}/delegates/register", json={})

        assert response.status_code == 200
        assert response.json()["to"] == MULTISEND
        assert response.json()["value"] == 0

    def test_register_without_key_is_not_found(self, client):
        response = client.post(f"{PREFIX}/chains/100/wallets/{WALLET}/delegates/register", json={})
        assert response.status_code == 404

    def test_revoke_on_unsupported_chain(self, client):
        response = client.post(f"{PREFIX}/chains/5/wallets/{WALLET}/delegates/revoke", json={"delegate_index": 0})
        assert response.status_code == 404

    def test_revoke(self, client):
        response = client.post(f"{PREFIX}/chains/1/wallets/{WALLET}/delegates/revoke", json={"delegate_index": 1})

        assert response.status_code == 200
        assert response.json()["to"] == MULTISEND


class TestTransactionRoutes:

    def _wait_finished(self, client, request_id):
        for _ in range(100):
            body = client.get(f"{PREFIX}/transactions/{request_id}").json()
            if body["result"] is not None or body["error"] is not None:
                return body
            time.sleep(0.01)
        raise AssertionError(f"submission {request_id} did not finish")

    def test_submission_falls_back_without_chain_access(self, client):
        response = client.post(
            f"{PREFIX}/chains/100/wallets/{WALLET}/transactions",
            json={"request_id": "req-1", "txs": [{"to": "0x0000000000000000000000000000000000000001", "data": "0x"}]},
        )

        assert response.status_code == 202
        assert response.json()["request_id"] == "req-1"

        body = self._wait_finished(client, "req-1")
        assert body["result"]["route"] == "fallback"
        assert body["result"]["reason"] == "read_provider_unavailable"
        assert body["result"]["fallback_transaction"]["to"] == MULTISEND
        assert body["state"]["phase"] == "fallback"
        assert body["completion"] is None

    def test_second_in_flight_submission_conflicts(self, client):
        app.state.submission_tracker.begin("busy", 100, WALLET)

        response = client.post(
            f"{PREFIX}/chains/100/wallets/{WALLET}/transactions",
            json={"txs": [{"to": "0x0000000000000000000000000000000000000001"}]},
        )

        assert response.status_code == 409
        assert response.json()["error"]["type"] == "submission_in_progress"

    def test_empty_batch_rejected(self, client):
        response = client.post(f"{PREFIX}/chains/100/wallets/{WALLET}/transactions", json={"txs": []})
        assert response.status_code == 422

    def test_unknown_request(self, client):
        assert client.get(f"{PREFIX}/transactions/nope").status_code == 404


class TestApiToken:

    def test_token_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "SIGNLESS_API_TOKEN", "secret")

        assert client.get(f"{PREFIX}/wallets/{WALLET}/delegate-key").status_code == 401
        response = client.get(
            f"{PREFIX}/wallets/{WALLET}/delegate-key",
            headers={"Authorization": "Bearer secret"},
        )
        assert response.status_code == 200


def test_health_reports_version(client):
    with patch("signless.main.check_db_connection", AsyncMock()):
        response = client.get("/health")

    assert response.status_code == 200
    assert "version" in response.json()
