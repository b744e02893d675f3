import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock, AsyncMock

from eth_account import Account
from sqlalchemy.exc import IntegrityError

from eth_utils import to_checksum_address

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from signless.core.errors import AlreadyExists
from signless.core.key_vault import KeyVault
from signless.crud.delegate_key import DelegateKeyStore, normalize_private_key
from signless.db.models import DelegateKey

WALLET = to_checksum_address("0x0000000000000000000000000000000000000AAA")


def _result(row):
    result = MagicMock()
    result.scalars.return_value.first.return_value = row
    return result


class TestDelegateKeyStore:
    """Tests for creating, loading and deleting delegate keys."""

    @pytest.fixture
    def mock_db(self):
        """Create a mock database session."""
        db = AsyncMock()
        db.execute = AsyncMock(return_value=_result(None))
        db.commit = AsyncMock()
        db.rollback = AsyncMock()
        db.delete = AsyncMock()
        db.add = MagicMock()
        return db

    @pytest.fixture
    def store(self, mock_db):
        return DelegateKeyStore(mock_db, key_vault=KeyVault(master_key="test-master-key"))

    @pytest.mark.asyncio
    async def test_create_persists_encrypted_key(self, store, mock_db):
        material = await store.create(WALLET)

        assert mock_db.add.called
        assert mock_db.commit.called
        row = mock_db.add.call_args[0][0]
        assert isinstance(row, DelegateKey)
        assert row.wallet_address == WALLET
        assert row.delegate_address == material.delegate_address
        assert material.private_key.get_secret_value().encode() not in row.encrypted_private_key

    @pytest.mark.asyncio
    async def test_create_twice_raises_already_exists(self, store, mock_db):
        await store.create(WALLET)
        created = mock_db.add.call_args[0][0]
        mock_db.execute.return_value = _result(created)

        with pytest.raises(AlreadyExists):
            await store.create(WALLET)
        assert mock_db.add.call_count == 1

    @pytest.mark.asyncio
    async def test_create_race_maps_integrity_error(self, store, mock_db):
        mock_db.commit.side_effect = IntegrityError("insert", {}, Exception("duplicate key"))

        with pytest.raises(AlreadyExists):
            await store.create(WALLET)
        assert mock_db.rollback.called

    @pytest.mark.asyncio
    async def test_get_decrypts_stored_key(self, store, mock_db):
        material = await store.create(WALLET)
        mock_db.execute.return_value = _result(mock_db.add.call_args[0][0])

        loaded = await store.get(WALLET.lower())

        assert loaded is not None
        assert loaded.private_key.get_secret_value() == material.private_key.get_secret_value()
        assert loaded.delegate_address == material.delegate_address

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get(WALLET) is None
        assert await store.get_delegate_address(WALLET) is None
        assert await store.exists(WALLET) is False

    @pytest.mark.asyncio
    async def test_get_with_wrong_master_key_returns_none(self, store, mock_db):
        await store.create(WALLET)
        mock_db.execute.return_value = _result(mock_db.add.call_args[0][0])

        other = DelegateKeyStore(mock_db, key_vault=KeyVault(master_key="another-master-key"))
        assert await other.get(WALLET) is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store, mock_db):
        assert await store.delete(WALLET) is False
        assert not mock_db.delete.called

        await store.create(WALLET)
        row = mock_db.add.call_args[0][0]
        mock_db.execute.return_value = _result(row)

        assert await store.delete(WALLET) is True
        mock_db.delete.assert_awaited_once_with(row)


def test_normalize_private_key():
    key = Account.create().key.hex()
    normalized = normalize_private_key(key)
    assert normalized.startswith("0x")
    assert len(normalized) == 66
    assert normalize_private_key(normalized.upper().replace("0X", "0x")) == normalized

    with pytest.raises(ValueError):
        normalize_private_key("0x1234")
