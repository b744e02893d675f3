from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, LargeBinary, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class DelegateKey(Base):
    """Locally held ephemeral signing key, at most one per wallet."""

    __tablename__ = "delegate_keys"

    id = Column(Integer, primary_key=True, index=True)
    wallet_address = Column(String(42), unique=True, index=True, nullable=False)  # checksummed
    delegate_address = Column(String(42), nullable=False)  # public, safe to read without decrypting
    encrypted_private_key = Column(LargeBinary, nullable=False)
    encryption_metadata = Column(JSON, nullable=False)  # salt, algorithm, kdf info
    created_at = Column(DateTime, default=datetime.utcnow)
