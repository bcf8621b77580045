"""Owner model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Owner:
    """Account whose wallet places copy orders."""

    id: int
    address: str  # Funder address (proxy wallet) holding collateral and outcome tokens
    signer_address: Optional[str]  # EOA that signs orders
    encrypted_private_key: Optional[bytes]
    encryption_salt: Optional[bytes]
    api_credentials_encrypted: Optional[bytes]  # JSON blob of CLOB key/secret/passphrase
    api_credentials_salt: Optional[bytes]
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "Owner":
        """Create Owner from database row."""
        return cls(
            id=row["id"],
            address=row["address"],
            signer_address=row["signer_address"],
            encrypted_private_key=row["encrypted_private_key"],
            encryption_salt=row["encryption_salt"],
            api_credentials_encrypted=row["api_credentials_encrypted"],
            api_credentials_salt=row["api_credentials_salt"],
            created_at=row["created_at"],
        )

    @property
    def short_address(self) -> str:
        """Get shortened wallet address."""
        return f"{self.address[:6]}...{self.address[-4:]}"

    @property
    def has_api_credentials(self) -> bool:
        """Check if owner has stored CLOB API credentials."""
        return bool(self.api_credentials_encrypted and self.api_credentials_salt)

    @property
    def funder_address(self) -> str:
        """Get the funder address (holds funds, used for CLOB)."""
        return self.address
