"""Owner repository for database operations."""

from typing import Optional

from database.connection import Database
from database.models import Owner


class OwnerRepository:
    """Repository for owner operations."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        address: str,
        signer_address: Optional[str] = None,
        encrypted_private_key: Optional[bytes] = None,
        encryption_salt: Optional[bytes] = None,
    ) -> Owner:
        """Create a new owner."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                """
                INSERT INTO owners (address, signer_address, encrypted_private_key, encryption_salt)
                VALUES ($1, $2, $3, $4)
                RETURNING *
                """,
                address.lower(), signer_address, encrypted_private_key, encryption_salt,
            )
            return Owner.from_row(row)
        finally:
            await self.db.release_connection(conn)

    async def get_by_id(self, owner_id: int) -> Optional[Owner]:
        """Get owner by ID."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow("SELECT * FROM owners WHERE id = $1", owner_id)
            if row:
                return Owner.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def get_by_address(self, address: str) -> Optional[Owner]:
        """Get owner by wallet address."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM owners WHERE LOWER(address) = LOWER($1)",
                address,
            )
            if row:
                return Owner.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def set_api_credentials(
        self,
        owner_id: int,
        encrypted: bytes,
        salt: bytes,
    ) -> None:
        """Store encrypted CLOB API credentials."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE owners
                SET api_credentials_encrypted = $1, api_credentials_salt = $2
                WHERE id = $3
                """,
                encrypted, salt, owner_id,
            )
        finally:
            await self.db.release_connection(conn)
