from psycopg import sql

from app.database.connection import get_connection
from app.documents.models import OwnerKind


class OwnerRepository:
    """Reads owner ids from the suppliers and contacts tables."""

    def find_owner_kind(self, owner_id: str) -> OwnerKind | None:
        """Return whether *owner_id* is a supplier or a contact, or ``None`` if unknown."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT 'supplier' FROM suppliers WHERE id = %s
                    UNION ALL
                    SELECT 'contact' FROM contacts WHERE id = %s
                    LIMIT 1
                    """,
                    (owner_id, owner_id),
                )
                row = cur.fetchone()
        return None if row is None else OwnerKind(row[0])

    def delete(self, owner_id: str, owner_kind: OwnerKind) -> bool:
        """Delete the owner row; its documents cascade.

        Returns ``False`` if no row was deleted.
        """
        table = "suppliers" if owner_kind == OwnerKind.SUPPLIER else "contacts"
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL("DELETE FROM {} WHERE id = %s").format(sql.Identifier(table)),
                    (owner_id,),
                )
                deleted = cur.rowcount
            conn.commit()
        return deleted > 0
