"""Mutation result model."""

from pydantic import BaseModel, ConfigDict


class MutationResult(BaseModel):
    """Outcome of an INSERT/UPDATE/DELETE.

    ``last_inserted_id`` is only set for inserts into a table with an
    integer ``id`` column.
    """

    model_config = ConfigDict(frozen=True)

    last_inserted_id: int | None = None
    rows_affected: int = 0

    @property
    def lastrowid(self) -> int | None:
        """DB-API style alias for ``last_inserted_id``."""
        return self.last_inserted_id

    @property
    def rowcount(self) -> int:
        """DB-API style alias for ``rows_affected``."""
        return self.rows_affected
