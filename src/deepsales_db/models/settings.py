"""Connection settings model."""

from pydantic import BaseModel, ConfigDict, Field


class ConnectionSettings(BaseModel):
    """Where and as whom to connect. One instance per target database."""

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = "deepsales_analysis"
    user: str = "postgres"
    password: str = Field(default="", repr=False)
    admin_database: str = "postgres"

    def for_database(self, database: str) -> "ConnectionSettings":
        """Return a copy of these settings pointed at another database."""
        return self.model_copy(update={"database": database})

    def admin(self) -> "ConnectionSettings":
        """Return settings for the administrative database."""
        return self.for_database(self.admin_database)
