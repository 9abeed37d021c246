"""Admin decryption and migration Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field


class MessageIdRequest(BaseModel):
    """Request body naming a single message.

    The id is optional at the schema level so a missing id is reported as a
    400 after the caller has been authorized.
    """

    message_id: str | None = Field(None, alias="messageId", description="Message identifier")

    model_config = ConfigDict(populate_by_name=True)


class DecryptedTextResponse(BaseModel):
    """Decrypted (or passthrough) message text."""

    version: int
    content: str | None
    media_path: str | None
    media_type: str | None


class MigrateRequest(BaseModel):
    """Options for one migration batch."""

    dry_run: bool = Field(False, alias="dryRun", description="Report without writing")
    batch_size: int | None = Field(None, alias="batchSize", description="Messages per call (max 100)")

    model_config = ConfigDict(populate_by_name=True)

