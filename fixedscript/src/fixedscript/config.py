"""
Configuration models for the fixed-script wallet engine.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from fixedscript.constants import DEFAULT_SEQUENCE, DERIVED_KEY_CACHE_SIZE


class EngineConfig(BaseModel):
    """Settings carried by an engine handle."""

    derived_key_cache_size: int = Field(
        default=DERIVED_KEY_CACHE_SIZE,
        ge=1,
        description="Derived key triples cached per wallet before the cache is cleared",
    )
    default_sequence: int = Field(default=DEFAULT_SEQUENCE, ge=0, le=0xFFFFFFFF)
    # Custom MuSig2 session ids make nonces reproducible; only safe for tests
    allow_custom_session_id_on_mainnet: bool = False


class CreateOptions(BaseModel):
    """Envelope options for an empty PSBT."""

    version: int = Field(default=2, ge=0, le=0xFFFFFFFF)
    lock_time: int = Field(default=0, ge=0, le=0xFFFFFFFF)

    # Zcash only
    consensus_branch_id: int | None = Field(default=None, ge=0, le=0xFFFFFFFF)
    block_height: int | None = Field(default=None, ge=0)
    version_group_id: int | None = Field(default=None, ge=0, le=0xFFFFFFFF)
    expiry_height: int | None = Field(default=None, ge=0, le=0xFFFFFFFF)

    @model_validator(mode="after")
    def check_zcash_fields(self) -> CreateOptions:
        """Expiry height without a branch id or height makes no sense."""
        if (
            self.expiry_height is not None or self.version_group_id is not None
        ) and self.consensus_branch_id is None and self.block_height is None:
            raise ValueError(
                "version_group_id/expiry_height require consensus_branch_id or block_height"
            )
        return self
