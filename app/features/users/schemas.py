"""
Pydantic schemas for the authenticated principal.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Principal(BaseModel):
    """
    The authenticated actor, as supplied by the authentication layer.

    Trusted as-is: verifying where it came from is the job of whatever
    sits in front of this service.
    """
    id: str = Field(..., min_length=1, description="Principal identifier")
    role: str = Field(..., description="Role name")

    model_config = ConfigDict(frozen=True)

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, v):
        """Accept numeric ids from upstream and keep them in string form."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v
