"""
Pydantic schemas for permission management.

Request and response models for the catalog, overrides, and permission checks.
"""
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Catalog Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Schema for a catalog permission."""
    name: str
    category: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RoleResponse(BaseModel):
    """Schema for a role with its default permissions."""
    name: str
    display_name: str
    description: Optional[str] = None
    permissions: List[str] = []


class CatalogResponse(BaseModel):
    permissions: List[PermissionResponse]
    roles: List[str]


# ============================================================================
# Override Schemas
# ============================================================================

class GrantOverrideRequest(BaseModel):
    """Schema for granting a permission to a user."""
    permission_name: str = Field(..., min_length=1, max_length=100, description="Permission name, e.g. 'user:update:any'")
    expires_at: Optional[datetime] = Field(None, description="When the grant lapses (UTC if no offset given)")
    reason: Optional[str] = Field(None, max_length=1000, description="Why the exception was made")

    @field_validator("permission_name")
    @classmethod
    def name_format(cls, v: str) -> str:
        """Validate permission name format."""
        v = v.strip()
        if not v.replace('_', '').replace(':', '').replace('-', '').isalnum():
            raise ValueError('Permission name must contain only alphanumeric characters, underscores, hyphens, and colons')
        return v

    @field_validator("expires_at")
    @classmethod
    def expires_at_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class OverrideResponse(BaseModel):
    """Schema for an override record."""
    principal_id: str
    permission_name: str
    is_granted: bool
    is_active: bool = False
    granted_by: str
    granted_at: datetime
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    revoked_by: Optional[str] = None
    revoked_at: Optional[datetime] = None
    permission_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class OverrideEventResponse(BaseModel):
    """Schema for an override history entry."""
    user_id: str
    permission_name: str
    action: str
    actor_id: Optional[str] = None
    occurred_at: datetime
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RevokeResponse(BaseModel):
    revoked: bool


class SweepResponse(BaseModel):
    expired: int


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking whether the caller holds permissions."""
    permissions: List[str] = Field(..., min_length=1, description="Permission names")
    require_all: bool = Field(True, description="Require all permissions (otherwise any one)")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    allowed: bool


class EffectivePermissionsResponse(BaseModel):
    """Where a principal's permissions come from."""
    principal_id: str
    role: Optional[str] = None
    role_permissions: List[str] = []
    override_permissions: List[str] = []
    permissions: List[str] = []
