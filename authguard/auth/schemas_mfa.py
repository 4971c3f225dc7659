"""MFA (Multi-Factor Authentication) Pydantic schemas."""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime


class CamelModel(BaseModel):
    """Wire models use camelCase; Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceInfoSchema(CamelModel):
    """Client-supplied device attributes."""
    device_id: str = Field(..., min_length=1, max_length=255, description="Stable client device identifier")
    device_name: Optional[str] = Field(None, max_length=255)
    device_type: Optional[str] = Field(None, max_length=20)
    user_agent: Optional[str] = Field(None, max_length=1024)


class MFASetupRequest(CamelModel):
    """Request to begin TOTP setup for the caller."""
    action: Literal["setup"] = "setup"
    user_id: str = Field(..., min_length=1)


class MFAStatusRequest(CamelModel):
    """Request for MFA status."""
    action: Literal["status"] = "status"
    user_id: str = Field(..., min_length=1)


class MFAVerifyRequest(CamelModel):
    """Request to verify TOTP code."""
    action: Literal["verify"] = "verify"
    user_id: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=6, description="6-digit TOTP code")
    trust_device: bool = False
    device_info: Optional[DeviceInfoSchema] = None

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        """Validate code format."""
        if not (v.isascii() and v.isdigit()):
            raise ValueError('Code must contain only digits')
        return v


class MFABackupVerifyRequest(CamelModel):
    """Request to verify and consume a backup code."""
    action: Literal["verify_backup"] = "verify_backup"
    user_id: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=12, description="Backup code, separators allowed")


class TrustedDeviceCheckRequest(CamelModel):
    """Request to check whether a device is trusted."""
    action: Literal["check_trusted_device"] = "check_trusted_device"
    user_id: str = Field(..., min_length=1)
    device_id: str = Field(..., min_length=1, max_length=255)


MFAActionRequest = Annotated[
    Union[
        MFASetupRequest,
        MFAStatusRequest,
        MFAVerifyRequest,
        MFABackupVerifyRequest,
        TrustedDeviceCheckRequest,
    ],
    Field(discriminator="action"),
]


class MFASetupResponse(CamelModel):
    """Response after MFA setup initiation."""
    qr_payload: str = Field(..., description="PNG data URL encoding the otpauth URI")
    secret: str = Field(..., description="Base32 encoded secret key for manual entry")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "qrPayload": "data:image/png;base64,iVBORw0KGgo...",
                "secret": "JBSWY3DPEHPK3PXP",
            }
        }
    )


class MFAStatusResponse(CamelModel):
    """Response showing user's MFA status."""
    mfa_required: bool = Field(..., description="Whether login must complete an MFA challenge")
    mfa_type: Optional[Literal["totp"]] = Field(None, description="Factor type required")
    has_backup_codes: bool = Field(..., description="Whether unused backup codes remain")
    state: Literal["not_configured", "pending_verification", "enabled"]
    security_record_enabled: bool = Field(..., description="Enablement flag on the security record")
    device_factor_enabled: bool = Field(..., description="Enabled and verified flag on the factor record")


class MFAVerifyResponse(CamelModel):
    """Response after a successful TOTP verification."""
    verified: bool = True
    trusted_device: bool = False
    backup_codes: Optional[List[str]] = Field(
        None, description="Issued once, on the verification that enables MFA"
    )


class MFABackupVerifyResponse(CamelModel):
    """Response after a successful backup code verification."""
    verified: bool = True
    remaining_codes: int


class TrustedDeviceCheckResponse(CamelModel):
    """Trusted device check result."""
    is_trusted: bool
    expires_at: Optional[datetime] = None


class SecurityEventLog(CamelModel):
    """Security event log entry."""
    id: int
    event_type: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: dict = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseModel):
    """Sanitized error body."""
    error: str
    code: int
