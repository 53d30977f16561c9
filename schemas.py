from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models import Device, Need, Transfer, Voucher

MAX_DESCRIPTION_LENGTH = 2000

Condition = Literal["new", "used-good", "used-fair"]
Priority = Literal["low", "medium", "high", "urgent"]
Role = Literal["donor", "school", "admin"]


class UserCreate(BaseModel):
    email: EmailStr
    name: str
    password: str
    is_donor: bool = False
    is_school: bool = False
    organization: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class UserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    is_donor: bool
    is_school: bool
    is_admin: bool
    is_verified: bool
    organization: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class LoginData(BaseModel):
    email: EmailStr
    password: str

    role: Role


class VerificationUpdate(BaseModel):
    is_verified: bool


class DeviceCreate(BaseModel):
    name: str = Field(max_length=200)
    description: str = Field(default="", max_length=MAX_DESCRIPTION_LENGTH)
    # Filled from the description when omitted.
    device_type: Optional[str] = None
    condition: Optional[Condition] = None
    quantity: int = Field(default=1, gt=0)
    images: List[str] = Field(default_factory=list)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class DeviceReview(BaseModel):
    status: Literal["approved", "rejected"]


class NeedCreate(BaseModel):
    device_type: str
    quantity: int = Field(default=1, gt=0)
    description: str = ""
    specifications: Dict[str, str] = Field(default_factory=dict)
    min_condition: Optional[Condition] = None
    priority: Priority = "medium"


class DescriptionIn(BaseModel):
    description: str = Field(max_length=MAX_DESCRIPTION_LENGTH)


class AttributeSuggestion(BaseModel):
    device_type: Optional[str] = None
    condition: Optional[str] = None
    specifications: Dict[str, str] = Field(default_factory=dict)
    confidence: int = 0


class MatchCandidateRead(BaseModel):
    device: Device
    need: Need
    score: int
    distance_km: Optional[float] = None


class SchoolNeedMatches(BaseModel):
    need: Need
    candidates: List[MatchCandidateRead]


class TransferCreate(BaseModel):
    device_id: int
    school_id: int
    message: Optional[str] = None


class TransferStatusUpdate(BaseModel):
    # Checked against the known statuses by the service so unknown values
    # surface as INVALID_STATUS rather than a schema error.
    status: str
    notes: Optional[str] = None
    receipt_images: Optional[List[str]] = None
    expected_status: Optional[str] = None


class ReceiptConfirmation(BaseModel):
    token: str
    receipt_images: List[str] = Field(min_length=1)
    notes: Optional[str] = None


class VoucherCreate(BaseModel):
    transfer_id: int


class VoucherWithUrl(BaseModel):
    voucher: Voucher
    qr_code_url: str


class VoucherVerification(BaseModel):
    voucher: Voucher
    is_valid: bool
    reason: Optional[Literal["used", "expired"]] = None


class TransferPage(BaseModel):
    transfers: List[Transfer]
    page: int
    limit: int
