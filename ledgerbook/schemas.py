from pydantic import BaseModel, EmailStr, Field
from datetime import datetime, date
from typing import Optional, List, Literal


# ============================================================================
# Users & Authentication
# ============================================================================

class UserBase(BaseModel):
    email: EmailStr
    name: Optional[str] = None


class UserCreate(UserBase):
    password: str
    name: str
    role: Literal["admin", "accountant", "clerk", "viewer"] = "clerk"


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[Literal["admin", "accountant", "clerk", "viewer"]] = None
    is_active: Optional[bool] = None


class User(UserBase):
    id: int
    is_active: bool
    company_id: Optional[int] = None
    role: str
    phone: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str


class CompanyRegister(BaseModel):
    """Sign-up payload: the company and its first admin user"""
    company_name: str = Field(..., min_length=1)
    company_email: EmailStr
    company_phone: Optional[str] = None
    base_currency: Optional[str] = None
    admin_name: str
    admin_email: EmailStr
    password: str


# ============================================================================
# Company
# ============================================================================

class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    tax_number: Optional[str] = None
    registration_number: Optional[str] = None


class Company(BaseModel):
    id: int
    name: str
    code: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    tax_number: Optional[str] = None
    registration_number: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CompanySettings(BaseModel):
    base_currency: str
    fiscal_year_start_month: int
    invoice_terms_days: int
    lock_date: Optional[date] = None
    transactions_locked: bool = False

    class Config:
        from_attributes = True


class CompanySettingsUpdate(BaseModel):
    base_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    fiscal_year_start_month: Optional[int] = Field(None, ge=1, le=12)
    invoice_terms_days: Optional[int] = Field(None, ge=0)
    lock_date: Optional[date] = None
    transactions_locked: Optional[bool] = None


class CompanyLock(BaseModel):
    locked: bool


# ============================================================================
# Chart of Accounts
# ============================================================================

class AccountType(BaseModel):
    id: int
    code: str
    name: str
    normal_balance: str
    display_order: int
    is_active: bool

    class Config:
        from_attributes = True


class AccountBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    account_type_id: int
    parent_id: Optional[int] = None
    system_role: Optional[str] = None
    is_header: bool = False
    is_bank_account: bool = False
    is_control_account: bool = False
    is_active: bool = True


class AccountCreate(AccountBase):
    pass


class AccountUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    account_type_id: Optional[int] = None
    parent_id: Optional[int] = None
    system_role: Optional[str] = None
    is_header: Optional[bool] = None
    is_bank_account: Optional[bool] = None
    is_control_account: Optional[bool] = None
    is_active: Optional[bool] = None


class AccountBrief(BaseModel):
    id: int
    code: str
    name: str
    account_type_id: int

    class Config:
        from_attributes = True


class Account(AccountBase):
    id: int
    company_id: int
    is_system: bool = False
    created_at: datetime
    updated_at: datetime
    account_type: Optional[AccountType] = None

    class Config:
        from_attributes = True


class AccountWithChildren(Account):
    children: List["AccountWithChildren"] = []


class BulkAccountRow(BaseModel):
    account_code: str = Field(..., min_length=1, max_length=20)
    account_name: str = Field(..., min_length=1)
    account_type: str  # Account type code (ASSET, LIABILITY, ...)
    system_role: Optional[str] = None
    parent_account_code: Optional[str] = None
    is_header: bool = False
    is_bank_account: bool = False
    is_control_account: bool = False
    is_active: bool = True


class BulkAccountSave(BaseModel):
    accounts: List[BulkAccountRow]


# ============================================================================
# Fiscal Periods
# ============================================================================

class FiscalPeriod(BaseModel):
    id: int
    company_id: int
    fiscal_year: int
    period_number: int
    period_name: str
    start_date: date
    end_date: date
    status: str = "open"
    closed_at: Optional[datetime] = None
    closed_by: Optional[int] = None

    class Config:
        from_attributes = True


# ============================================================================
# Journal Vouchers
# ============================================================================

class JournalVoucherLineCreate(BaseModel):
    account_id: int
    debit: float = 0
    credit: float = 0
    description: Optional[str] = None
    payee_type: Optional[Literal["customer", "supplier"]] = None
    payee_id: Optional[int] = None


class JournalVoucherLine(BaseModel):
    id: int
    account_id: int
    debit: float
    credit: float
    description: Optional[str] = None
    payee_type: Optional[str] = None
    payee_id: Optional[int] = None
    line_number: int
    account: Optional[AccountBrief] = None

    class Config:
        from_attributes = True


class JournalVoucherCreate(BaseModel):
    entry_date: date
    narration: str
    reference_number: Optional[str] = None
    lines: List[JournalVoucherLineCreate]


class JournalVoucherBrief(BaseModel):
    id: int
    voucher_number: str
    entry_date: date
    narration: Optional[str] = None
    source_type: str
    reference_number: Optional[str] = None
    status: str
    total_debit: float
    total_credit: float

    class Config:
        from_attributes = True


class JournalVoucher(JournalVoucherBrief):
    company_id: int
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    fiscal_period_id: Optional[int] = None
    is_reversal: bool = False
    reversal_of_id: Optional[int] = None
    reversed_by_id: Optional[int] = None
    posted_at: Optional[datetime] = None
    posted_by: Optional[int] = None
    created_by: Optional[int] = None
    created_at: datetime
    lines: List[JournalVoucherLine] = []

    class Config:
        from_attributes = True


class JournalVoucherList(BaseModel):
    vouchers: List[JournalVoucherBrief]
    total: int
    page: int
    size: int


class ReverseRequest(BaseModel):
    reversal_date: Optional[date] = None
    narration: Optional[str] = None


# ============================================================================
# Tax Configurations
# ============================================================================

class TaxConfigCreate(BaseModel):
    name: str
    tax_type: Literal["VAT", "WHT"]
    rate: float = Field(..., ge=0, le=100)
    account_id: Optional[int] = None
    is_active: bool = True


class TaxConfigUpdate(BaseModel):
    name: Optional[str] = None
    rate: Optional[float] = Field(None, ge=0, le=100)
    account_id: Optional[int] = None
    is_active: Optional[bool] = None


class TaxConfig(BaseModel):
    id: int
    name: str
    tax_type: str
    rate: float
    account_id: Optional[int] = None
    is_active: bool

    class Config:
        from_attributes = True


# ============================================================================
# Shared document pieces
# ============================================================================

class OpeningBalanceRequest(BaseModel):
    amount: float = Field(..., gt=0)
    entry_date: date
    narration: Optional[str] = None


class DocumentLineCreate(BaseModel):
    """Priced line used by sales invoices and credit notes"""
    item_id: Optional[int] = None
    description: Optional[str] = None
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0)
    tax_rate: float = Field(0, ge=0, le=100)


class DocumentLine(BaseModel):
    id: int
    item_id: Optional[int] = None
    description: Optional[str] = None
    quantity: float
    unit_price: float
    discount_amount: float
    tax_rate: float
    line_subtotal: float
    tax_amount: float
    line_total: float
    line_number: int

    class Config:
        from_attributes = True


class LedgerEntry(BaseModel):
    entry_date: date
    voucher_id: int
    voucher_number: str
    source_type: str
    narration: Optional[str] = None
    description: Optional[str] = None
    debit: float
    credit: float
    balance: float


class PartyLedger(BaseModel):
    party_id: int
    party_name: str
    total_debit: float
    total_credit: float
    closing_balance: float
    entries: List[LedgerEntry]
