"""
Journal Posting Service
Single entry point for every double-entry posting in the system:
- Manual journal vouchers (draft, post, reverse)
- Sales invoices, receipts and credit notes
- Goods receipts, supplier bills, payment vouchers and expenses
- Inventory movements, production orders and opening balances

Callers describe the lines; the service validates the balance, numbers the
voucher, enforces the lock date and closed periods, and updates the
per-period account balances. It never commits: the calling route owns the
transaction so the document and its voucher land (or roll back) together.
"""

from sqlalchemy.orm import Session
from sqlalchemy import desc, func
from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, List, Dict, Any
import logging

from ledgerbook.models import (
    Company, Account, AccountType, FiscalPeriod, JournalVoucher, JournalVoucherLine, AccountBalance
)

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")

# A reversed voucher stays in the ledger; its reversal voucher offsets it
POSTED_STATUSES = ("posted", "reversed")


def to_decimal(value) -> Decimal:
    if value is None or value == "":
        return ZERO
    return Decimal(str(value))


def money(value) -> Decimal:
    """Quantize to 2 decimal places, half up"""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class PostingError(ValueError):
    """A voucher violates a posting rule (balance, accounts, dates)"""


class ConfigurationError(ValueError):
    """The chart of accounts is missing something a posting needs"""


class SystemRole:
    """Account roles that automatic postings resolve accounts by"""
    ACCOUNTS_RECEIVABLE = "ACCOUNTS_RECEIVABLE"
    ACCOUNTS_PAYABLE = "ACCOUNTS_PAYABLE"
    SALES_REVENUE = "SALES_REVENUE"
    SALES_RETURNS_ALLOWANCES = "SALES_RETURNS_ALLOWANCES"
    OTHER_INCOME = "OTHER_INCOME"
    COGS = "COGS"
    VAT_PAYABLE = "VAT_PAYABLE"
    VAT_INPUT = "VAT_INPUT"
    WHT_PAYABLE = "WHT_PAYABLE"
    INVENTORY_RAW_MATERIAL = "INVENTORY_RAW_MATERIAL"
    INVENTORY_WIP = "INVENTORY_WIP"
    INVENTORY_FINISHED_GOODS = "INVENTORY_FINISHED_GOODS"
    INVENTORY_ADJUSTMENT = "INVENTORY_ADJUSTMENT"
    GOODS_RECEIVED_NOT_INVOICED = "GOODS_RECEIVED_NOT_INVOICED"
    OPENING_BALANCE_EQUITY = "OPENING_BALANCE_EQUITY"
    RETAINED_EARNINGS = "RETAINED_EARNINGS"
    CUSTOMER_ADVANCES = "CUSTOMER_ADVANCES"
    CUSTOMER_REFUNDS = "CUSTOMER_REFUNDS"
    DEFAULT_BANK = "DEFAULT_BANK"

    ALL = (
        ACCOUNTS_RECEIVABLE, ACCOUNTS_PAYABLE, SALES_REVENUE, SALES_RETURNS_ALLOWANCES,
        OTHER_INCOME, COGS, VAT_PAYABLE, VAT_INPUT, WHT_PAYABLE,
        INVENTORY_RAW_MATERIAL, INVENTORY_WIP, INVENTORY_FINISHED_GOODS, INVENTORY_ADJUSTMENT,
        GOODS_RECEIVED_NOT_INVOICED, OPENING_BALANCE_EQUITY, RETAINED_EARNINGS,
        CUSTOMER_ADVANCES, CUSTOMER_REFUNDS, DEFAULT_BANK,
    )


class SourceType:
    JOURNAL = "Journal"
    SALES = "Sales"
    RECEIPT = "Receipt"
    CREDIT_NOTE = "CreditNote"
    PURCHASE = "Purchase"
    PAYMENT = "Payment"
    EXPENSE = "Expense"
    PRODUCTION = "Production"
    INVENTORY = "Inventory"
    OPENING_BALANCE = "OpeningBalance"
    REVERSAL = "Reversal"

    ALL = (
        JOURNAL, SALES, RECEIPT, CREDIT_NOTE, PURCHASE, PAYMENT,
        EXPENSE, PRODUCTION, INVENTORY, OPENING_BALANCE, REVERSAL,
    )


class JournalPostingService:
    """Service for creating, posting and reversing journal vouchers"""

    def __init__(self, db: Session, company_id: int, user_id: Optional[int] = None):
        self.db = db
        self.company_id = company_id
        self.user_id = user_id
        self._role_cache: Dict[str, Account] = {}
        self._account_cache: Dict[int, Account] = {}
        self._company: Optional[Company] = None

    # ------------------------------------------------------------------
    # Line builders
    # ------------------------------------------------------------------

    @staticmethod
    def debit(account_id: int, amount, description: Optional[str] = None,
              payee_type: Optional[str] = None, payee_id: Optional[int] = None) -> Dict[str, Any]:
        return {
            "account_id": account_id, "debit": money(amount), "credit": ZERO,
            "description": description, "payee_type": payee_type, "payee_id": payee_id,
        }

    @staticmethod
    def credit(account_id: int, amount, description: Optional[str] = None,
               payee_type: Optional[str] = None, payee_id: Optional[int] = None) -> Dict[str, Any]:
        return {
            "account_id": account_id, "debit": ZERO, "credit": money(amount),
            "description": description, "payee_type": payee_type, "payee_id": payee_id,
        }

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_company(self) -> Company:
        if self._company is None:
            self._company = self.db.query(Company).filter(Company.id == self.company_id).first()
        return self._company

    def account_for_role(self, role: str) -> Account:
        """Resolve the active account carrying a system role"""
        if role not in self._role_cache:
            account = self.db.query(Account).filter(
                Account.company_id == self.company_id,
                Account.system_role == role,
                Account.is_active == True
            ).first()
            if not account:
                raise ConfigurationError(f"GL Account with system role '{role}' not found")
            self._role_cache[role] = account
        return self._role_cache[role]

    def _get_postable_account(self, account_id: int, line_no: int) -> Account:
        if account_id not in self._account_cache:
            account = self.db.query(Account).filter(
                Account.id == account_id,
                Account.company_id == self.company_id
            ).first()
            if not account:
                self._reject(f"Line {line_no}: Invalid account ID {account_id}")
            if not account.is_active:
                self._reject(f"Line {line_no}: Account {account.code} is inactive")
            if account.is_header:
                self._reject(f"Line {line_no}: Account {account.code} is a header account and cannot be posted to")
            self._account_cache[account_id] = account
        return self._account_cache[account_id]

    def _fiscal_period_for(self, entry_date: date) -> Optional[FiscalPeriod]:
        return self.db.query(FiscalPeriod).filter(
            FiscalPeriod.company_id == self.company_id,
            FiscalPeriod.start_date <= entry_date,
            FiscalPeriod.end_date >= entry_date
        ).first()

    def _reject(self, message: str):
        logger.warning(f"Posting rejected for company {self.company_id}: {message}")
        raise PostingError(message)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_lines(self, lines: List[Dict[str, Any]]) -> Tuple[Decimal, Decimal]:
        """Check line count, debit/credit exclusivity, accounts and balance"""
        if not lines or len(lines) < 2:
            self._reject("Journal voucher must have at least 2 lines")

        total_debit = ZERO
        total_credit = ZERO
        for i, line in enumerate(lines, start=1):
            line_debit = money(line.get("debit"))
            line_credit = money(line.get("credit"))

            if line_debit < 0 or line_credit < 0:
                self._reject(f"Line {i}: Amounts cannot be negative")
            if line_debit > 0 and line_credit > 0:
                self._reject(f"Line {i}: Cannot have both debit and credit")
            if line_debit == 0 and line_credit == 0:
                self._reject(f"Line {i}: Must have either debit or credit")

            self._get_postable_account(line["account_id"], i)
            total_debit += line_debit
            total_credit += line_credit

        if total_debit != total_credit:
            self._reject(f"Voucher does not balance. Debits: {total_debit}, Credits: {total_credit}")

        return total_debit, total_credit

    def check_posting_date(self, entry_date: date) -> Optional[FiscalPeriod]:
        """Enforce the company lock date and closed fiscal periods"""
        company = self._get_company()
        if company and company.lock_date and entry_date <= company.lock_date:
            self._reject(f"Entry date {entry_date} is on or before the lock date {company.lock_date}")

        period = self._fiscal_period_for(entry_date)
        if period and period.status == "closed":
            self._reject(f"Cannot post to a closed fiscal period ({period.period_name})")
        return period

    # ------------------------------------------------------------------
    # Voucher lifecycle
    # ------------------------------------------------------------------

    def _generate_voucher_number(self, entry_date: date) -> str:
        """JV-{year}-{NNNNNN}: highest existing suffix for the year plus one"""
        prefix = f"JV-{entry_date.year}-"

        last_voucher = self.db.query(JournalVoucher).filter(
            JournalVoucher.company_id == self.company_id,
            JournalVoucher.voucher_number.like(f"{prefix}%")
        ).order_by(
            desc(func.length(JournalVoucher.voucher_number)),
            desc(JournalVoucher.voucher_number)
        ).first()

        if last_voucher:
            try:
                next_num = int(last_voucher.voucher_number.split("-")[-1]) + 1
            except (ValueError, IndexError):
                next_num = 1
        else:
            next_num = 1

        return f"{prefix}{next_num:06d}"

    def create_voucher(
        self,
        entry_date: date,
        narration: str,
        lines: List[Dict[str, Any]],
        source_type: str = SourceType.JOURNAL,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        reference_number: Optional[str] = None,
        post: bool = True,
        strict: bool = False
    ) -> JournalVoucher:
        """
        Build a voucher from line dicts (see `debit` / `credit`).

        Automatic postings may pass zero-value lines (e.g. no VAT); they are
        dropped unless `strict` is set, in which case every line must carry
        an amount. With `post=False` the voucher is saved as a draft.
        """
        if not strict:
            lines = [l for l in lines if money(l.get("debit")) != 0 or money(l.get("credit")) != 0]

        total_debit, total_credit = self.validate_lines(lines)

        if post:
            period = self.check_posting_date(entry_date)
        else:
            period = self._fiscal_period_for(entry_date)
            if period and period.status == "closed":
                self._reject(f"Cannot create an entry in a closed fiscal period ({period.period_name})")

        voucher = JournalVoucher(
            company_id=self.company_id,
            voucher_number=self._generate_voucher_number(entry_date),
            entry_date=entry_date,
            narration=narration,
            source_type=source_type,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_number=reference_number,
            fiscal_period_id=period.id if period else None,
            total_debit=total_debit,
            total_credit=total_credit,
            status="draft",
            created_by=self.user_id
        )
        self.db.add(voucher)

        for line_number, line in enumerate(lines, start=1):
            voucher.lines.append(JournalVoucherLine(
                account_id=line["account_id"],
                debit=money(line.get("debit")),
                credit=money(line.get("credit")),
                description=line.get("description"),
                payee_type=line.get("payee_type"),
                payee_id=line.get("payee_id"),
                line_number=line_number
            ))

        self.db.flush()

        if post:
            self._mark_posted(voucher)
        else:
            logger.info(f"Created draft voucher {voucher.voucher_number} ({source_type}) total {total_debit}")

        return voucher

    def post_voucher(self, voucher: JournalVoucher) -> JournalVoucher:
        """Post a draft voucher"""
        if voucher.status != "draft":
            self._reject(f"Cannot post voucher with status '{voucher.status}'")

        lines = [
            {"account_id": l.account_id, "debit": l.debit, "credit": l.credit}
            for l in voucher.lines
        ]
        self.validate_lines(lines)
        period = self.check_posting_date(voucher.entry_date)
        voucher.fiscal_period_id = period.id if period else None

        self._mark_posted(voucher)
        return voucher

    def _mark_posted(self, voucher: JournalVoucher):
        voucher.status = "posted"
        voucher.posted_at = datetime.utcnow()
        voucher.posted_by = self.user_id
        self._update_account_balance(voucher)
        self.db.flush()
        logger.info(
            f"Posted voucher {voucher.voucher_number} ({voucher.source_type}"
            f"{' ' + voucher.reference_number if voucher.reference_number else ''}) "
            f"Dr {voucher.total_debit} / Cr {voucher.total_credit}"
        )

    def reverse_voucher(
        self,
        voucher: JournalVoucher,
        reversal_date: Optional[date] = None,
        narration: Optional[str] = None
    ) -> JournalVoucher:
        """Post a mirror voucher with debits and credits swapped"""
        if voucher.status != "posted":
            self._reject("Can only reverse posted vouchers")
        if voucher.reversed_by_id:
            self._reject(f"Voucher {voucher.voucher_number} has already been reversed")

        rev_date = reversal_date or date.today()
        period = self.check_posting_date(rev_date)

        reversal = JournalVoucher(
            company_id=self.company_id,
            voucher_number=self._generate_voucher_number(rev_date),
            entry_date=rev_date,
            narration=narration or f"Reversal of {voucher.voucher_number}: {voucher.narration or ''}".strip(),
            source_type=SourceType.REVERSAL,
            reference_type="JournalVoucher",
            reference_id=voucher.id,
            reference_number=voucher.voucher_number,
            fiscal_period_id=period.id if period else None,
            total_debit=voucher.total_credit,
            total_credit=voucher.total_debit,
            status="draft",
            is_reversal=True,
            reversal_of_id=voucher.id,
            created_by=self.user_id
        )
        self.db.add(reversal)

        for orig_line in voucher.lines:
            reversal.lines.append(JournalVoucherLine(
                account_id=orig_line.account_id,
                debit=orig_line.credit,
                credit=orig_line.debit,
                description=f"Reversal: {orig_line.description or ''}".strip(),
                payee_type=orig_line.payee_type,
                payee_id=orig_line.payee_id,
                line_number=orig_line.line_number
            ))

        self.db.flush()
        self._mark_posted(reversal)

        voucher.status = "reversed"
        voucher.reversed_by_id = reversal.id
        self.db.flush()

        return reversal

    def _update_account_balance(self, voucher: JournalVoucher):
        """Update per-period account balances after posting"""
        if not voucher.fiscal_period_id:
            return

        for line in voucher.lines:
            balance = self.db.query(AccountBalance).filter(
                AccountBalance.company_id == self.company_id,
                AccountBalance.account_id == line.account_id,
                AccountBalance.fiscal_period_id == voucher.fiscal_period_id
            ).first()

            if not balance:
                balance = AccountBalance(
                    company_id=self.company_id,
                    account_id=line.account_id,
                    fiscal_period_id=voucher.fiscal_period_id,
                    period_debit=ZERO,
                    period_credit=ZERO,
                    opening_balance=ZERO,
                    closing_balance=ZERO
                )
                self.db.add(balance)

            balance.period_debit = to_decimal(balance.period_debit) + to_decimal(line.debit)
            balance.period_credit = to_decimal(balance.period_credit) + to_decimal(line.credit)

            normal_balance = self.db.query(AccountType.normal_balance).join(
                Account, Account.account_type_id == AccountType.id
            ).filter(Account.id == line.account_id).scalar()

            if normal_balance == "debit":
                balance.closing_balance = (
                    to_decimal(balance.opening_balance)
                    + to_decimal(balance.period_debit)
                    - to_decimal(balance.period_credit)
                )
            else:
                balance.closing_balance = (
                    to_decimal(balance.opening_balance)
                    + to_decimal(balance.period_credit)
                    - to_decimal(balance.period_debit)
                )
            # autoflush is off; make the row visible to the next line's lookup
            self.db.flush()
