"""
Company Seed Utility

Populates default accounting data for a company:
- Account Types (seeded at registration)
- Default Chart of Accounts with the system roles automatic postings rely on
"""

from sqlalchemy.orm import Session
from typing import Dict, Optional
import logging

from ledgerbook.models import AccountType, Account
from ledgerbook.services.journal_posting import SystemRole

logger = logging.getLogger(__name__)


# =============================================================================
# DEFAULT ACCOUNT TYPES
# =============================================================================

DEFAULT_ACCOUNT_TYPES = [
    {"code": "ASSET", "name": "Assets", "normal_balance": "debit", "display_order": 1},
    {"code": "LIABILITY", "name": "Liabilities", "normal_balance": "credit", "display_order": 2},
    {"code": "EQUITY", "name": "Equity", "normal_balance": "credit", "display_order": 3},
    {"code": "REVENUE", "name": "Revenue", "normal_balance": "credit", "display_order": 4},
    {"code": "COGS", "name": "Cost of Goods Sold", "normal_balance": "debit", "display_order": 5},
    {"code": "EXPENSE", "name": "Expenses", "normal_balance": "debit", "display_order": 6},
]


# =============================================================================
# DEFAULT CHART OF ACCOUNTS
# =============================================================================

DEFAULT_ACCOUNTS = [
    # Assets (1xxx)
    {"code": "1000", "name": "Assets", "type_code": "ASSET", "is_header": True},
    {"code": "1100", "name": "Current Assets", "type_code": "ASSET", "is_header": True, "parent_code": "1000"},
    {"code": "1110", "name": "Cash on Hand", "type_code": "ASSET", "parent_code": "1100", "is_bank_account": True},
    {"code": "1120", "name": "Main Bank Account", "type_code": "ASSET", "parent_code": "1100", "is_bank_account": True,
     "system_role": SystemRole.DEFAULT_BANK},
    {"code": "1200", "name": "Accounts Receivable", "type_code": "ASSET", "parent_code": "1100", "is_control_account": True,
     "system_role": SystemRole.ACCOUNTS_RECEIVABLE},
    {"code": "1300", "name": "Inventory", "type_code": "ASSET", "is_header": True, "parent_code": "1100"},
    {"code": "1310", "name": "Raw Materials Inventory", "type_code": "ASSET", "parent_code": "1300",
     "system_role": SystemRole.INVENTORY_RAW_MATERIAL},
    {"code": "1320", "name": "Work in Progress", "type_code": "ASSET", "parent_code": "1300",
     "system_role": SystemRole.INVENTORY_WIP},
    {"code": "1330", "name": "Finished Goods Inventory", "type_code": "ASSET", "parent_code": "1300",
     "system_role": SystemRole.INVENTORY_FINISHED_GOODS},
    {"code": "1400", "name": "VAT Input (Receivable)", "type_code": "ASSET", "parent_code": "1100",
     "system_role": SystemRole.VAT_INPUT},
    {"code": "1500", "name": "Prepaid Expenses", "type_code": "ASSET", "parent_code": "1100"},
    {"code": "1600", "name": "Fixed Assets", "type_code": "ASSET", "is_header": True, "parent_code": "1000"},
    {"code": "1610", "name": "Equipment", "type_code": "ASSET", "parent_code": "1600"},
    {"code": "1620", "name": "Vehicles", "type_code": "ASSET", "parent_code": "1600"},

    # Liabilities (2xxx)
    {"code": "2000", "name": "Liabilities", "type_code": "LIABILITY", "is_header": True},
    {"code": "2100", "name": "Current Liabilities", "type_code": "LIABILITY", "is_header": True, "parent_code": "2000"},
    {"code": "2110", "name": "Accounts Payable", "type_code": "LIABILITY", "parent_code": "2100", "is_control_account": True,
     "system_role": SystemRole.ACCOUNTS_PAYABLE},
    {"code": "2120", "name": "VAT Output (Payable)", "type_code": "LIABILITY", "parent_code": "2100",
     "system_role": SystemRole.VAT_PAYABLE},
    {"code": "2130", "name": "Withholding Tax Payable", "type_code": "LIABILITY", "parent_code": "2100",
     "system_role": SystemRole.WHT_PAYABLE},
    {"code": "2140", "name": "Goods Received Not Invoiced", "type_code": "LIABILITY", "parent_code": "2100",
     "system_role": SystemRole.GOODS_RECEIVED_NOT_INVOICED},
    {"code": "2150", "name": "Customer Advances", "type_code": "LIABILITY", "parent_code": "2100",
     "system_role": SystemRole.CUSTOMER_ADVANCES},
    {"code": "2160", "name": "Customer Refunds", "type_code": "LIABILITY", "parent_code": "2100",
     "system_role": SystemRole.CUSTOMER_REFUNDS},
    {"code": "2170", "name": "Accrued Expenses", "type_code": "LIABILITY", "parent_code": "2100"},

    # Equity (3xxx)
    {"code": "3000", "name": "Equity", "type_code": "EQUITY", "is_header": True},
    {"code": "3100", "name": "Share Capital", "type_code": "EQUITY", "parent_code": "3000"},
    {"code": "3200", "name": "Retained Earnings", "type_code": "EQUITY", "parent_code": "3000",
     "system_role": SystemRole.RETAINED_EARNINGS},
    {"code": "3300", "name": "Opening Balance Equity", "type_code": "EQUITY", "parent_code": "3000",
     "system_role": SystemRole.OPENING_BALANCE_EQUITY},

    # Revenue (4xxx)
    {"code": "4000", "name": "Revenue", "type_code": "REVENUE", "is_header": True},
    {"code": "4100", "name": "Sales Revenue", "type_code": "REVENUE", "parent_code": "4000",
     "system_role": SystemRole.SALES_REVENUE},
    {"code": "4200", "name": "Sales Returns and Allowances", "type_code": "REVENUE", "parent_code": "4000",
     "system_role": SystemRole.SALES_RETURNS_ALLOWANCES},
    {"code": "4300", "name": "Other Income", "type_code": "REVENUE", "parent_code": "4000",
     "system_role": SystemRole.OTHER_INCOME},

    # Cost of sales (5xxx)
    {"code": "5000", "name": "Cost of Sales", "type_code": "COGS", "is_header": True},
    {"code": "5100", "name": "Cost of Goods Sold", "type_code": "COGS", "parent_code": "5000",
     "system_role": SystemRole.COGS},
    {"code": "5200", "name": "Inventory Adjustments", "type_code": "COGS", "parent_code": "5000",
     "system_role": SystemRole.INVENTORY_ADJUSTMENT},

    # Expenses (6xxx)
    {"code": "6000", "name": "Expenses", "type_code": "EXPENSE", "is_header": True},
    {"code": "6100", "name": "Salaries and Wages", "type_code": "EXPENSE", "parent_code": "6000"},
    {"code": "6200", "name": "Rent Expense", "type_code": "EXPENSE", "parent_code": "6000"},
    {"code": "6300", "name": "Utilities Expense", "type_code": "EXPENSE", "parent_code": "6000"},
    {"code": "6400", "name": "Office Supplies", "type_code": "EXPENSE", "parent_code": "6000"},
    {"code": "6500", "name": "Bank Charges", "type_code": "EXPENSE", "parent_code": "6000"},
    {"code": "6600", "name": "Factory Overheads", "type_code": "EXPENSE", "parent_code": "6000"},
]


def seed_account_types(db: Session, company_id: int) -> Dict[str, int]:
    """Create any missing default account types. Returns code -> id."""
    existing = {
        at.code: at.id
        for at in db.query(AccountType).filter(AccountType.company_id == company_id).all()
    }

    for type_data in DEFAULT_ACCOUNT_TYPES:
        if type_data["code"] in existing:
            continue
        at = AccountType(company_id=company_id, **type_data)
        db.add(at)
        db.flush()
        existing[type_data["code"]] = at.id

    return existing


def seed_chart_of_accounts(db: Session, company_id: int, user_id: Optional[int] = None) -> int:
    """Create the default chart of accounts. Returns the number of accounts created."""
    type_map = seed_account_types(db, company_id)

    code_to_id = {}
    for acct_data in DEFAULT_ACCOUNTS:
        account = Account(
            company_id=company_id,
            code=acct_data["code"],
            name=acct_data["name"],
            account_type_id=type_map[acct_data["type_code"]],
            parent_id=code_to_id.get(acct_data.get("parent_code")),
            system_role=acct_data.get("system_role"),
            is_header=acct_data.get("is_header", False),
            is_bank_account=acct_data.get("is_bank_account", False),
            is_control_account=acct_data.get("is_control_account", False),
            is_system=True,
            created_by=user_id
        )
        db.add(account)
        db.flush()
        code_to_id[acct_data["code"]] = account.id

    logger.info(f"Seeded {len(code_to_id)} default accounts for company {company_id}")
    return len(code_to_id)
