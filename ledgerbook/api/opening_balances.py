"""
Opening Balances API
Import a trial-balance style sheet of opening balances and post it as one voucher.

Expected columns (header row, case-insensitive): AccountCode, Amount, Type
where Type is Debit or Credit.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status, UploadFile, File, Form
from sqlalchemy.orm import Session
from typing import List, Dict, Any
from datetime import date
from decimal import InvalidOperation
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from zipfile import BadZipFile
import csv
import io
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Account
from ledgerbook.services.dependency import get_company_id, require_roles, POSTING_ROLES
from ledgerbook.services.journal_posting import JournalPostingService, SourceType, money, to_decimal
from ledgerbook.utils.rate_limiter import limiter, RateLimits

router = APIRouter()
logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("accountcode", "amount", "type")


def _normalize_header(value) -> str:
    return str(value or "").strip().lower().replace(" ", "").replace("_", "")


def _rows_from_csv(content: bytes) -> List[List[Any]]:
    text = content.decode("utf-8-sig")
    return [row for row in csv.reader(io.StringIO(text))]


def _rows_from_xlsx(content: bytes) -> List[List[Any]]:
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, KeyError) as e:
        raise ValueError(f"The file is not a readable Excel workbook: {e}")
    ws = wb.active
    rows = [list(row) for row in ws.iter_rows(values_only=True)]
    wb.close()
    return rows


def parse_opening_rows(rows: List[List[Any]]) -> List[Dict[str, Any]]:
    """
    Map sheet rows to {row, code, amount, side} dicts.
    Rows with an empty or non-positive amount are skipped.
    """
    if not rows:
        raise ValueError("The file is empty")

    col_map = {_normalize_header(h): idx for idx, h in enumerate(rows[0]) if h is not None}
    missing = [c for c in REQUIRED_COLUMNS if c not in col_map]
    if missing:
        raise ValueError("Missing required columns: AccountCode, Amount, Type")

    parsed = []
    for row_num, row in enumerate(rows[1:], start=2):
        def cell(name):
            idx = col_map[name]
            return row[idx] if idx < len(row) else None

        raw_amount = cell("amount")
        if raw_amount is None or str(raw_amount).strip() == "":
            continue
        try:
            amount = to_decimal(str(raw_amount).strip().replace(",", ""))
        except InvalidOperation:
            raise ValueError(f"Row {row_num}: invalid amount '{raw_amount}'")
        if not amount.is_finite():
            raise ValueError(f"Row {row_num}: invalid amount '{raw_amount}'")
        amount = money(amount)
        if amount <= 0:
            continue

        side = str(cell("type") or "").strip().lower()
        if side not in ("debit", "credit"):
            raise ValueError(f"Row {row_num}: type must be Debit or Credit, got '{cell('type')}'")

        code = str(cell("accountcode") or "").strip()
        if not code:
            raise ValueError(f"Row {row_num}: account code is required")

        parsed.append({"row": row_num, "code": code, "amount": amount, "side": side})

    return parsed


@router.post("/import")
@limiter.limit(RateLimits.BULK_OPERATIONS)
async def import_opening_balances(
    request: Request,
    file: UploadFile = File(...),
    entry_date: date = Form(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Post opening balances from a CSV or Excel file as one OpeningBalance voucher"""
    company_id = get_company_id(current_user)

    filename = (file.filename or "").lower()
    if not filename.endswith((".csv", ".xlsx")):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file format. Please upload a CSV or Excel (.xlsx) file."
        )

    content = await file.read()

    try:
        rows = _rows_from_csv(content) if filename.endswith(".csv") else _rows_from_xlsx(content)
        entries = parse_opening_rows(rows)
        if not entries:
            raise ValueError("No opening balance rows found in the file")

        codes = {e["code"] for e in entries}
        accounts = {
            a.code: a for a in db.query(Account).filter(
                Account.company_id == company_id,
                Account.code.in_(codes)
            ).all()
        }
        unknown = sorted(codes - set(accounts))
        if unknown:
            raise ValueError(f"Unknown account codes: {', '.join(unknown)}")

        posting = JournalPostingService(db, company_id, current_user.id)
        lines = []
        for entry in entries:
            builder = posting.debit if entry["side"] == "debit" else posting.credit
            lines.append(builder(accounts[entry["code"]].id, entry["amount"], "Opening balance"))

        voucher = posting.create_voucher(
            entry_date=entry_date,
            narration=f"Opening balances imported from {file.filename}",
            lines=lines,
            source_type=SourceType.OPENING_BALANCE,
            reference_type="OpeningBalanceImport",
            strict=True
        )
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Opening balance import failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process file: {str(e)}"
        )

    logger.info(f"Imported {len(entries)} opening balance rows as {voucher.voucher_number}")
    return {
        "voucher_id": voucher.id,
        "voucher_number": voucher.voucher_number,
        "rows_imported": len(entries),
        "total_debit": float(voucher.total_debit),
        "total_credit": float(voucher.total_credit),
    }
