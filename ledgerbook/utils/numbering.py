from sqlalchemy import desc, func
from sqlalchemy.orm import Session


def next_document_number(db: Session, number_column, company_column, company_id: int, prefix: str, width: int) -> str:
    """
    Read the last document number carrying `prefix` for the company and
    return the next one, zero padded to `width`.

    Ordering by length first keeps the comparison numeric once a suffix
    outgrows its padding.
    """
    last_number = db.query(number_column).filter(
        company_column == company_id,
        number_column.like(f"{prefix}%")
    ).order_by(
        desc(func.length(number_column)),
        desc(number_column)
    ).first()

    next_num = 1
    if last_number and last_number[0]:
        try:
            next_num = int(last_number[0][len(prefix):]) + 1
        except ValueError:
            next_num = 1

    return f"{prefix}{next_num:0{width}d}"
