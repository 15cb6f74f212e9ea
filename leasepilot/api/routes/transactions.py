"""Transactions - income and expenses, optionally tied to a property."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import delete, insert, select, update

from leasepilot.api.dependencies import check_property_in_scope, get_scoped_or_404
from leasepilot.auth import AuthContext, Role, get_database, require_role
from leasepilot.core.utils import row_to_dict, rows_to_dicts, utc_now
from leasepilot.storage.database import Database
from leasepilot.storage.schema import properties, transactions

router = APIRouter(prefix="/api/transactions", tags=["transactions"])

manager = require_role(Role.MANAGER)


class TransactionIn(BaseModel):
    type: Literal["income", "expense"]
    description: str = Field(min_length=1)
    amount: Decimal
    category: str | None = None
    property_id: int | None = None
    transaction_date: date = Field(default_factory=date.today)
    status: str = "cleared"


def _transaction_query():
    return select(
        transactions,
        properties.c.name.label("property_name"),
    ).select_from(transactions.outerjoin(properties, transactions.c.property_id == properties.c.id))


@router.get("")
def list_transactions(
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        rows = conn.execute(
            _transaction_query()
            .where(ctx.scope_clause(transactions))
            .order_by(transactions.c.transaction_date.desc(), transactions.c.created_at.desc())
        )
        return rows_to_dicts(rows)


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.connect() as conn:
        row = conn.execute(
            _transaction_query().where(
                transactions.c.id == transaction_id, ctx.scope_clause(transactions)
            )
        ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return row_to_dict(row)


@router.post("", status_code=201)
def create_transaction(
    data: TransactionIn,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    now = utc_now()
    with database.begin() as conn:
        check_property_in_scope(conn, ctx, data.property_id)
        row = conn.execute(
            insert(transactions)
            .values(**ctx.owner_values(), **data.model_dump(), created_at=now, updated_at=now)
            .returning(*transactions.c)
        ).first()
    return row_to_dict(row)


@router.put("/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        get_scoped_or_404(conn, transactions, ctx, transaction_id, "Transaction")
        check_property_in_scope(conn, ctx, data.property_id)
        row = conn.execute(
            update(transactions)
            .where(transactions.c.id == transaction_id, ctx.scope_clause(transactions))
            .values(**data.model_dump(), updated_at=utc_now())
            .returning(*transactions.c)
        ).first()
    return row_to_dict(row)


@router.delete("/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    ctx: AuthContext = Depends(manager),
    database: Database = Depends(get_database),
):
    with database.begin() as conn:
        get_scoped_or_404(conn, transactions, ctx, transaction_id, "Transaction")
        conn.execute(
            delete(transactions).where(
                transactions.c.id == transaction_id, ctx.scope_clause(transactions)
            )
        )
    return {"message": "Transaction deleted successfully"}
