import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from auth import current_user_id
from config import get_settings, local_today
from database import get_db
from errors import InUseError, NotFoundError
from insights import InsightGenerator, InsightService
from models import (
    BillRecurrence,
    BillStatus,
    BillType,
    BudgetPeriod,
    CategoryType,
    InsightType,
    TransactionType,
)
from scheduler import SchedulerManager
from schemas import (
    BankIn,
    BankOut,
    BillIn,
    BillPaymentIn,
    BillPaymentOut,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    CategoryOut,
    CreditCardIn,
    CreditCardOut,
    InsightOut,
    InsightReadIn,
    LabelIn,
    LabelOut,
    MarkBillPaidIn,
    SpendingQuery,
    TransactionIn,
    TransactionOut,
    TransactionQuery,
)
from services import (
    AnalyticsService,
    BankService,
    BillPaymentProcessor,
    BillService,
    BudgetService,
    CategoryService,
    CreditCardService,
    ExportService,
    LabelService,
    TransactionService,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(HTTPException)
def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(InUseError)
def in_use_handler(request: Request, exc: InUseError):
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(ValueError)
def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_errors(exc)},
    )


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def _dump(model, obj) -> dict:
    return model.model_validate(obj).model_dump(mode="json")


# Banks


@app.get("/api/banks")
def list_banks(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    banks = BankService(db, user_id).list_all()
    return {"banks": [_dump(BankOut, bank) for bank in banks]}


@app.post("/api/banks", status_code=201)
def create_bank(
    data: BankIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    bank = BankService(db, user_id).create(data)
    return {"bank": _dump(BankOut, bank)}


@app.get("/api/banks/{bank_id}")
def get_bank(
    bank_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return {"bank": _dump(BankOut, BankService(db, user_id).get(bank_id))}


@app.put("/api/banks/{bank_id}")
def update_bank(
    bank_id: int,
    data: BankIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    bank = BankService(db, user_id).update(bank_id, data)
    return {"bank": _dump(BankOut, bank)}


@app.delete("/api/banks/{bank_id}")
def delete_bank(
    bank_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    BankService(db, user_id).delete(bank_id)
    return {"message": "Bank deleted successfully"}


# Credit cards


@app.get("/api/credit-cards")
def list_credit_cards(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    cards = CreditCardService(db, user_id).list_all()
    return {"credit_cards": [_dump(CreditCardOut, card) for card in cards]}


@app.post("/api/credit-cards", status_code=201)
def create_credit_card(
    data: CreditCardIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    card = CreditCardService(db, user_id).create(data)
    return {"credit_card": _dump(CreditCardOut, card)}


@app.get("/api/credit-cards/{card_id}")
def get_credit_card(
    card_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    service = CreditCardService(db, user_id)
    card = service.get(card_id)
    return {
        "credit_card": _dump(CreditCardOut, card),
        "billing": service.billing_summary(card_id),
    }


@app.put("/api/credit-cards/{card_id}")
def update_credit_card(
    card_id: int,
    data: CreditCardIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    card = CreditCardService(db, user_id).update(card_id, data)
    return {"credit_card": _dump(CreditCardOut, card)}


@app.delete("/api/credit-cards/{card_id}")
def delete_credit_card(
    card_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    CreditCardService(db, user_id).delete(card_id)
    return {"message": "Credit card deleted successfully"}


@app.get("/api/credit-cards/{card_id}/cycle-transactions")
def credit_card_cycle_transactions(
    card_id: int,
    cycle_start: date,
    cycle_end: date,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return CreditCardService(db, user_id).cycle_transactions(
        card_id, cycle_start, cycle_end
    )


# Categories


@app.get("/api/categories")
def list_categories(
    type: Optional[CategoryType] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = CategoryService(db, user_id)
    service.seed_defaults()
    return {"categories": [_dump(CategoryOut, c) for c in service.list_all(type)]}


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    category = CategoryService(db, user_id).create(data)
    return {"category": _dump(CategoryOut, category)}


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    category = CategoryService(db, user_id).update(category_id, data)
    return {"category": _dump(CategoryOut, category)}


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    CategoryService(db, user_id).delete(category_id)
    return {"message": "Category deleted successfully"}


# Labels


@app.get("/api/labels")
def list_labels(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    labels = LabelService(db, user_id).list_all()
    return {"labels": [_dump(LabelOut, label) for label in labels]}


@app.post("/api/labels", status_code=201)
def create_label(
    data: LabelIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    label = LabelService(db, user_id).create(data)
    return {"label": _dump(LabelOut, label)}


@app.put("/api/labels/{label_id}")
def update_label(
    label_id: int,
    data: LabelIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    label = LabelService(db, user_id).update(label_id, data)
    return {"label": _dump(LabelOut, label)}


@app.delete("/api/labels/{label_id}")
def delete_label(
    label_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    LabelService(db, user_id).delete(label_id)
    return {"message": "Label deleted successfully"}


# Transactions


@app.get("/api/transactions")
def list_transactions(
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    bank_id: Optional[int] = None,
    label_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    q: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    query = TransactionQuery(
        type=type,
        category_id=category_id,
        bank_id=bank_id,
        label_id=label_id,
        start_date=start_date,
        end_date=end_date,
        query=q,
        limit=limit,
        offset=offset,
    )
    items = TransactionService(db, user_id).list(query)
    return {
        "transactions": [_dump(TransactionOut, txn) for txn in items],
        "limit": query.limit,
        "offset": query.offset,
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    txn = TransactionService(db, user_id).create(data)
    return {"transaction": _dump(TransactionOut, txn)}


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    txn = TransactionService(db, user_id).get(transaction_id)
    return {"transaction": _dump(TransactionOut, txn)}


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    txn = TransactionService(db, user_id).update(transaction_id, data)
    return {"transaction": _dump(TransactionOut, txn)}


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    TransactionService(db, user_id).delete(transaction_id)
    return {"message": "Transaction deleted successfully"}


# Budgets


@app.get("/api/budgets")
def list_budgets(
    period: Optional[BudgetPeriod] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BudgetService(db, user_id)
    return {
        "budgets": [
            {**_dump(BudgetOut, budget), "progress": service.progress(budget)}
            for budget in service.list_all(period)
        ]
    }


@app.post("/api/budgets", status_code=201)
def create_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    budget = BudgetService(db, user_id).create(data)
    return {"budget": _dump(BudgetOut, budget)}


@app.get("/api/budgets/{budget_id}")
def get_budget(
    budget_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    service = BudgetService(db, user_id)
    budget = service.get(budget_id)
    return {"budget": _dump(BudgetOut, budget), "progress": service.progress(budget)}


@app.put("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    budget = BudgetService(db, user_id).update(budget_id, data)
    return {"budget": _dump(BudgetOut, budget)}


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    BudgetService(db, user_id).delete(budget_id)
    return {"message": "Budget deleted successfully"}


# Bills


def _parse_statuses(raw: Optional[str]) -> Optional[list[BillStatus]]:
    if not raw:
        return None
    return [BillStatus(part.strip().lower()) for part in raw.split(",") if part.strip()]


@app.get("/api/bills")
def list_bills(
    bill_type: Optional[BillType] = None,
    recurrence: Optional[BillRecurrence] = None,
    active: Optional[bool] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BillService(db, user_id)
    bills = service.list_all(bill_type=bill_type, recurrence=recurrence, active=active)
    return {"bills": [service.serialize(bill) for bill in bills]}


@app.post("/api/bills", status_code=201)
def create_bill(
    data: BillIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BillService(db, user_id)
    return {"bill": service.serialize(service.create(data))}


@app.get("/api/bills/upcoming")
def upcoming_bills(
    days: int = 30,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    if days < 1 or days > 365:
        raise HTTPException(status_code=400, detail="Days must be between 1 and 365")
    return BillService(db, user_id).upcoming(days, _parse_statuses(status))


@app.get("/api/bills/stats")
def bill_stats(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return BillService(db, user_id).statistics()


@app.post("/api/bills/generate-payments")
def generate_bill_payments(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    result = BillService(db, user_id).generate_payments()
    return {
        "message": f"Generated {result['created']} payment instances",
        **result,
    }


@app.post("/api/bills/payments/{payment_id}/pay")
def mark_bill_paid(
    payment_id: int,
    data: MarkBillPaidIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    payment, txn = BillPaymentProcessor(db, user_id).mark_paid(payment_id, data)
    return {
        "message": "Bill marked as paid successfully",
        "payment": _dump(BillPaymentOut, payment),
        "transaction": _dump(TransactionOut, txn),
    }


@app.delete("/api/bills/payments/{payment_id}/pay")
def unmark_bill_paid(
    payment_id: int,
    delete_transaction: bool = True,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    payment = BillPaymentProcessor(db, user_id).unmark(payment_id, delete_transaction)
    return {
        "message": "Payment unmarked successfully",
        "payment": _dump(BillPaymentOut, payment),
    }


@app.post("/api/bills/payments/{payment_id}/cancel")
def cancel_bill_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    payment = BillPaymentProcessor(db, user_id).cancel(payment_id)
    return {"payment": _dump(BillPaymentOut, payment)}


@app.get("/api/bills/{bill_id}")
def get_bill(
    bill_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    service = BillService(db, user_id)
    return {"bill": service.serialize(service.get(bill_id))}


@app.put("/api/bills/{bill_id}")
def update_bill(
    bill_id: int,
    data: BillIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BillService(db, user_id)
    return {"bill": service.serialize(service.update(bill_id, data))}


@app.delete("/api/bills/{bill_id}")
def delete_bill(
    bill_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    BillService(db, user_id).delete(bill_id)
    return {"message": "Bill deleted successfully"}


@app.get("/api/bills/{bill_id}/payments")
def list_bill_payments(
    bill_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    payments = BillService(db, user_id).payments(bill_id)
    return {"payments": [_dump(BillPaymentOut, p) for p in payments]}


@app.post("/api/bills/{bill_id}/payments", status_code=201)
def add_bill_payment(
    bill_id: int,
    data: BillPaymentIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    payment = BillService(db, user_id).add_payment(bill_id, data)
    return {"payment": _dump(BillPaymentOut, payment)}


# Analytics


@app.get("/api/analytics/spending")
def spending_analytics(
    start_date: date,
    end_date: date,
    group_by: str = "category",
    category_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    query = SpendingQuery(
        start_date=start_date,
        end_date=end_date,
        group_by=group_by,
        category_id=category_id,
    )
    return AnalyticsService(db, user_id).spending(query)


@app.get("/api/analytics/trends")
def spending_trends(
    months: int = 6,
    category_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return AnalyticsService(db, user_id).trends(months, category_id)


@app.get("/api/analytics/budget-vs-actual")
def budget_vs_actual(
    period: BudgetPeriod = BudgetPeriod.monthly,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return BudgetService(db, user_id).budget_vs_actual(period)


# Insights


@app.get("/api/insights")
def list_insights(
    unread_only: bool = False,
    type: Optional[InsightType] = None,
    limit: int = 10,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    items = InsightService(db, user_id).list(
        unread_only=unread_only, type=type, limit=min(max(limit, 1), 100)
    )
    return {"insights": [_dump(InsightOut, insight) for insight in items]}


@app.post("/api/insights/generate")
def generate_insights(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    count = InsightGenerator(db, user_id).generate_all()
    return {"message": f"Generated {count} insights", "count": count}


@app.patch("/api/insights/{insight_id}")
def mark_insight(
    insight_id: int,
    data: InsightReadIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    insight = InsightService(db, user_id).mark_read(insight_id, data.is_read)
    return {"insight": _dump(InsightOut, insight)}


@app.delete("/api/insights/{insight_id}")
def delete_insight(
    insight_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    InsightService(db, user_id).delete(insight_id)
    return {"message": "Insight deleted successfully"}


# Export


@app.get("/api/user/export")
def export_user_data(
    format: str = "json",
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = ExportService(db, user_id)
    today = local_today().isoformat()
    if format == "csv":
        return StreamingResponse(
            iter([service.export_csv()]),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="transactions_{today}.csv"'
            },
        )
    if format != "json":
        raise HTTPException(status_code=400, detail="Format must be json or csv")
    return JSONResponse(
        content=service.export_data(),
        headers={
            "Content-Disposition": f'attachment; filename="finance-export-{today}.json"'
        },
    )


def main():
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
