import logging
from datetime import date
from functools import lru_cache
from typing import Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import RedirectResponse, StreamingResponse
from sqlalchemy.orm import Session

from categories import CategorySchema
from config import get_settings
from csv_utils import month_name, parse_month
from database import SessionLocal, init_db, session_scope
from domain import Decision, Line, StatementMetadata
from schemas import (
    AnnualBudgetIn,
    AnnualBudgetOut,
    CategoryOut,
    DecisionOut,
    DecisionsIn,
    MonthlyReportOut,
    StatementReviewOut,
    UnknownMerchantOut,
)
from services import (
    BudgetService,
    DecisionService,
    EmptyResultError,
    MappingService,
    MonthlyReportService,
    StatementOutcome,
    StatementService,
)
from tokens import load_pending_statement, sign_pending_statement

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Statement Budgets")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache(maxsize=1)
def load_schema() -> CategorySchema:
    return CategorySchema.from_file(get_settings().schema_path)


def get_schema() -> CategorySchema:
    return load_schema()


@app.on_event("startup")
def startup_event():
    init_db()
    settings = get_settings()
    with session_scope() as session:
        added = BudgetService(session, get_schema()).load_from_file(settings.budgets_path)
    logger.info(f"startup: schema={settings.schema_path} budgets_added={added}")


def _bad_request(exc: Exception, where: str) -> HTTPException:
    logger.warning(f"{where}_rejected: {exc}")
    return HTTPException(status_code=400, detail=str(exc))


def _metadata_from(year: str, month: str, user: str, statement_name: str) -> StatementMetadata:
    return StatementMetadata(
        year=int(year),
        month=parse_month(month),
        user=user.strip(),
        statement_name=statement_name.strip(),
    )


def _unknown_merchant_redirect(merchants: list[str], pending: str) -> RedirectResponse:
    query = [("currentMerchant", merchants[0]), ("pending", pending)]
    query.extend(("remainingMerchants", m) for m in merchants[1:])
    return RedirectResponse(url=f"/unknown-merchant?{urlencode(query)}", status_code=303)


def _review(outcome: StatementOutcome) -> StatementReviewOut:
    metadata = outcome.metadata
    return StatementReviewOut(
        year=metadata.year,
        month=month_name(metadata.month),
        user=metadata.user,
        statement_name=metadata.statement_name,
        decisions=[
            DecisionOut.from_decision(d)
            for d in sorted(outcome.decisions, key=lambda d: d.line.date)
        ],
    )


def _route_outcome(outcome: StatementOutcome, pending: str):
    if outcome.awaiting_mapping:
        return _unknown_merchant_redirect(outcome.unknown_merchants, pending)
    return _review(outcome)


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(schema: CategorySchema = Depends(get_schema)):
    return [CategoryOut.from_category(c) for c in schema.all()]


@app.get("/category-mappings")
def list_mappings(
    db: Session = Depends(get_db), schema: CategorySchema = Depends(get_schema)
):
    return {"mappings": MappingService(db, schema).read_all_lines()}


@app.post("/category-mapping")
async def add_category_mapping(
    request: Request,
    db: Session = Depends(get_db),
    schema: CategorySchema = Depends(get_schema),
):
    form = await request.form()
    new_mapping = str(form.get("new-mapping") or "")
    pending = str(form.get("pending") or "")
    remaining = [str(m).strip() for m in form.getlist("remaining-merchants") if str(m).strip()]
    try:
        load_pending_statement(pending)
        MappingService(db, schema).append(new_mapping)
    except ValueError as exc:
        raise _bad_request(exc, "mapping") from exc
    if remaining:
        return _unknown_merchant_redirect(remaining, pending)
    return RedirectResponse(
        url=f"/statements/pending?{urlencode({'pending': pending})}", status_code=303
    )


@app.get("/unknown-merchant", response_model=UnknownMerchantOut)
def unknown_merchant(request: Request, schema: CategorySchema = Depends(get_schema)):
    current = request.query_params.get("currentMerchant")
    pending = request.query_params.get("pending")
    if not current or not pending:
        raise HTTPException(status_code=400, detail="currentMerchant and pending are required")
    try:
        load_pending_statement(pending)
    except ValueError as exc:
        raise _bad_request(exc, "unknown_merchant") from exc
    return UnknownMerchantOut(
        current_merchant=current,
        remaining_merchants=request.query_params.getlist("remainingMerchants"),
        categories=[CategoryOut.from_category(c) for c in schema.all()],
        pending=pending,
    )


@app.post("/statements")
async def upload_statement(
    request: Request,
    db: Session = Depends(get_db),
    schema: CategorySchema = Depends(get_schema),
):
    form = await request.form()
    upload = form.get("statement-file")
    try:
        metadata = _metadata_from(
            str(form.get("year") or ""),
            str(form.get("month") or ""),
            str(form.get("user") or ""),
            str(form.get("statement-name") or ""),
        )
        if upload is None or isinstance(upload, str):
            raise ValueError("statement-file is required")
        content = await upload.read()
        if not content:
            raise ValueError("Empty statement file")
        service = StatementService(db, schema)
        path = service.store_upload(metadata, content)
        outcome = service.decide_file(metadata, path)
    except ValueError as exc:
        raise _bad_request(exc, "statement") from exc
    return _route_outcome(outcome, sign_pending_statement(metadata, path))


@app.get("/statements/pending")
def resume_statement(
    pending: str,
    db: Session = Depends(get_db),
    schema: CategorySchema = Depends(get_schema),
):
    try:
        metadata, path = load_pending_statement(pending)
        if not path.exists():
            raise ValueError("Pending statement file no longer exists")
        outcome = StatementService(db, schema).decide_file(metadata, path)
    except ValueError as exc:
        raise _bad_request(exc, "pending_statement") from exc
    return _route_outcome(outcome, pending)


@app.post("/decisions", status_code=201)
def submit_decisions(
    payload: DecisionsIn,
    db: Session = Depends(get_db),
    schema: CategorySchema = Depends(get_schema),
):
    try:
        metadata = StatementMetadata(
            year=payload.year,
            month=parse_month(payload.month),
            user=payload.user.strip(),
            statement_name=payload.statement_name.strip(),
        )
        decisions = [
            Decision.resolved(
                Line(date=d.date, merchant=d.merchant.strip(), amount=d.amount),
                d.category.strip(),
                d.subcategory.strip(),
            )
            for d in payload.decisions
        ]
        StatementService(db, schema).persist(metadata, decisions)
    except ValueError as exc:
        raise _bad_request(exc, "decisions") from exc
    return {
        "year": metadata.year,
        "monthNumber": metadata.month,
        "user": metadata.user,
        "written": len(decisions),
    }


@app.get("/decisions/export.csv")
def export_decisions_endpoint(
    year: int, month: str, user: Optional[str] = None, db: Session = Depends(get_db)
):
    try:
        month_number = parse_month(month)
    except ValueError as exc:
        raise _bad_request(exc, "export") from exc
    csv_text = DecisionService(db).export_csv(year, month_number, user)
    filename = f"decisions_{year}-{month_number:02d}{'_' + user if user else ''}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/budgets", response_model=list[AnnualBudgetOut])
def list_budgets(
    on: Optional[date] = None,
    db: Session = Depends(get_db),
    schema: CategorySchema = Depends(get_schema),
):
    periods = BudgetService(db, schema).all_periods()
    if on is not None:
        periods = [p for p in periods if p.covers(on)]
    return [AnnualBudgetOut.from_budget(p) for p in periods]


@app.post("/budgets", response_model=AnnualBudgetOut, status_code=201)
def provision_budget(
    payload: AnnualBudgetIn,
    db: Session = Depends(get_db),
    schema: CategorySchema = Depends(get_schema),
):
    try:
        budget = BudgetService(db, schema).provision(payload)
    except ValueError as exc:
        raise _bad_request(exc, "budget") from exc
    return AnnualBudgetOut.from_budget(budget)


@app.get("/monthly-report", response_model=MonthlyReportOut)
def monthly_report(
    year: int,
    month: str,
    user: Optional[str] = None,
    db: Session = Depends(get_db),
    schema: CategorySchema = Depends(get_schema),
):
    try:
        month_number = parse_month(month)
    except ValueError as exc:
        raise _bad_request(exc, "report") from exc
    try:
        report = MonthlyReportService(db, schema).build(year, month_number, user or None)
    except EmptyResultError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MonthlyReportOut.from_report(report)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=5000, reload=False)


if __name__ == "__main__":
    main()
