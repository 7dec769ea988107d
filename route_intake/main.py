import logging

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from route_intake import models  # noqa: F401  (registers tables on Base.metadata)
from route_intake.clock import RouteClock
from route_intake.config import Settings, settings
from route_intake.database import Base, SessionLocal, engine
from route_intake.route_import import check_route_conflict, import_route_workbook, parse_upload

app = FastAPI(title="Route Intake")
logger = logging.getLogger(__name__)


@app.on_event("startup")
def ensure_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_settings() -> Settings:
    return settings


def get_clock(app_settings: Settings = Depends(get_settings)) -> RouteClock:
    return RouteClock(app_settings.route_timezone)


def parse_failure_response(result) -> JSONResponse:
    return JSONResponse(
        {
            "message": "Failed to parse route data",
            "errors": result.errors,
            "warnings": result.warnings,
        },
        status_code=400,
    )


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@app.post("/routes/upload")
async def upload_route(
    route_file: UploadFile = File(...),
    uploaded_by: int = Form(...),
    mode: str = Form("auto"),
    db: Session = Depends(get_db),
    clock: RouteClock = Depends(get_clock),
    app_settings: Settings = Depends(get_settings),
):
    payload = await route_file.read()
    try:
        return import_route_workbook(
            db,
            payload,
            route_file.filename or "route.xlsx",
            uploaded_by,
            mode,
            clock=clock,
            settings=app_settings,
        )
    except HTTPException as exc:
        db.rollback()
        if isinstance(exc.detail, dict):
            return JSONResponse(exc.detail, status_code=exc.status_code)
        return JSONResponse({"message": str(exc.detail)}, status_code=exc.status_code)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Unexpected database error during route upload")
        return JSONResponse({"message": "Unexpected route upload database error."}, status_code=500)


@app.post("/routes/preview")
async def preview_route(
    route_file: UploadFile = File(...),
    clock: RouteClock = Depends(get_clock),
    app_settings: Settings = Depends(get_settings),
):
    result = parse_upload(await route_file.read(), clock=clock, settings=app_settings)
    if not result.success:
        return parse_failure_response(result)
    return result.as_dict()


@app.post("/routes/check-conflict")
async def check_conflict(
    route_file: UploadFile = File(...),
    db: Session = Depends(get_db),
    clock: RouteClock = Depends(get_clock),
    app_settings: Settings = Depends(get_settings),
):
    result = parse_upload(await route_file.read(), clock=clock, settings=app_settings)
    if not result.success or result.route is None:
        return parse_failure_response(result)
    if not result.route.route_number:
        return JSONResponse({"message": "No route number found in the file"}, status_code=400)
    return check_route_conflict(db, result.route)
