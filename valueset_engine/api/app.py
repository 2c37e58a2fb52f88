"""
Value-Set Engine API — FastAPI endpoints.

Exposes the engine under a sheet scope:
- Value set listing, lookup and creation
- Value set status transitions
- Field value reads and writes
- Variance decisions
- Requirement vs Offered/AsBuilt comparison

The caller's tenant comes from the X-Account-Id header (X-User-Id is
optional and only recorded). Every sheet-scoped route depends on
`sheet_scope`, which runs the access guard before the handler body.
"""

import logging
import re
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from valueset_engine.errors import InputValidationError, ValueSetEngineError
from valueset_engine.lifecycle.service import ValueSetService
from valueset_engine.models.sheet import FilledSheet
from valueset_engine.models.value_set import ValueContext, ValueSetStatus
from valueset_engine.models.variance import DECISION_STATUSES, VarianceStatus
from valueset_engine.settings import Settings, configure_logging
from valueset_engine.sheets.directory import SheetDirectory
from valueset_engine.store.value_sets import ValueSetStore

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"-?[0-9]+")


# --- Request Models ---

class ValueSetCreateRequest(BaseModel):
    context: Any = None
    partyId: Any = None


class StatusTransitionRequest(BaseModel):
    status: Any = None


class VariancePatchRequest(BaseModel):
    infoTemplateId: Any = None
    status: Any = None


class FieldValueRequest(BaseModel):
    value: Any = None
    uom: Optional[str] = None


class CallerContext(BaseModel):
    account_id: int
    user_id: Optional[int] = None


class SheetScope(CallerContext):
    """A sheet the caller has been confirmed to own."""
    sheet: FilledSheet


# --- Input parsing ---

def _parse_int(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and _INT_PATTERN.fullmatch(raw.strip()):
        return int(raw.strip())
    return None


def parse_context(raw: Any) -> ValueContext:
    text = raw.strip() if isinstance(raw, str) else ""
    try:
        return ValueContext(text)
    except ValueError:
        raise InputValidationError(
            "Missing or invalid context (Requirement, Offered, AsBuilt)"
        ) from None


def parse_party_id(raw: Any) -> Optional[int]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    party_id = _parse_int(raw)
    if party_id is None:
        raise InputValidationError("Invalid partyId")
    return party_id


def parse_transition_status(raw: Any) -> ValueSetStatus:
    try:
        return ValueSetStatus(raw)
    except ValueError:
        raise InputValidationError("Missing or invalid status (Locked, Verified)") from None


def parse_info_template_id(raw: Any) -> int:
    info_template_id = _parse_int(raw)
    if info_template_id is None or info_template_id <= 0:
        raise InputValidationError("Missing or invalid infoTemplateId")
    return info_template_id


def parse_variance_status(raw: Any) -> Optional[VarianceStatus]:
    if raw is None:
        return None
    try:
        status = VarianceStatus(raw)
    except ValueError:
        status = None
    if status not in DECISION_STATUSES:
        raise InputValidationError("Invalid status (DeviatesAccepted, DeviatesRejected, or null)")
    return status


# --- Application Factory ---

def create_app(
    settings: Optional[Settings] = None,
    directory: Optional[SheetDirectory] = None,
    store: Optional[ValueSetStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    config = settings or Settings()
    if config.configure_logging:
        configure_logging(config)

    app = FastAPI(
        title="Value-Set Engine API",
        description="Requirement / Offered / AsBuilt value sets and variance review for filled datasheets",
        version="0.1.0",
    )

    sheets = directory or SheetDirectory()
    vs_store = store or ValueSetStore(db_path=config.db_path)
    service = ValueSetService(sheets, vs_store, config)

    app.state.settings = config
    app.state.directory = sheets
    app.state.store = vs_store
    app.state.service = service

    @app.exception_handler(ValueSetEngineError)
    async def handle_engine_error(request: Request, exc: ValueSetEngineError):
        logger.debug("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    def caller_context(
        x_account_id: Optional[int] = Header(default=None),
        x_user_id: Optional[int] = Header(default=None),
    ) -> CallerContext:
        if x_account_id is None:
            raise HTTPException(401, "Missing account context")
        return CallerContext(account_id=x_account_id, user_id=x_user_id)

    def sheet_scope(sheet_id: int, caller: CallerContext = Depends(caller_context)) -> SheetScope:
        sheet = service.open_sheet(sheet_id, caller.account_id)
        return SheetScope(sheet=sheet, account_id=caller.account_id, user_id=caller.user_id)

    # === VALUE SETS ===

    @app.get("/sheets/{sheet_id}/valuesets")
    def list_value_sets(
        context: Optional[str] = None,
        partyId: Optional[str] = None,
        scope: SheetScope = Depends(sheet_scope),
    ):
        """List a sheet's value sets, or look one up by context/party."""
        if context is not None:
            ctx = parse_context(context)
            party_id = parse_party_id(partyId)
            value_set_id = service.find_value_set_id(scope.sheet, ctx, party_id)
            return {"valueSetId": value_set_id, "context": ctx.value, "partyId": party_id}

        items = service.list_value_sets(scope.sheet)
        return {"items": [vs.to_api() for vs in items]}

    @app.post("/sheets/{sheet_id}/valuesets", status_code=201)
    def create_value_set(req: ValueSetCreateRequest, scope: SheetScope = Depends(sheet_scope)):
        """Create a Requirement, Offered or AsBuilt value set."""
        context = parse_context(req.context)
        party_id = parse_party_id(req.partyId) if context == ValueContext.OFFERED else None
        value_set_id = service.create_value_set(scope.sheet, context, party_id, scope.user_id)
        return {"valueSetId": value_set_id, "context": context.value, "partyId": party_id}

    @app.post("/sheets/{sheet_id}/valuesets/{value_set_id}/status")
    def transition_value_set(
        value_set_id: int,
        req: StatusTransitionRequest,
        scope: SheetScope = Depends(sheet_scope),
    ):
        """Move a value set out of Draft."""
        target = parse_transition_status(req.status)
        service.transition(scope.sheet, value_set_id, target, scope.user_id)
        return {"valueSetId": value_set_id, "status": target.value}

    # === FIELD VALUES ===

    @app.get("/sheets/{sheet_id}/valuesets/{value_set_id}/values")
    def get_values(value_set_id: int, scope: SheetScope = Depends(sheet_scope)):
        values = service.get_values(scope.sheet, value_set_id)
        return {
            "valueSetId": value_set_id,
            "values": [
                {"infoTemplateId": fv.info_template_id, "value": fv.value, "uom": fv.uom}
                for fv in values.values()
            ],
        }

    @app.put("/sheets/{sheet_id}/valuesets/{value_set_id}/values/{info_template_id}")
    def set_field_value(
        value_set_id: int,
        info_template_id: int,
        req: FieldValueRequest,
        scope: SheetScope = Depends(sheet_scope),
    ):
        """Write one field value of a value set."""
        value = req.value
        if isinstance(value, bool) or not (value is None or isinstance(value, (str, int, float))):
            raise InputValidationError("Field value must be a string, number or null")
        fv = service.set_field_value(
            scope.sheet,
            value_set_id,
            info_template_id,
            value,
            req.uom,
            scope.user_id,
        )
        return {
            "valueSetId": fv.value_set_id,
            "infoTemplateId": fv.info_template_id,
            "value": fv.value,
            "uom": fv.uom,
        }

    # === VARIANCES ===

    @app.patch("/sheets/{sheet_id}/valuesets/{value_set_id}/variances", status_code=204)
    def patch_variance(
        value_set_id: int,
        req: VariancePatchRequest,
        scope: SheetScope = Depends(sheet_scope),
    ):
        """Record, or clear with status null, a reviewer decision on one field."""
        info_template_id = parse_info_template_id(req.infoTemplateId)
        if "status" not in req.model_fields_set:
            raise InputValidationError("Missing status (DeviatesAccepted, DeviatesRejected, or null)")
        status = parse_variance_status(req.status)
        service.patch_variance(
            scope.sheet, value_set_id, info_template_id, status, scope.user_id
        )
        return Response(status_code=204)

    @app.get("/sheets/{sheet_id}/compare")
    def compare(
        partyId: Optional[str] = None,
        offeredPartyId: Optional[str] = None,
        scope: SheetScope = Depends(sheet_scope),
    ):
        """Requirement vs Offered/AsBuilt, grouped by subsheet."""
        party_id = parse_party_id(partyId if partyId is not None else offeredPartyId)
        view = service.get_compare_data(scope.sheet, party_id)
        return view.to_api()

    return app


# Default application instance
app = create_app()
