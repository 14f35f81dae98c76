# leadscout/api.py
"""
Read-only HTTP view of the accumulated leads.
Every route requires the shared secret as `?password=` or an `x-password` header.
"""
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from leadscout.config import settings
from leadscout.export import leads_to_csv
from leadscout.lead_store import LeadStore, status_report

logger = logging.getLogger(__name__)


def create_app(store: LeadStore = None, password: str = None) -> FastAPI:
    app = FastAPI(title="leadscout", docs_url=None, redoc_url=None)
    expected = settings.api.password if password is None else password

    def get_store() -> LeadStore:
        return store or LeadStore()

    def require_password(
        password: Optional[str] = Query(None),
        x_password: Optional[str] = Header(None),
    ):
        supplied = password or x_password or ""
        # An unset secret locks every route
        if not expected or not secrets.compare_digest(supplied.encode(), expected.encode()):
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.exception_handler(HTTPException)
    async def http_error(_request, exc: HTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.get("/leads", dependencies=[Depends(require_password)])
    def get_leads(format: str = Query("json"), lead_store: LeadStore = Depends(get_store)):
        leads = lead_store.load().leads
        if format == "csv":
            today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
            return Response(
                content=leads_to_csv(leads),
                media_type="text/csv",
                headers={"Content-Disposition": f'attachment; filename="leads-{today}.csv"'},
            )
        return JSONResponse([lead.to_dict() for lead in leads])

    @app.get("/status", dependencies=[Depends(require_password)])
    def get_status(lead_store: LeadStore = Depends(get_store)):
        return JSONResponse(status_report(lead_store.load()))

    return app
