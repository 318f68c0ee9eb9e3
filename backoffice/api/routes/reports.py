from datetime import date
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from backoffice.api.deps import as_http_error, get_current_user
from backoffice.core.database import get_db
from backoffice.core.errors import ServiceError
from backoffice.models.database import User
from backoffice.models.schemas import WaiterCommission
from backoffice.services.report_service import ReportService

router = APIRouter()


@router.get("/waiter-commission", response_model=List[WaiterCommission])
async def waiter_commission_report(
    start_date: date,
    end_date: date,
    waiter_name: Optional[str] = None,
    export: bool = False,
    format: Literal["csv", "json"] = "json",
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Commission earned by waiters on orders completed between two dates"""
    service = ReportService(db)
    try:
        report = service.waiter_commission_report(start_date, end_date, user, waiter_name=waiter_name)
    except ServiceError as e:
        raise as_http_error(e)

    if export and format == "csv":
        return Response(
            content=service.to_csv(report),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="waiter-commission-{start_date}-{end_date}.csv"'
            },
        )
    return report
