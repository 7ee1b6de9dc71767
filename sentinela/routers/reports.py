from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from sentinela.auth import Armorer, get_current_armorer
from sentinela.db import get_db
from sentinela.services.report_service import check_ledger, dashboard_summary, export_cautelas_csv

router = APIRouter(tags=['reports'])


@router.get('/dashboard')
def dashboard(_: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    return dashboard_summary(db)


@router.get('/reports/cautelas.csv')
def cautelas_csv(_: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    content = export_cautelas_csv(db)
    filename = f'cautelas-{date.today().isoformat()}.csv'
    return StreamingResponse(
        iter([content]),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@router.get('/reports/ledger-check')
def ledger_check(_: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    discrepancies = check_ledger(db)
    return {
        'consistent': not discrepancies,
        'discrepancies': [
            {
                'material_id': item.material_id,
                'name': item.name,
                'total_quantity': item.total_quantity,
                'available_quantity': item.available_quantity,
                'issued_quantity': item.issued_quantity,
                'open_quantity': item.open_quantity,
            }
            for item in discrepancies
        ],
    }
