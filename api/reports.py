"""
Report API Endpoints

- GET /api/reports/daily?date=2025-10-07
- GET /api/reports/rooms/usage?from=...&to=...

所有時間都以 UTC 處理
"""
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import DailyRevenueResponse, RoomUsageResponse, RoomUsageRowResponse
from services.report_service import daily_revenue, room_usage
from core.exceptions import StoreFailure

router = APIRouter(prefix="/api/reports", tags=["reports"])
logger = logging.getLogger(__name__)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """資料庫存的是 naive UTC；帶時區的輸入先轉成 UTC 再去掉時區"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@router.get("/daily", response_model=DailyRevenueResponse)
def get_daily_revenue(
    day: Optional[date] = Query(None, alias="date"),
    db: Session = Depends(get_db)
):
    """
    單日營收

    返回：
        - items_total：當天新增明細的合計
        - payments_total：當天付款合計
        - balance：items_total - payments_total
        - payments_by_method：依付款方式分組
    """
    try:
        report = daily_revenue(db, day)
        return DailyRevenueResponse(
            date=report.date,
            items_total=report.items_total,
            payments_total=report.payments_total,
            balance=report.balance,
            payments_by_method=report.payments_by_method
        )

    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to build daily report: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rooms/usage", response_model=RoomUsageResponse)
def get_room_usage(
    from_utc: Optional[datetime] = Query(None, alias="from"),
    to_utc: Optional[datetime] = Query(None, alias="to"),
    db: Session = Depends(get_db)
):
    """
    房間使用統計：每個房間在區間內結帳的單據數與總分鐘數

    預設：to = 現在，from = to - 7 天
    """
    try:
        usage = room_usage(db, _naive_utc(from_utc), _naive_utc(to_utc))
        return RoomUsageResponse(
            from_utc=usage.from_utc,
            to_utc=usage.to_utc,
            rows=[
                RoomUsageRowResponse(
                    room_id=row.room_id,
                    room_name=row.room_name,
                    sessions_count=row.sessions_count,
                    total_minutes=row.total_minutes
                )
                for row in usage.rows
            ]
        )

    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to build room usage report: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
