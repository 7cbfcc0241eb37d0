"""
Session API Endpoints

職責：
1. 開單 / 新增明細 / 新增付款 / 結帳 / 取消
2. 查詢 open 的單據、單據明細與合計
3. 補印收據

所有狀態轉換都經過 SessionEngine，這裡只負責 HTTP 對應
"""
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import RoomSession, SessionItem, Payment
from schemas import (
    OpenSessionRequest,
    AddItemRequest,
    AddPaymentRequest,
    SessionResponse,
    SessionItemResponse,
    PaymentResponse,
    TotalsResponse,
    SessionDetailResponse,
    CloseSessionResponse,
    ReceiptResponse
)
from core.session_engine import SessionEngine, get_session_engine
from core.exceptions import (
    InvalidInput,
    NotFound,
    RoomNotFound,
    RoomAlreadyOccupied,
    SessionNotFound,
    InvalidState,
    BalanceNotZero,
    Conflict,
    StoreFailure
)
from services.ledger_service import SessionTotals, line_total

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


def to_session_response(session: RoomSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        room_id=session.room_id,
        customer_name=session.customer_name,
        start_at=session.start_at,
        end_at=session.end_at,
        status=session.status.value
    )


def to_item_response(item: SessionItem) -> SessionItemResponse:
    return SessionItemResponse(
        id=item.id,
        session_id=item.session_id,
        service_name=item.service_name,
        qty=item.qty,
        unit_price=item.unit_price,
        total=line_total(item.qty, item.unit_price),
        added_at=item.added_at
    )


def to_payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        session_id=payment.session_id,
        method=payment.method,
        amount=payment.amount,
        paid_at=payment.paid_at
    )


def to_totals_response(totals: SessionTotals) -> TotalsResponse:
    return TotalsResponse(
        items_total=totals.items_total,
        payments_total=totals.payments_total,
        balance=totals.balance
    )


@router.get("/active", response_model=list[SessionResponse])
def list_active_sessions(
    db: Session = Depends(get_db),
    engine: SessionEngine = Depends(get_session_engine)
):
    """所有 open 的單據（最新的在前）"""
    try:
        return [to_session_response(s) for s in engine.list_active_sessions(db)]

    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to list active sessions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{session_id}", response_model=SessionDetailResponse)
def get_session(
    session_id: str,
    db: Session = Depends(get_db),
    engine: SessionEngine = Depends(get_session_engine)
):
    """
    取得單據、明細、付款與合計

    合計每次都從明細與付款的原始欄位重新計算
    """
    try:
        detail = engine.get_session_detail(db, session_id)
        return SessionDetailResponse(
            session=to_session_response(detail.session),
            room_name=detail.room.name if detail.room is not None else None,
            items=[to_item_response(i) for i in detail.items],
            payments=[to_payment_response(p) for p in detail.payments],
            totals=to_totals_response(detail.totals)
        )

    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to get session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/open", response_model=SessionResponse, status_code=201)
def open_session(
    request: OpenSessionRequest,
    response: Response,
    db: Session = Depends(get_db),
    engine: SessionEngine = Depends(get_session_engine)
):
    """
    開單（房間設為 occupied）

    錯誤：
    - 404：房間不存在
    - 409：房間已有 open 的單據，或並發開單碰撞（可重試）
    """
    try:
        session = engine.open_session(db, request.room_id, request.customer_name)
        response.headers["Location"] = f"/api/sessions/{session.id}"
        return to_session_response(session)

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except RoomAlreadyOccupied as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to open session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/items", response_model=SessionItemResponse, status_code=201)
def add_item(
    session_id: str,
    request: AddItemRequest,
    db: Session = Depends(get_db),
    engine: SessionEngine = Depends(get_session_engine)
):
    """新增服務明細（單據必須是 open）"""
    try:
        item = engine.add_item(db, session_id, request.service_name, request.qty, request.unit_price)
        return to_item_response(item)

    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except (InvalidState, InvalidInput) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to add item: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/payments", response_model=PaymentResponse, status_code=201)
def add_payment(
    session_id: str,
    request: AddPaymentRequest,
    db: Session = Depends(get_db),
    engine: SessionEngine = Depends(get_session_engine)
):
    """新增付款（單據必須是 open，付款方式存成小寫）"""
    try:
        payment = engine.add_payment(db, session_id, request.method, request.amount)
        return to_payment_response(payment)

    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except (InvalidState, InvalidInput) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to add payment: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/close", response_model=CloseSessionResponse)
def close_session(
    session_id: str,
    db: Session = Depends(get_db),
    engine: SessionEngine = Depends(get_session_engine)
):
    """
    結帳（餘額必須為零）

    成功：200，單據 closed、房間 available
    收據輸出失敗仍然回 200，receipt_delivered=false，可以用 POST /{id}/receipt 重送

    錯誤：
    - 404：單據不存在
    - 400：單據不是 open；餘額不為零（detail 帶 items_total / payments_total / balance）
    - 409：並發結帳碰撞（可重試）
    """
    try:
        result = engine.close_session(db, session_id)
        return CloseSessionResponse(
            session=to_session_response(result.session),
            totals=to_totals_response(result.totals),
            receipt_delivered=result.receipt_delivered,
            receipt_error=result.receipt_error
        )

    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except BalanceNotZero as e:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "Cannot close session. Balance must be zero.",
                "items_total": str(e.items_total),
                "payments_total": str(e.payments_total),
                "balance": str(e.balance)
            }
        )
    except InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to close session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/cancel", response_model=SessionResponse)
def cancel_session(
    session_id: str,
    db: Session = Depends(get_db),
    engine: SessionEngine = Depends(get_session_engine)
):
    """
    取消單據（管理用，不檢查餘額；已有付款的單據不能取消）
    """
    try:
        session = engine.cancel_session(db, session_id)
        return to_session_response(session)

    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to cancel session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/receipt", response_model=ReceiptResponse)
def reprint_receipt(
    session_id: str,
    db: Session = Depends(get_db),
    engine: SessionEngine = Depends(get_session_engine)
):
    """重送已結帳單據的收據"""
    try:
        result = engine.reprint_receipt(db, session_id)
        return ReceiptResponse(session_id=session_id, delivered=result.delivered, error=result.error)

    except NotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to reprint receipt: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
