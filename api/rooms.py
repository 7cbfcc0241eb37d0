"""
Room API Endpoints

職責：
1. 列出房間
2. 建立房間
3. 更新房間名稱 / 操作員狀態（cleaning、maintenance、available）

每次成功寫入後廣播 RoomUpdated（更新在該房間的 EventHub.ordering 之內，和開單 / 結帳的事件順序一致）
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import Room
from schemas import RoomCreate, RoomUpdate, RoomResponse
from core.room_manager import RoomManager
from core.events import EventHub, get_event_hub, ROOM_UPDATED
from core.exceptions import RoomNotFound, InvalidRoomStatus, InvalidInput, Conflict, StoreFailure

router = APIRouter(prefix="/api/rooms", tags=["rooms"])
logger = logging.getLogger(__name__)


def to_room_response(room: Room) -> RoomResponse:
    return RoomResponse(
        id=room.id,
        name=room.name,
        status=room.status.value,
        updated_at=room.updated_at
    )


@router.get("", response_model=list[RoomResponse])
def list_rooms(db: Session = Depends(get_db)):
    """所有房間，依名稱排序"""
    try:
        return [to_room_response(room) for room in RoomManager.list_rooms(db)]

    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to list rooms: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("", response_model=RoomResponse, status_code=201)
def create_room(
    room_data: RoomCreate,
    db: Session = Depends(get_db),
    hub: EventHub = Depends(get_event_hub)
):
    """建立房間（預設 available）"""
    try:
        room = RoomManager.create_room(db, room_data.name, room_data.status)
        hub.publish(ROOM_UPDATED, room.id, {"status": room.status.value})
        return to_room_response(room)

    except (InvalidRoomStatus, InvalidInput) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to create room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/{room_id}", response_model=RoomResponse)
def update_room(
    room_id: str,
    room_data: RoomUpdate,
    db: Session = Depends(get_db),
    hub: EventHub = Depends(get_event_hub)
):
    """
    更新房間

    前置條件：
    - 狀態只能設為 available / cleaning / maintenance
    - occupied 的房間不能改狀態（要先結帳或取消單據）
    """
    try:
        with hub.ordering(room_id):
            room = RoomManager.update_room(db, room_id, room_data.name, room_data.status)
            hub.publish(ROOM_UPDATED, room.id, {"status": room.status.value})
        return to_room_response(room)

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except (InvalidRoomStatus, InvalidInput) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreFailure:
        raise HTTPException(status_code=503, detail="Ledger store unavailable")
    except Exception as e:
        logger.error(f"Failed to update room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
