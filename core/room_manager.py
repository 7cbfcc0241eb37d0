"""
Room Manager：房間的建立、查詢與操作員狀態設定

職責：
1. 建立房間
2. 更新房間名稱 / 操作員狀態（available / cleaning / maintenance）
3. 查詢房間

原則：
- occupied <-> available 只由單據的開單 / 結帳 / 取消切換（core.state_machine）
- 操作員不能把房間設成 occupied，也不能改動 occupied 房間的狀態
"""
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from models import Room, RoomStatus, new_id
from core.locks import with_room_lock
from core.exceptions import InvalidInput, InvalidRoomStatus, RoomNotFound
from database import transactional

logger = logging.getLogger(__name__)

OPERATOR_STATUSES = {RoomStatus.AVAILABLE, RoomStatus.CLEANING, RoomStatus.MAINTENANCE}


def _parse_operator_status(status) -> RoomStatus:
    try:
        status = RoomStatus(status.strip().lower() if isinstance(status, str) else status)
    except ValueError:
        raise InvalidRoomStatus(f"Unknown room status: {status}")

    if status not in OPERATOR_STATUSES:
        raise InvalidRoomStatus(
            f"Room status '{status.value}' can only be set by opening a session"
        )
    return status


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidInput("Room name is required")
    if len(name) > 64:
        raise InvalidInput("Room name must be at most 64 characters")
    return name


class RoomManager:
    """Room 管理器"""

    @staticmethod
    @transactional
    def create_room(db: Session, name: str, status: Optional[str] = None) -> Room:
        """
        建立新房間

        參數：
            db: SQLAlchemy Session
            name: 顯示名稱（例如 "Hot Room 1"）
            status: 初始狀態（預設 available，不可為 occupied）

        返回：
            新的 Room

        異常：
            InvalidInput: 名稱為空
            InvalidRoomStatus: 狀態不是操作員可以設定的值
        """
        room = Room(
            id=new_id(),
            name=_clean_name(name),
            status=_parse_operator_status(status) if status else RoomStatus.AVAILABLE
        )
        db.add(room)
        db.flush()

        logger.info(f"Created room {room.id} ({room.name})")
        return room

    @staticmethod
    @transactional
    def update_room(db: Session, room_id: str, name: Optional[str] = None, status: Optional[str] = None) -> Room:
        """
        更新房間名稱 / 狀態

        前置條件：
        1. Room 必須存在
        2. 要改狀態時，房間不能是 occupied，目標狀態不能是 occupied

        異常：
            RoomNotFound: Room 不存在
            InvalidRoomStatus: 非法的狀態設定
        """
        room = with_room_lock(room_id, db).populate_existing().first()
        if not room:
            raise RoomNotFound(room_id)

        if name is not None:
            room.name = _clean_name(name)

        if status is not None:
            target = _parse_operator_status(status)
            if room.status == RoomStatus.OCCUPIED:
                raise InvalidRoomStatus(
                    f"Room {room_id} is occupied; close or cancel its session first"
                )
            if target != room.status:
                logger.info(f"Room {room_id}: {room.status.value} -> {target.value} (operator)")
            room.status = target

        db.flush()
        return room

    @staticmethod
    @transactional
    def list_rooms(db: Session) -> List[Room]:
        """所有房間，依名稱排序"""
        return db.query(Room).order_by(Room.name).all()

    @staticmethod
    @transactional
    def get_room_by_id(db: Session, room_id: str) -> Room:
        """
        透過 id 取得 Room

        異常：
            RoomNotFound: Room 不存在
        """
        room = db.query(Room).filter(Room.id == room_id).first()
        if not room:
            raise RoomNotFound(room_id)
        return room
