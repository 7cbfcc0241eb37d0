"""
共用 fixtures：每個測試一個獨立的 SQLite 檔案資料庫
"""
import pytest
from fastapi.testclient import TestClient

from database import build_engine, build_sessionmaker, get_db, init_db
from core.events import EventHub, get_event_hub
from core.room_manager import RoomManager
from core.session_engine import SessionEngine, get_session_engine


class RecordingObserver:
    """把收到的事件記下來的觀察者"""

    def __init__(self):
        self.events = []

    def offer(self, event):
        self.events.append(event)

    def topics(self):
        return [(e.topic, e.entity_id) for e in self.events]


class RecordingPrinter:
    """記錄收據的假印表機；fail=True 時模擬印表機離線"""

    def __init__(self, fail=False):
        self.receipts = []
        self.fail = fail

    def deliver(self, receipt):
        if self.fail:
            raise ConnectionRefusedError("printer offline")
        self.receipts.append(receipt)


# ===== DATABASE =====

@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'hamam_test.db'}", busy_timeout=10.0)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def reload(session_factory):
    """用一個新的 DB session 讀出目前已 commit 的資料"""
    def _reload(model, entity_id):
        fresh = session_factory()
        try:
            obj = fresh.get(model, entity_id)
            fresh.commit()
            return obj
        finally:
            fresh.close()
    return _reload


# ===== ENGINE =====

@pytest.fixture
def hub():
    return EventHub()


@pytest.fixture
def observer(hub):
    obs = RecordingObserver()
    hub.subscribe(obs)
    return obs


@pytest.fixture
def printer():
    return RecordingPrinter()


@pytest.fixture
def pos(hub, printer):
    return SessionEngine(hub, printer, receipt_title="TEST RECEIPT", business_name="Test Hamam")


@pytest.fixture
def room(session_factory):
    """
    在自己的 DB session 建立房間，返回 detached 的物件

    測試用的 db 在業務異常 rollback 之後會 expire 裡面的物件，
    再讀屬性會在 db 上開一個沒有人 commit 的 transaction（BEGIN IMMEDIATE 會卡住其他連線）
    detached 的 room 不受影響；測試中的單據則要先把 id 存起來
    """
    setup = session_factory()
    try:
        return RoomManager.create_room(setup, "Hot Room 1")
    finally:
        setup.close()


# ===== HTTP =====

@pytest.fixture
def client(session_factory, pos, hub):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_engine] = lambda: pos
    app.dependency_overrides[get_event_hub] = lambda: hub
    yield TestClient(app)
    app.dependency_overrides.clear()
