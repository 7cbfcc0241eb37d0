from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
import logging

from core.exceptions import HamamPOSException, SessionConflict, StoreFailure

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./hamam_pos.db"
    sqlite_busy_timeout: float = 5.0

    receipt_title: str = "HAMAM POS RECEIPT"
    business_name: str = "Your Business Ltd."

    # PREVIEW：寫入檔案；LAN：ESC/POS over TCP
    printer_mode: str = "PREVIEW"
    printer_preview_dir: str = "receipts"
    printer_host: str = "192.168.1.50"
    printer_port: int = 9100
    printer_timeout: float = 5.0

    event_queue_size: int = 100
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "HAMAM_"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def build_engine(database_url: str, busy_timeout: float = 5.0) -> Engine:
    """
    建立 SQLAlchemy Engine

    SQLite 的特殊設定：
    - check_same_thread=False：FastAPI 的 threadpool 會跨執行緒使用連線
    - 關閉 pysqlite 自己的 BEGIN，改由 "begin" event 發出 BEGIN IMMEDIATE
      讓每個 transaction 一開始就取得寫入鎖，兩個同時開單的請求會被資料庫序列化
    - 開啟 foreign_keys

    其他資料庫（PostgreSQL）則依賴 core.locks 的 SELECT ... FOR UPDATE
    """
    is_sqlite = database_url.startswith("sqlite")
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": busy_timeout} if is_sqlite else {},
        pool_pre_ping=True
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_sessionmaker(bind: Engine) -> sessionmaker:
    # expire_on_commit=False：commit 之後的通知與收據只讀記憶體內的值，不再開新的 transaction
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(settings.database_url, settings.sqlite_busy_timeout)
SessionLocal = build_sessionmaker(engine)
Base = declarative_base()


def init_db(bind: Engine = None) -> None:
    """建立所有資料表（沒有 migration 工具，啟動時 create_all）"""
    import models  # noqa: F401  註冊所有 model

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def open_session(db: Session, ...):
            session = RoomSession(...)
            db.add(session)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 業務異常（HamamPOSException）原樣拋出
        - IntegrityError / StaleDataError 轉成 SessionConflict（並發碰撞，呼叫端可重試）
        - 其他 SQLAlchemyError 轉成 StoreFailure（資料庫故障，呼叫端可重試）

    注意：
        - 第一個參數必須是 db: Session
        - 不要在函式內手動 commit（decorator 會處理）
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except HamamPOSException as e:
            logger.info(f"Transaction {func.__name__} rejected: {e}")
            db.rollback()
            raise
        except (IntegrityError, StaleDataError) as e:
            logger.warning(f"Transaction conflict in {func.__name__}: {e}")
            db.rollback()
            raise SessionConflict(f"Concurrent update detected in {func.__name__}") from e
        except SQLAlchemyError as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise StoreFailure(f"Ledger store failure in {func.__name__}") from e
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
