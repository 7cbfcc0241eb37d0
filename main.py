from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.orm import Session
import logging

from database import SessionLocal, get_db, get_settings, init_db
from api import rooms, sessions, reports, websocket
from services.seed_service import seed_default_rooms

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料表，資料庫沒有房間時建立預設房間
    init_db()
    db = SessionLocal()
    try:
        seed_default_rooms(db)
    finally:
        db.close()
    yield
    # Shutdown: 如果需要清理資源可以加在這裡


app = FastAPI(
    title="Hamam POS API",
    description="Point-of-sale backend for a bathhouse: rooms, sessions (adisyon), payments and receipts",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rooms.router)
app.include_router(sessions.router)
app.include_router(reports.router)
app.include_router(websocket.router)


@app.get("/")
def root():
    return {"message": "Hamam POS API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/ready")
def ready(db: Session = Depends(get_db)):
    # 簡單的 DB ping
    db.execute(text("SELECT 1"))
    db.commit()
    return {"ready": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
