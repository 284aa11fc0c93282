from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from database import Base, engine, SessionLocal, settings
from api import rounds
from services.keeper import RoundKeeper
from services.price_oracle import PriceOracleClient

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 在應用啟動時建立資料庫表
    Base.metadata.create_all(bind=engine)

    keeper = None
    if settings.keeper_interval_s > 0:
        keeper = RoundKeeper(SessionLocal, PriceOracleClient.from_settings(settings), settings)
        keeper.start()

    yield

    # Shutdown: 停止 keeper thread
    if keeper is not None:
        keeper.stop()


app = FastAPI(
    title="TickShot API",
    description="Round lifecycle and payout backend for a parimutuel up/down price game",
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
app.include_router(rounds.router)


@app.get("/")
def root():
    return {"message": "TickShot API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
