import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kokaa_payments import models  # noqa: F401  registers tables on Base.metadata
from kokaa_payments.database import Base, engine
from kokaa_payments.logger import get_logger
from kokaa_payments.routes import router

logger = get_logger(__name__)

app = FastAPI(title="Kokaa Payments")

# Storefront runs on a separate origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Client-Info", "Apikey"],
)

app.include_router(router)

Base.metadata.create_all(bind=engine)
logger.info(f"Tables ready: {sorted(Base.metadata.tables)}")


@app.get("/health")
def health():
    return {"ok": True}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
