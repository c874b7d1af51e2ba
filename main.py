from fastapi import FastAPI
from shared.config.database import engine, Base

# IMPORTANT: import models so they register with Base
from services.fulfillment_service import models  # noqa: F401

from services.fulfillment_service.main import fulfillment_app

app = FastAPI(title="Fulfillment Cluster")

# Mounted apps do not receive startup events, so tables are created here too
@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

app.mount("/fulfillment", fulfillment_app)
