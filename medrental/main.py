# medrental/main.py
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from medrental.config import get_settings
from medrental.core.logging import setup_logging
from medrental.database import create_tables
from medrental.routers import auth, calendar, patients, payments, analytics, health

settings = get_settings()
logger = setup_logging()

app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug)


@app.on_event("startup")
def on_startup():
    create_tables()
    logger.info("application_started", environment=settings.environment, version=settings.app_version)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(calendar.router, prefix="/api/v1")
app.include_router(patients.router, prefix="/api/v1")
app.include_router(payments.router, prefix="/api/v1")
app.include_router(analytics.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


@app.post("/token", include_in_schema=False)
async def token_redirect():
    return RedirectResponse(url="/api/v1/auth/token", status_code=307)


if __name__ == "__main__":
    uvicorn.run("medrental.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
