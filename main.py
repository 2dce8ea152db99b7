from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel
import models  # Ensure every table is known by SQLModel for table creation
from db.session import engine
from contextlib import asynccontextmanager
from api.time_routes import router as time_router
from api.request_routes import router as request_router
from api.admin_clock_request_routes import router as admin_clock_request_router
from api.admin_stale_shift_routes import router as admin_stale_shift_router
from api.admin_maintenance_routes import router as admin_maintenance_router
from api.location_routes import router as location_router
import logging
import os
from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# This file is the control center of the whole application

# Load environment variables from .env file, if it exists
load_dotenv()

# Default values can be provided if the env var is not set
DEV_DOMAIN = os.getenv("DEV_DOMAIN", "http://localhost:5173")
PRODUCTION_DOMAIN = os.getenv("PRODUCTION_DOMAIN")

# Construct the list of allowed origins, always including both dev and production
allowed_origins_list = [
    DEV_DOMAIN,
    PRODUCTION_DOMAIN,
    "http://localhost:3000",  # Additional fallback for React dev
    "http://127.0.0.1:5173",  # Additional fallback for Vite dev
]

# Remove any None values and duplicates
allowed_origins_list = list(set([origin for origin in allowed_origins_list if origin]))

logger.info(f"CORS: Allowing origins: {allowed_origins_list}")

# When We Start, Create the DB Tables if they don't exist
@asynccontextmanager
async def lifespan(app: FastAPI):

    SQLModel.metadata.create_all(engine)

    # (would do shutdown cleanup here if needed)
    yield


# Starts Fast API Up; Init
app = FastAPI(lifespan=lifespan)

# Allow requests from your React dev server & production
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins_list, # Use the constructed list
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Connects Routes From Time_Routes (clock-in / out) to main app
app.include_router(time_router, prefix="/time", tags=["Time"])
app.include_router(request_router, prefix="/requests", tags=["Check-In Requests"])
app.include_router(admin_clock_request_router, prefix="/admin/clock-requests", tags=["Admin", "Clock Requests"])
app.include_router(admin_stale_shift_router, prefix="/admin/stale-shifts", tags=["Admin", "Stale Shifts"])
app.include_router(admin_maintenance_router, prefix="/admin/maintenance", tags=["Admin", "Maintenance"])
app.include_router(location_router, prefix="/locations", tags=["Locations", "Geofence"])


# Connectivity check used by the offline queue before replaying events
@app.get("/health")
def health():
    return {"status": "ok"}
