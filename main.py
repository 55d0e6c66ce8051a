import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS, LOG_LEVEL
from db import create_db_and_tables
from errors import register_exception_handlers
from responses import api_response
from routers import admin, appointments, auth, hospitals, ngos, requests, resources, users

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="LifeShare")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()


@app.get("/health")
def health():
    return api_response({"status": "ok"}, "Service is healthy")


app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(hospitals.router, prefix="/hospitals")
app.include_router(ngos.router, prefix="/ngos")
app.include_router(admin.router, prefix="/admin")
app.include_router(resources.router, prefix="/resources")
app.include_router(requests.router, prefix="/requests")
app.include_router(appointments.router, prefix="/appointments")
