import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from lesson_scheduler.core import config
from lesson_scheduler.database import Base, engine, ensure_scheduling_schema
from lesson_scheduler.models import availability, booking, reservation, teacher_calendar  # noqa: F401
from lesson_scheduler.routes import availability_routes, booking_routes, reservation_routes
from lesson_scheduler.routes.common import expiry_scheduler

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('shutdown')
def stop_expiry_timers() -> None:
    expiry_scheduler.shutdown()


@app.get('/')
def root():
    return {'status': 'Lesson Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(reservation_routes.router, prefix='/reservations')
app.include_router(booking_routes.router, prefix='/bookings')
