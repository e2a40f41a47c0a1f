"""
FastAPI application for the task manager.

This is the main entry point that:
- Sets up the database and the predefined "done"/"due" tags
- Exposes CRUD endpoints for tasks, tags and tabs
"""

import logging
from collections.abc import Iterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from . import __version__
from .config import settings
from .errors import register_exception_handlers
from .logging_setup import setup_logging
from .models import SortKey, SortOrder, TabCreate, TabUpdate, TagCreate, TagUpdate, TaskCreate, TaskUpdate
from .tools import (
    create_tab,
    create_tag,
    create_task,
    delete_tab,
    delete_tag,
    delete_task,
    ensure_predefined_tags,
    get_tab,
    get_tag,
    get_task,
    list_tabs,
    list_tags,
    list_tasks,
    tag_usage,
    update_tab,
    update_tag,
    update_task,
)

logger = logging.getLogger(__name__)

# Database setup
engine = create_engine(
    settings.database_url,
    echo=settings.sql_echo,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
)


def init_db(db_engine) -> None:
    """Create tables and the predefined tags. Both steps are idempotent."""
    SQLModel.metadata.create_all(db_engine)
    with Session(db_engine) as session:
        ensure_predefined_tags(session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - prepare the store on startup, exit if it is unreachable."""
    try:
        init_db(app.state.engine)
    except SQLAlchemyError:
        logger.critical("Could not initialise the task store", exc_info=True)
        raise SystemExit(1)
    logger.info("Task store ready")
    yield


# Create FastAPI app
app = FastAPI(
    title="Task Manager",
    description="Tasks, tags and saved tabs with derived 'done'/'due' tags",
    version=__version__,
    lifespan=lifespan,
)
app.state.engine = engine

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)
register_exception_handlers(app)


def get_session(request: Request) -> Iterator[Session]:
    """Get a database session for one request."""
    with Session(request.app.state.engine) as session:
        yield session


SessionDep = Depends(get_session)


# API Endpoints
@app.get("/")
async def root():
    return {"message": "Task Manager API", "docs": "/docs"}


@app.get("/api/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Tasks


@app.get("/api/tasks")
def get_tasks(
    tab_id: int | None = None,
    sort_by: SortKey | None = Query(default=None),
    sort_order: SortOrder | None = Query(default=None),
    session: Session = SessionDep,
):
    """
    List tasks.

    Args:
        tab_id: Apply this tab's filter; its sort settings become the defaults.
        sort_by: "dueDate" or "createdAt".
        sort_order: "asc" or "desc".
    """
    return list_tasks(session, tab_id, sort_by, sort_order)


@app.get("/api/tasks/{task_id}")
def read_task(task_id: int, session: Session = SessionDep):
    return get_task(session, task_id)


@app.post("/api/tasks", status_code=201)
def post_task(data: TaskCreate, session: Session = SessionDep):
    return create_task(session, data)


@app.put("/api/tasks/{task_id}")
def put_task(task_id: int, data: TaskUpdate, session: Session = SessionDep):
    return update_task(session, task_id, data)


@app.delete("/api/tasks/{task_id}")
def remove_task(task_id: int, session: Session = SessionDep):
    return delete_task(session, task_id)


# Tags


@app.get("/api/tags")
def get_tags(session: Session = SessionDep):
    return list_tags(session)


@app.get("/api/tags/{tag_id}")
def read_tag(tag_id: int, session: Session = SessionDep):
    return get_tag(session, tag_id)


@app.get("/api/tags/{tag_id}/usage")
def read_tag_usage(tag_id: int, session: Session = SessionDep):
    """Number of tasks carrying the tag."""
    return tag_usage(session, tag_id)


@app.post("/api/tags", status_code=201)
def post_tag(data: TagCreate, session: Session = SessionDep):
    return create_tag(session, data)


@app.put("/api/tags/{tag_id}")
def put_tag(tag_id: int, data: TagUpdate, session: Session = SessionDep):
    """Update a tag. Predefined tags are rejected with 403."""
    return update_tag(session, tag_id, data)


@app.delete("/api/tags/{tag_id}")
def remove_tag(tag_id: int, session: Session = SessionDep):
    """Delete a tag. Predefined tags are rejected with 403."""
    return delete_tag(session, tag_id)


# Tabs


@app.get("/api/tabs")
def get_tabs(session: Session = SessionDep):
    return list_tabs(session)


@app.get("/api/tabs/{tab_id}")
def read_tab(tab_id: int, session: Session = SessionDep):
    return get_tab(session, tab_id)


@app.post("/api/tabs", status_code=201)
def post_tab(data: TabCreate, session: Session = SessionDep):
    return create_tab(session, data)


@app.put("/api/tabs/{tab_id}")
def put_tab(tab_id: int, data: TabUpdate, session: Session = SessionDep):
    return update_tab(session, tab_id, data)


@app.delete("/api/tabs/{tab_id}")
def remove_tab(tab_id: int, session: Session = SessionDep):
    return delete_tab(session, tab_id)


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    import uvicorn

    setup_logging(settings.log_level, settings.log_file)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
