from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from studyplan.api.routes import router
from studyplan.core.config import settings
from studyplan.core.errors import StudyPlanError
from studyplan.core.logging import get_logger
from studyplan.db.session import init_db, make_engine, make_sessionmaker
from studyplan.db.stores import SqlCatalogStore, SqlPlanStore
from studyplan.llm.client import LLMClient
from studyplan.pipeline.planner import PlanOrchestrator

log = get_logger("main")


def build_orchestrator(sessions: async_sessionmaker, llm: LLMClient) -> PlanOrchestrator:
    return PlanOrchestrator(
        SqlCatalogStore(sessions),
        SqlPlanStore(sessions),
        llm,
        deadline_seconds=settings.CREATE_DEADLINE_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = make_engine()
    await init_db(engine)
    llm = LLMClient()
    app.state.orchestrator = build_orchestrator(make_sessionmaker(engine), llm)
    log.info(f"study plan API ready (model={settings.OPENAI_MODEL})")
    yield
    await llm.aclose()
    await engine.dispose()


app = FastAPI(title="Study Plan API", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/api")


@app.exception_handler(StudyPlanError)
async def on_plan_error(request: Request, exc: StudyPlanError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def on_bad_request(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(x) for x in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": "validation_error", "message": details})
