from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from studyplan.api.auth import get_current_user_id
from studyplan.api.types import PlanRequestBody, ProgressBody, StudyPlanResponse, SubjectBody, SubjectResponse
from studyplan.core.entities import StudyPlan
from studyplan.pipeline.planner import PlanOrchestrator


"""
FastAPI routes for study plans and the subject catalog.
What it provides:
- Create / get / list / delete study plans
- Progress updates on a plan
- Create / list subjects

And, the main purpose:
Expose the plan pipeline over HTTP. Pipeline errors are turned into
responses by the handler registered in studyplan.main.
"""

router = APIRouter()


def get_orchestrator(request: Request) -> PlanOrchestrator:
    return request.app.state.orchestrator


UserId = Annotated[str, Depends(get_current_user_id)]
Planner = Annotated[PlanOrchestrator, Depends(get_orchestrator)]


async def _respond(planner: PlanOrchestrator, plan: StudyPlan) -> StudyPlanResponse:
    subjects, topics = await planner.resolve(plan)
    return StudyPlanResponse.from_plan(plan, subjects, topics)


@router.post("/study-plans", response_model=StudyPlanResponse)
async def api_create_plan(body: PlanRequestBody, user_id: UserId, planner: Planner):
    plan = await planner.create(body.to_request(), user_id)
    return await _respond(planner, plan)


@router.get("/study-plans", response_model=list[StudyPlanResponse])
async def api_list_plans(user_id: UserId, planner: Planner):
    plans = await planner.list_mine(user_id)
    resolved = await planner.resolve_many(plans)
    return [StudyPlanResponse.from_plan(p, subjects, topics) for p, (subjects, topics) in zip(plans, resolved)]


@router.get("/study-plans/{plan_id}", response_model=StudyPlanResponse)
async def api_get_plan(plan_id: str, user_id: UserId, planner: Planner):
    plan = await planner.get(plan_id, user_id)
    return await _respond(planner, plan)


@router.patch("/study-plans/{plan_id}/progress", response_model=StudyPlanResponse)
async def api_update_progress(plan_id: str, body: ProgressBody, user_id: UserId, planner: Planner):
    plan = await planner.update_progress(plan_id, user_id, body.completed_hours)
    return await _respond(planner, plan)


@router.delete("/study-plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def api_delete_plan(plan_id: str, user_id: UserId, planner: Planner):
    await planner.delete(plan_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/subjects", response_model=SubjectResponse, status_code=status.HTTP_201_CREATED)
async def api_create_subject(body: SubjectBody, user_id: UserId, planner: Planner):
    saved = await planner.add_subject(user_id, body.name, body.color, body.priority)
    return SubjectResponse.from_subject(saved)


@router.get("/subjects", response_model=list[SubjectResponse])
async def api_list_subjects(user_id: UserId, planner: Planner):
    return [SubjectResponse.from_subject(s) for s in await planner.list_subjects(user_id)]
