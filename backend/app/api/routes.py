from fastapi import APIRouter
from .v1 import ai, runs, workflows

api_router = APIRouter(prefix="/v1")

api_router.include_router(workflows.router, tags=["workflows"])
api_router.include_router(runs.router, tags=["runs"])
api_router.include_router(ai.router, tags=["ai"])

@api_router.get("/")
def read_root():
    return {"message": "Workflow engine is running"}
