from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter()


@router.get("/health", response_class=PlainTextResponse, summary="Health check")
async def health_root():
    return "LabelSpy is running"
