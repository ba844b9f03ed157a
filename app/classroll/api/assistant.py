import logging
from fastapi import APIRouter, Depends, Request

from ..models.redis_models import VerifiedPrincipal
from ..modules.assistant import AssistantClient
from ..services.errors import ServiceError
from .schemas.assistant import AskRequest, AskResponse
from .auth import get_current_teacher
from .dependencies import get_assistant_client
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistant", tags=["Assistant"])


@router.post("/ask", response_model=AskResponse, summary="Ask the college assistant a question")
@limiter.limit("10/minute")
async def ask(request: Request, ask_request: AskRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), assistant: AssistantClient = Depends(get_assistant_client)):
    try:
        answer = await assistant.generate(ask_request.prompt)
    except ServiceError as e:
        raise to_http_exception(e)
    logger.info(f"Assistant answered a {len(ask_request.prompt)}-character prompt for '{teacher.uid}'.")
    return AskResponse(answer=answer)
