from fastapi import APIRouter, Depends

from finscan.core.auth import CurrentUser, require_organization
from finscan.core.config import get_settings
from finscan.core.dependencies import get_query_executor
from finscan.schemas.documents import SearchRequest, SearchResponse
from finscan.services.ai.document_search.service import search_documents
from finscan.services.query_executor import QueryExecutor
from finscan.utils.rate_limit import enforce_rate_limit

router = APIRouter()


@router.post("/assistant/search", response_model=SearchResponse)
async def assistant_search(
    payload: SearchRequest,
    current_user: CurrentUser = Depends(require_organization),
    executor: QueryExecutor = Depends(get_query_executor),
):
    settings = get_settings()
    enforce_rate_limit("search", current_user.organization_id, settings.rate_limit_search_per_min)

    # Organization scope comes from the session only, never from the request body.
    return await search_documents(
        payload.query,
        current_user.organization_id,
        executor=executor,
    )
