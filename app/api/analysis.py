"""API endpoints for complaint analysis."""

from fastapi import APIRouter, Depends, HTTPException

from app.api.complaints import require_complaint_access
from app.core.auth import AuthContext, require_auth
from app.core.llm import LLMError
from app.core.logging import get_logger
from app.core.rate_limiter import rate_limit
from app.core.schemas_analysis import AnalyzeRequest, AnalyzeResponse
from app.db.documents import get_document
from app.graphs.analyze_complaint_graph import CaseNotFoundError, run_complaint_analysis

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    dependencies=[Depends(rate_limit("analysis.analyze"))],
)
async def analyze(
    request: AnalyzeRequest,
    auth: AuthContext = Depends(require_auth),
) -> AnalyzeResponse:
    """
    Analyse the complaint a document belongs to.

    Searches guidance and precedents, builds a budgeted context, runs the
    analysis model and stores the result on the complaint.

    Raises:
        HTTPException 404: If document or complaint not found
        HTTPException 502: If the model provider fails
        HTTPException 500: If analysis fails
    """
    try:
        document = get_document(request.document_id)
        if not document:
            raise HTTPException(status_code=404, detail="Document not found")
        require_complaint_access(document["complaint_id"], auth)

        result = await run_complaint_analysis(request.document_id, request.additional_context)
        return AnalyzeResponse(**result)

    except HTTPException:
        raise
    except CaseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LLMError:
        logger.exception(f"Model provider failed analysing document {request.document_id}")
        raise HTTPException(status_code=502, detail="Analysis model unavailable")
    except Exception:
        logger.exception(f"Failed to analyse document {request.document_id}")
        raise HTTPException(status_code=500, detail="Failed to analyse complaint")
