"""Receipt analysis route.

``POST /analyze-receipt`` accepts a multipart ``file`` (JPG, PNG or PDF,
up to 10 MB) and answers ``{"success": true, "data": {...}}`` with the
reconciled fields. Nothing is stored; use ``POST /expenses/from-receipt``
to analyse, store and create the expense in one call.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, UploadFile
from fastapi import File as FormFile

from expense_desk.api.dependencies import read_validated_upload
from expense_desk.core.security import get_current_profile
from expense_desk.models.schemas import AnalysisResponse
from expense_desk.models.tables import Profile
from expense_desk.services.extraction_service import ExtractionService, get_extraction_service
from expense_desk.services.rate_limiter import rate_limit

router = APIRouter(tags=["analysis"])


@router.post(
    "/analyze-receipt",
    response_model=AnalysisResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("/analyze-receipt"))],
)
async def analyze_receipt(
    file: UploadFile | None = FormFile(default=None),
    profile: Profile = Depends(get_current_profile),
    extraction: ExtractionService = Depends(get_extraction_service),
) -> AnalysisResponse:
    upload = await read_validated_upload(file)
    analysis = await extraction.analyze(upload.data, upload.filename, upload.content_type)
    return AnalysisResponse(success=True, data=analysis)
