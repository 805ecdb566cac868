"""Phonemization endpoint used for pronunciation feedback."""

from fastapi import APIRouter

from speaking_feedback.controllers.dependencies import ProviderClientDep
from speaking_feedback.views import PhonemizeRequest, PhonemizeResponse

router = APIRouter(prefix="/phonemize", tags=["phonemize"])


@router.post("/", response_model=PhonemizeResponse)
async def phonemize(request: PhonemizeRequest, client: ProviderClientDep) -> PhonemizeResponse:
    result = await client.phonemize(request.text, request.language)
    return PhonemizeResponse(**result)
