"""Text-to-speech controller backed by OpenAI-compatible speech APIs or Amazon Polly."""

from fastapi import APIRouter
from fastapi.responses import Response

from speaking_feedback.config.settings import settings
from speaking_feedback.controllers.dependencies import ProviderClientDep
from speaking_feedback.services.providers import POLLY_PROVIDERS, normalise_provider
from speaking_feedback.views import TextToSpeechRequest

router = APIRouter(prefix="/tts", tags=["tts"])

MEDIA_TYPES = {
    "mp3": "audio/mpeg",
    "opus": "audio/ogg",
    "ogg": "audio/ogg",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "wav": "audio/wav",
    "pcm": "audio/pcm",
}


@router.post("/", response_class=Response)
async def text_to_speech(request: TextToSpeechRequest, client: ProviderClientDep) -> Response:
    """Synthesize ``request.text`` and return the audio bytes."""

    provider = normalise_provider(request.provider)
    voice = request.voice or (
        settings.polly.default_voice_id if provider in POLLY_PROVIDERS else "alloy"
    )
    audio_bytes = await client.text_to_speech(
        request.text,
        provider=provider,
        model=request.model,
        voice=voice,
        response_format=request.response_format,
        speed=request.speed,
    )
    return Response(
        content=audio_bytes,
        media_type=MEDIA_TYPES.get(request.response_format, "application/octet-stream"),
    )
