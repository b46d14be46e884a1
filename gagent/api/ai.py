"""Direct access to the configured text generator."""

import logging

from fastapi import APIRouter, Depends

from gagent.api.deps import get_generator
from gagent.api.models import GenerateRequest, GenerateResponse, GeneratorStatusResponse
from gagent.llm.text_generator import TextGenerator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai")


@router.get("/status", response_model=GeneratorStatusResponse)
async def generator_status(generator: TextGenerator = Depends(get_generator)) -> GeneratorStatusResponse:
    return GeneratorStatusResponse(generator=generator.name, available=generator.is_available())


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    body: GenerateRequest,
    generator: TextGenerator = Depends(get_generator),
) -> GenerateResponse:
    """Generate text for a prompt.

    Generator failures surface through the AgentError handler
    (503 when no generator is configured, 502 when the call failed).
    """
    text = await generator.generate_text(body.prompt)
    return GenerateResponse(text=text, generator=generator.name)
