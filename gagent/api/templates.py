"""Template catalog API."""

from fastapi import APIRouter, Depends

from gagent.api.deps import get_catalog
from gagent.api.models import TemplateResponse
from gagent.game.templates import TemplateCatalog

router = APIRouter(prefix="/templates")


@router.get("", response_model=list[TemplateResponse])
async def list_templates(catalog: TemplateCatalog = Depends(get_catalog)) -> list[TemplateResponse]:
    """Templates available to the generation stage, in selection order."""
    return [TemplateResponse(**t.to_dict()) for t in catalog.templates()]
