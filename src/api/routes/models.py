"""FastAPI routes for model suggestions."""

from fastapi import APIRouter, Depends

from src.api.dependencies import get_model_cache
from src.api.schemas import ModelSuggestionsResponse
from src.services.model_suggestions import ModelSuggestionCache

router = APIRouter(prefix="/models", tags=["models"])


@router.get("/suggestions", response_model=ModelSuggestionsResponse)
async def model_suggestions(
    cache: ModelSuggestionCache = Depends(get_model_cache),
) -> ModelSuggestionsResponse:
    """Aliases first, then inferred aliases, then full model IDs."""
    return ModelSuggestionsResponse(models=await cache.get_suggestions())
