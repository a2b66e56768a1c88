# pinqueue/recipes.py
from datetime import datetime
from typing import Optional

from pinqueue.database import BoardStore, QueueStore, utcnow
from pinqueue.models import EnqueueRecipeRequest, JobStatus, QueueItem
from pinqueue.publisher import default_destination_url

DEFAULT_BOARD_SLUG = "general"
DEFAULT_DESCRIPTION = "Découvrez ce délicieux {title}. Recette complète sur NutriZen !"


def enqueue_recipe(
    store: QueueStore,
    boards: BoardStore,
    request: EnqueueRecipeRequest,
    site_url: str,
    now: Optional[datetime] = None
) -> QueueItem:
    """
    Поставить рецепт в очередь публикации.
    Доска по умолчанию берётся из активного маппинга кухни рецепта.
    """
    now = now or utcnow()

    board_slug = request.board_slug
    if not board_slug:
        board = boards.find_for_cuisine(request.cuisine_type)
        board_slug = board.board_slug if board else DEFAULT_BOARD_SLUG

    status = JobStatus.RENDERED
    scheduled_at = request.scheduled_at
    if scheduled_at is not None:
        if scheduled_at.tzinfo is None:
            scheduled_at = scheduled_at.replace(tzinfo=now.tzinfo)
        if scheduled_at > now:
            status = JobStatus.SCHEDULED

    payload = {
        "recipe_id": request.recipe_id,
        "recipe_title": request.recipe_title,
        "pin_title": request.pin_title or request.recipe_title,
        "pin_description": request.pin_description or DEFAULT_DESCRIPTION.format(title=request.recipe_title),
        "board_slug": board_slug,
        "destination_url": str(request.destination_url) if request.destination_url
        else default_destination_url(site_url, request.recipe_id),
        "image_path": request.image_url,
        "asset_9x16_path": request.asset_9x16_path or request.image_url,
        "asset_4x5_path": request.asset_4x5_path,
        "scheduled_at": scheduled_at,
        "status": status,
    }
    return store.enqueue(payload)
