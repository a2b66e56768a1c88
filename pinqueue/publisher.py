# pinqueue/publisher.py
"""
Публикация одной задачи в Pinterest.

Publisher не пишет в очередь: он возвращает PublishResult, а сохранять
итог (mark_succeeded / mark_failed) должен вызывающий - воркер или ручной повтор.
Внутри одной публикации повторов нет.
"""
import logging
from typing import Callable, Dict, Optional

import requests

from pinqueue.config import Settings
from pinqueue.errors import NotConfigured, PublishErrorKind, PublishResult, UnmappedBoard
from pinqueue.models import QueueItem
from pinqueue.pinterest import PinterestAPIError, PinterestClient, get_pinterest_client
from pinqueue.resolver import Resolver

logger = logging.getLogger(__name__)

PIN_URL = "https://www.pinterest.com/pin/{pin_id}/"

ClientFactory = Callable[..., PinterestClient]


def pick_image(job: QueueItem) -> Optional[str]:
    return job.asset_9x16_path or job.asset_4x5_path or job.image_path or None


def default_destination_url(site_url: str, recipe_id: Optional[str]) -> Optional[str]:
    if not recipe_id:
        return None
    return f"{site_url.rstrip('/')}/r/{recipe_id}"


def build_pin_payload(job: QueueItem, board_id: str, site_url: str) -> Dict:
    """
    Собрать аргументы create_pin из задачи
    """
    image = pick_image(job)
    if not image:
        raise ValueError(f"Queue item {job.id} has no image")

    return {
        "board_id": board_id,
        "media_source": {"source_type": "image_url", "url": image},
        "title": job.pin_title or job.recipe_title or "",
        "description": job.pin_description or "",
        "link": job.destination_url or default_destination_url(site_url, job.recipe_id) or "",
    }


class Publisher:

    def __init__(
        self,
        resolver: Resolver,
        settings: Settings,
        client_factory: ClientFactory = get_pinterest_client
    ):
        self.resolver = resolver
        self.settings = settings
        self.client_factory = client_factory

    def publish(self, job: QueueItem) -> PublishResult:
        try:
            access_token = self.resolver.get_access_token()
        except NotConfigured as e:
            return PublishResult.failure(PublishErrorKind.NOT_CONFIGURED, e.message, e.code)

        try:
            board_id = self.resolver.resolve_board(job.board_slug)
        except UnmappedBoard as e:
            return PublishResult.failure(PublishErrorKind.UNMAPPED_BOARD, e.message, e.code)

        try:
            payload = build_pin_payload(job, board_id, self.settings.public_site_url)
        except ValueError as e:
            return PublishResult.failure(PublishErrorKind.INVALID_PAYLOAD, str(e), "NO_IMAGE")

        client = self.client_factory(
            access_token,
            base_url=self.settings.pinterest_api_base,
            timeout=self.settings.http_timeout_seconds,
        )

        try:
            pin = client.create_pin(**payload)
        except PinterestAPIError as e:
            return PublishResult.failure(
                PublishErrorKind.PROVIDER_ERROR, e.message, e.code or str(e.status_code)
            )
        except requests.Timeout:
            return PublishResult.failure(PublishErrorKind.PROVIDER_ERROR, "Pinterest request timed out", "TIMEOUT")
        except requests.RequestException as e:
            return PublishResult.failure(PublishErrorKind.PROVIDER_ERROR, str(e), "NETWORK_ERROR")

        pin_id = pin.get("id")
        if not pin_id:
            return PublishResult.failure(PublishErrorKind.PROVIDER_ERROR, "Pinterest response has no pin id", "NO_PIN_ID")

        return PublishResult.success(str(pin_id), PIN_URL.format(pin_id=pin_id))
