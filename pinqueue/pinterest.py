# pinqueue/pinterest.py
import logging
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.pinterest.com/v5"
DEFAULT_TIMEOUT = 20.0


class PinterestAPIError(Exception):
    """
    Pinterest вернул не-2xx ответ
    """

    def __init__(self, status_code: int, message: str, code: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.code = code
        super().__init__(f"Pinterest API error {status_code}: {message}")

    @classmethod
    def from_response(cls, response: requests.Response) -> "PinterestAPIError":
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or response.text or response.reason or "Unknown error"
        code = body.get("code")
        return cls(response.status_code, message, str(code) if code is not None else None)


class PinterestClient:
    """
    Клиент для работы с Pinterest API v5
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = DEFAULT_TIMEOUT
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json"
        }

    def _check(self, response: requests.Response) -> Dict:
        if not 200 <= response.status_code < 300:
            error = PinterestAPIError.from_response(response)
            logger.warning(f"❌ Pinterest responded {error.status_code}: {error.message}")
            raise error
        return response.json() if response.content else {}

    # ==================== Boards ====================

    def get_boards(self) -> List[Dict]:
        """
        Получить список досок аккаунта (для заполнения маппинга)
        """
        url = f"{self.base_url}/boards"
        response = requests.get(url, headers=self.headers, timeout=self.timeout)
        data = self._check(response)
        return data.get("items", [])

    # ==================== Pins ====================

    def create_pin(
        self,
        board_id: str,
        media_source: Dict,
        title: str,
        description: str = "",
        link: str = "",
        alt_text: str = ""
    ) -> Dict:
        """
        Создание нового пина

        Args:
            board_id: ID доски Pinterest
            media_source: Источник медиа ({"source_type": "image_url", "url": ...})
            title: Заголовок пина
            description: Описание пина
            link: Ссылка для пина
            alt_text: Альтернативный текст для изображения

        Returns:
            Данные созданного пина

        Raises:
            PinterestAPIError: ответ не 2xx
            requests.RequestException: сеть или таймаут
        """
        url = f"{self.base_url}/pins"

        payload = {
            "board_id": board_id,
            "title": title,
            "media_source": media_source
        }

        if description:
            payload["description"] = description

        if link:
            payload["link"] = link

        if alt_text:
            payload["alt_text"] = alt_text

        logger.info(f"📌 Creating pin on board {board_id}: {title}")
        response = requests.post(url, json=payload, headers=self.headers, timeout=self.timeout)
        result = self._check(response)
        logger.info(f"✅ Pin created successfully: {result.get('id')}")
        return result


def get_pinterest_client(
    access_token: str,
    base_url: str = DEFAULT_API_BASE,
    timeout: float = DEFAULT_TIMEOUT
) -> PinterestClient:
    """
    Создать экземпляр Pinterest клиента
    """
    return PinterestClient(access_token, base_url=base_url, timeout=timeout)
