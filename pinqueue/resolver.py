# pinqueue/resolver.py
import logging
from typing import Callable, Dict, Optional

import requests

from pinqueue.config import Settings
from pinqueue.database import BoardStore, Clock, CredentialStore, utcnow
from pinqueue.errors import NotConfigured, UnmappedBoard
from pinqueue.oauth import credential_from_token, refresh_access_token
from pinqueue.pinterest import PinterestAPIError

logger = logging.getLogger(__name__)

TokenRefresher = Callable[[Settings, str], Dict]


class Resolver:
    """
    Поиск токена Pinterest и доски для задачи.
    Маппинг доски читается в момент публикации, а не постановки в очередь.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        boards: BoardStore,
        settings: Settings,
        refresher: TokenRefresher = refresh_access_token,
        clock: Clock = utcnow
    ):
        self.credentials = credentials
        self.boards = boards
        self.settings = settings
        self.refresher = refresher
        self.clock = clock

    def get_access_token(self, account_label: Optional[str] = None) -> str:
        """
        Вернуть пригодный access token

        Raises:
            NotConfigured: нет строки, пустой токен или истёк без возможности обновления
        """
        label = account_label or self.settings.pinterest_account_label
        credential = self.credentials.get_credential(label)

        if credential is None or not credential.access_token:
            raise NotConfigured(f"No Pinterest token stored for account '{label}'")

        if not credential.is_expired(self.clock()):
            return credential.access_token

        if not credential.refresh_token:
            raise NotConfigured(f"Pinterest token for '{label}' expired and no refresh token is stored")

        try:
            token_data = self.refresher(self.settings, credential.refresh_token)
        except (PinterestAPIError, requests.RequestException) as e:
            logger.error(f"❌ Token refresh failed for '{label}': {e}")
            raise NotConfigured(f"Pinterest token for '{label}' expired and refresh failed: {e}")

        refreshed = credential_from_token(token_data, label, previous=credential, now=self.clock())
        if not refreshed.access_token:
            raise NotConfigured(f"Pinterest refresh for '{label}' returned no access token")

        self.credentials.save_credential(refreshed)
        logger.info(f"🔑 Refreshed Pinterest token for '{label}'")
        return refreshed.access_token

    def resolve_board(self, board_slug: Optional[str]) -> str:
        """
        slug -> pinterest_board_id. Неактивный маппинг считается отсутствующим.
        """
        if not board_slug:
            raise UnmappedBoard(board_slug)

        board = self.boards.get_by_slug(board_slug)
        if board is None or not board.is_active or not board.pinterest_board_id:
            raise UnmappedBoard(board_slug)
        return board.pinterest_board_id
