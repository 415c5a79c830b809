from __future__ import annotations

import logging

from chatdesk_core.db.api_keys import ApiKeyInfo

logger = logging.getLogger(__name__)


class AIClient:
    """Connection settings for the hosted LLM.

    The request/response call itself lives outside this package; this only
    tracks which service, model and key the next call should use.
    """

    def __init__(self, *, default_service: str, default_model: str) -> None:
        self.default_service = default_service
        self.default_model = default_model
        self.service: str | None = None
        self.model: str | None = None
        self.api_key_id: int | None = None
        self._api_key: str | None = None

    def initialize(
        self,
        api_key: str,
        *,
        model: str | None = None,
        service: str | None = None,
        api_key_id: int | None = None,
    ) -> bool:
        if not api_key.strip():
            logger.warning("Refusing to initialize AI client with an empty API key")
            return False

        self._api_key = api_key
        self.service = service or self.default_service
        self.model = model or self.default_model
        self.api_key_id = api_key_id
        logger.info("AI client initialized: service=%s model=%s", self.service, self.model)
        return True

    def initialize_from_key(self, info: ApiKeyInfo) -> bool:
        return self.initialize(
            info.api_key,
            model=info.ai_model,
            service=info.service_name,
            api_key_id=info.id,
        )

    def is_initialized(self) -> bool:
        return self._api_key is not None

    @property
    def api_key(self) -> str | None:
        return self._api_key

    def reset(self) -> None:
        self._api_key = None
        self.service = None
        self.model = None
        self.api_key_id = None
