"""
Approval notifications.
Posts newly created approval requests to a reviewer webhook.

Version: 1.0.0
"""
import asyncio
import logging
from typing import Optional

import aiohttp

from .models import ApprovalRequest

logger = logging.getLogger(__name__)


class ApprovalNotifier:
    """
    Fire-and-report webhook notifier.

    ``notify`` never raises: a failed notification is logged and the
    approval request stays valid.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def notify(self, request: ApprovalRequest, webhook_url: Optional[str]) -> bool:
        """
        Send the approval request to ``webhook_url``.

        Returns:
            True if the webhook acknowledged with a 2xx status
        """
        if not webhook_url:
            return False

        payload = {
            "event": "approval.created",
            "approval": request.model_dump(mode="json")
        }

        try:
            session = await self._get_session()
            async with session.post(
                webhook_url,
                json=payload,
                headers={"X-Tenant-Id": request.tenant_id},
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if 200 <= response.status < 300:
                    logger.info(
                        f"✓ Approval {request.id} notification delivered",
                        extra={"session_id": request.session_id, "tenant_id": request.tenant_id}
                    )
                    return True

                logger.warning(
                    f"Approval notification rejected with HTTP {response.status}",
                    extra={"approval_id": request.id, "tenant_id": request.tenant_id}
                )
                return False

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(
                f"Approval notification failed: {e}",
                extra={"approval_id": request.id, "tenant_id": request.tenant_id}
            )
            return False

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


__all__ = ['ApprovalNotifier']
