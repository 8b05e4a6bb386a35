"""
External resource sync coordinator

Two-phase write for resources owned locally but mirrored in MercadoPago
(subscription plans, checkout preferences): sync the external side first, then
commit locally.

- external call fails     -> UpstreamError, nothing changed on either side
- local commit fails after -> PartialFailure, the two sides diverge and an
                              operator has to reconcile them (no compensation)
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ...errors import PartialFailure, UpstreamError

logger = logging.getLogger(__name__)

ExternalResult = TypeVar("ExternalResult")
LocalResult = TypeVar("LocalResult")


class ExternalResourceSyncCoordinator:
    async def run(
        self,
        resource: str,
        sync_external: Optional[Callable[[], Awaitable[ExternalResult]]],
        commit_local: Callable[[Optional[ExternalResult]], LocalResult],
    ) -> LocalResult:
        """
        Args:
            resource: Label for logs, e.g. "plan 123"
            sync_external: Coroutine factory performing the external mutation, or None when
                the resource is not mirrored externally
            commit_local: Performs (and commits) the local mutation; receives the external result
        """
        external_result = None

        if sync_external is not None:
            try:
                external_result = await sync_external()
            except UpstreamError:
                logger.error(f"❌ External sync failed for {resource}; local state left unchanged")
                raise
            except Exception as e:
                logger.error(f"❌ External sync failed for {resource}: {e}")
                raise UpstreamError(f"External sync failed for {resource}") from e
            logger.info(f"✅ External side updated for {resource}")

        try:
            result = commit_local(external_result)
        except Exception as e:
            if sync_external is None:
                raise
            logger.critical(
                f"🚨 ALERT: {resource} was updated externally but the local commit failed: {e}. "
                f"Manual reconciliation required."
            )
            raise PartialFailure(
                f"{resource} was updated in MercadoPago but could not be saved locally",
                external_result=external_result if isinstance(external_result, dict) else None,
            ) from e

        logger.info(f"✅ Local commit completed for {resource}")
        return result
