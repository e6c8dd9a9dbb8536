"""
Discovery coordinator: batched, cancellable probing of backend candidates
"""

import asyncio
import itertools
import logging
import time
from typing import Dict, Iterator, List, Optional, Tuple

from event_hub import DiscoveryComplete, DiscoveryFailed, EventHub
from link_context import LinkContext
from link_errors import NoBackendFound, VerificationFailed
from .models import DiscoveryResult, Endpoint
from .resolver import PHASE_FULL_SCAN, CandidateResolver
from .verifier import ServiceVerifier

logger = logging.getLogger(__name__)

Candidate = Tuple[str, Endpoint]


class BackendDiscovery:
    """Locates the controller backend and caches the verified result in the link context"""

    def __init__(self, config: Dict, context: LinkContext, resolver: CandidateResolver,
                 verifier: ServiceVerifier, hub: EventHub):
        self.context = context
        self.resolver = resolver
        self.verifier = verifier
        self.hub = hub
        self.max_concurrent = max(1, config.get('max_concurrent', 20))

    # ================== PUBLIC API ==================

    async def discover(self) -> DiscoveryResult:
        """Return the cached backend, or run the full resolution path"""
        if self.context.cached_result is not None:
            logger.debug(f"Using cached backend {self.context.cached_result.endpoint}")
            return self.context.cached_result

        logger.info("[DISCOVERY] Starting backend discovery...")
        start_time = time.time()
        candidates_tried = 0

        for phase, batch in self._batches():
            candidates_tried += len(batch)
            logger.debug(f"[DISCOVERY] Probing {len(batch)} {phase} candidates")
            result = await self._probe_batch(batch)
            if result is not None:
                duration = time.time() - start_time
                logger.info(
                    f"[DISCOVERY] Verified {result.service_name} {result.service_version} "
                    f"at {result.endpoint} via {result.method} "
                    f"({candidates_tried} candidates, {duration:.1f}s)"
                )
                self.context.remember(result)
                self.hub.publish(DiscoveryComplete(
                    endpoint=result.endpoint,
                    method=result.method,
                    candidates_tried=candidates_tried
                ))
                return result

        duration = time.time() - start_time
        logger.warning(f"[DISCOVERY] No backend found after {candidates_tried} candidates ({duration:.1f}s)")
        self.hub.publish(DiscoveryFailed(candidates_tried=candidates_tried))
        raise NoBackendFound(candidates_tried)

    def reset(self) -> None:
        """Clear the cached result so the next discover() probes again"""
        if self.context.cached_result is not None:
            logger.info(f"[DISCOVERY] Resetting cached backend {self.context.cached_result.endpoint}")
        self.context.reset()

    def forget(self) -> None:
        """Clear the cached result and the last-known backend"""
        logger.info("[DISCOVERY] Forgetting cached and last-known backend")
        self.context.forget()

    def known_endpoint(self) -> Optional[Endpoint]:
        """Cached, last-known or configured backend, without probing"""
        cached = self.context.cached_result
        if cached is not None:
            return cached.endpoint
        if self.context.last_known is not None:
            return self.context.last_known
        if self.resolver.has_override:
            return self.resolver.override()
        return None

    async def test_connection(self) -> bool:
        """Re-verify the cached, last-known or configured backend without scanning"""
        endpoint = self.known_endpoint()
        if endpoint is None:
            return False
        try:
            await self.verifier.verify(endpoint, method="health_check")
            return True
        except VerificationFailed as e:
            logger.debug(f"Health check failed for {endpoint}: {e.reason}")
            return False

    # ================== BATCHING ==================

    def _batches(self) -> Iterator[Tuple[str, List[Candidate]]]:
        """Consecutive candidates of one phase, at most max_concurrent per batch"""
        for phase, group in itertools.groupby(self.resolver.candidates(), key=lambda c: c[0]):
            if phase == PHASE_FULL_SCAN:
                logger.info(f"[DISCOVERY] Quick scan found nothing, full scan of up to "
                            f"{self.resolver.full_scan_size()} addresses")
            while True:
                batch = list(itertools.islice(group, self.max_concurrent))
                if not batch:
                    break
                yield phase, batch

    async def _probe_batch(self, batch: List[Candidate]) -> Optional[DiscoveryResult]:
        """Probe a batch concurrently; the lowest-index success wins.

        Once a probe succeeds, every probe after it is cancelled immediately.
        Probes before it are still awaited because they would outrank it.
        """
        tasks = [
            asyncio.create_task(self.verifier.verify(endpoint, method=phase))
            for phase, endpoint in batch
        ]
        index_of = {task: i for i, task in enumerate(tasks)}
        winner_index: Optional[int] = None
        winner: Optional[DiscoveryResult] = None
        pending = set(tasks)

        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.cancelled():
                        continue
                    index = index_of[task]
                    error = task.exception()
                    if error is None:
                        if winner_index is None or index < winner_index:
                            winner_index, winner = index, task.result()
                    elif isinstance(error, VerificationFailed):
                        logger.debug(f"Candidate {batch[index][1]} rejected: {error.reason}")
                    else:
                        logger.warning(f"Probe of {batch[index][1]} failed unexpectedly: {error!r}")

                if winner_index is not None:
                    losers = {task for task in pending if index_of[task] > winner_index}
                    for task in losers:
                        task.cancel()
                    pending -= losers
            return winner
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
