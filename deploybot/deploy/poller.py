"""Poll a freshly deployed worker until its panel exposes credentials."""

from __future__ import annotations

import time
from typing import Callable, Optional, Sequence

import httpx

from deploybot.core.logger import get_logger
from deploybot.deploy.scraper import ScrapedSecrets, scrape_secrets


logger = get_logger("deploybot.deploy.poller")

DEFAULT_CANDIDATE_PATHS = ("/", "/panel")


class ReadinessPoller:
    """Bounded retry loop over the worker's root and panel pages."""

    def __init__(
        self,
        *,
        cycles: int = 10,
        interval_seconds: float = 20.0,
        request_timeout_seconds: float = 15.0,
        candidate_paths: Sequence[str] = DEFAULT_CANDIDATE_PATHS,
        sleep: Callable[[float], None] = time.sleep,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if cycles <= 0:
            raise ValueError("cycles must be positive")
        self.cycles = cycles
        self.interval_seconds = interval_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self.candidate_paths = tuple(candidate_paths)
        self._sleep = sleep
        self._transport = transport

    def candidate_urls(self, base_url: str) -> list[str]:
        base = base_url.rstrip("/")
        return [f"{base}{path}" if path != "/" else f"{base}/" for path in self.candidate_paths]

    def _fetch(self, client: httpx.Client, url: str) -> Optional[str]:
        try:
            response = client.get(url)
        except httpx.HTTPError as exc:
            logger.info("readiness_probe_transport_failed", url=url, error=str(exc))
            return None
        if response.status_code >= 400:
            logger.info("readiness_probe_not_ready", url=url, status_code=response.status_code)
            return None
        return response.text

    def poll(self, base_url: str) -> Optional[ScrapedSecrets]:
        """Return the first full credential pair, or None once every cycle is spent."""

        urls = self.candidate_urls(base_url)
        with httpx.Client(
            timeout=self.request_timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            for cycle in range(1, self.cycles + 1):
                for url in urls:
                    body = self._fetch(client, url)
                    if body is None:
                        continue
                    secrets = scrape_secrets(body)
                    if secrets is not None:
                        logger.info("readiness_secrets_found", url=url, cycle=cycle)
                        return secrets
                if cycle < self.cycles:
                    self._sleep(self.interval_seconds)

        logger.warning("readiness_secrets_not_found", base_url=base_url, cycles=self.cycles)
        return None
