"""Unit of work for one (region, year, season) window.

Wraps core.orchestrator.run_window with retry and exception capture so a
failing window becomes a row instead of aborting the batch. Only a
ConfigurationError leaves the task.

Depends on: core.orchestrator.
"""

import logging
import threading
from typing import Optional

from ..core.config import RunConfig
from ..core.engine import RasterEngine
from ..core.export import ExportSink
from ..core.orchestrator import Stage, null_row, run_window, window_prefix
from ..domain.errors import (
    ConfigurationError,
    DegenerateSampleError,
    NoDataError,
    ServiceError,
)
from ..domain.models import CompositeSource, MetricsRow, RunKey

logger = logging.getLogger(__name__)


class WindowTask:
    """Runs one window and always leaves a row behind, unless cancelled.

    Usage:
        task = WindowTask(key, config, engine, sink)
        task.run()
        task.row        # MetricsRow, metrics null when status != "ok"
        task.exception  # the error behind a null row, if any
    """

    def __init__(
        self,
        key: RunKey,
        config: RunConfig,
        engine: RasterEngine,
        sink: Optional[ExportSink] = None,
    ):
        self.key = key
        self.config = config
        self.engine = engine
        self.sink = sink
        self.description = window_prefix(key)

        # Results (populated in run())
        self.row: Optional[MetricsRow] = None
        self.exception: Optional[Exception] = None
        self.stage: Stage = Stage.WINDOW_SELECTED
        self.attempts = 0
        self._composite_source = CompositeSource.NONE.value
        self._n_images = 0
        self._cancelled = threading.Event()

    def _on_stage(self, stage: Stage, **info):
        self.stage = stage
        self._composite_source = info.get("composite_source", self._composite_source)
        self._n_images = info.get("n_images", self._n_images)

    def is_canceled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        if not self._cancelled.is_set():
            logger.info("%s: window task cancelled", self.description)
        self._cancelled.set()

    def run(self) -> bool:
        """Execute the window. True when a metrics row was produced.

        Raises:
            ConfigurationError: Never retried, never turned into a row.
        """
        retries = self.config.service_retries
        for attempt in range(retries + 1):
            if self.is_canceled():
                return False
            self.attempts = attempt + 1
            self.stage = Stage.WINDOW_SELECTED
            self._composite_source = CompositeSource.NONE.value
            self._n_images = 0
            try:
                self.row = run_window(
                    self.key, self.config, self.engine, self.sink,
                    stage_callback=self._on_stage,
                )
                self.exception = None
                return True

            except ConfigurationError as e:
                self.exception = e
                logger.error("%s: configuration error: %s", self.description, e)
                raise

            except NoDataError as e:
                logger.warning("%s: no data at %s: %s", self.description, self.stage.value, e)
                return self._fail("no_data", e)

            except DegenerateSampleError as e:
                logger.warning("%s: degenerate sample: %s", self.description, e)
                return self._fail("degenerate", e)

            except ServiceError as e:
                if attempt < retries:
                    delay = self.config.retry_delay_s * 2 ** attempt
                    logger.warning(
                        "%s: service error (attempt %d/%d), retrying in %.1fs: %s",
                        self.description, attempt + 1, retries + 1, delay, e,
                    )
                    if self._cancelled.wait(delay):
                        return False
                    continue
                logger.error(
                    "%s: service error after %d attempts: %s",
                    self.description, attempt + 1, e,
                )
                return self._fail("service_error", e)

            except Exception as e:
                logger.exception("%s: failed at %s", self.description, self.stage.value)
                return self._fail("error", e)

        return False

    def _fail(self, status: str, exc: Exception) -> bool:
        self.exception = exc
        self.row = null_row(
            self.key, self.config, status, self.stage, str(exc),
            composite_source=self._composite_source,
            n_images=self._n_images,
        )
        return False
