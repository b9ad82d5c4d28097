"""
Async client for the remote energy-grid model.

The remote model keeps one instance per game. The client creates it,
pushes local capacity edits column by column and fetches the predicted
winter and summer peak rows for a turn.

Only one request is in flight at a time. Further requests queue FIFO and
start when the in-flight one completes. Every request is bounded by the
configured timeout; timeouts and transport failures raise a retryable
ModelError and free the slot for the next request.
"""

import asyncio
import logging
import random
from collections import deque
from functools import partial

import httpx

from swissgrid.grid.model import peak_weeks
from swissgrid.grid.types import ModelColumn, PlantType

logger = logging.getLogger(__name__)

# Endpoint paths; the method is selected by the mth query parameter
RES_PATH = "/res.php"
DATA_PATH = "/data.php"

# Instance names are a random word plus a running counter
NAME_WORDS = (
    "pocket", "club", "seat", "roll", "button", "north", "pump", "bucket",
    "dock", "wind", "grass", "curve", "giraffe", "plane", "channel", "week",
    "lock", "sleet", "pear", "spoon", "airport", "glass", "cherry", "soup",
    "team", "icicle", "ring", "brass", "afternoon", "cobweb", "rhythm", "town",
    "partner", "fork", "bubble", "marble",
)


class ModelError(RuntimeError):
    """Raised when a request to the remote model fails."""

    def __init__(self, message, *, status=None, retryable=True):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class ModelTimeoutError(ModelError):
    """The request did not complete within the configured timeout."""


class ModelUnavailableError(ModelError):
    """The model could not be reached or answered with an HTTP error."""


class ModelClient:
    """Single-slot request queue in front of an httpx.AsyncClient."""

    def __init__(self, base_url, *, timeout=10.0, years_per_turn=3, weeks_per_year=52,
                 transport=None, rng=None):
        self._timeout = timeout
        self._years_per_turn = years_per_turn
        self._weeks_per_year = weeks_per_year
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._rng = rng or random.Random()
        self._busy = False
        self._queue = deque()
        self._names = 0
        self.session_id = None

    @classmethod
    def from_settings(cls, settings, transport=None):
        if not settings.model_url:
            raise ValueError("SWISSGRID_MODEL_URL is required when the game is not offline")
        return cls(settings.model_url, timeout=settings.model_timeout,
                   years_per_turn=settings.years_per_turn,
                   weeks_per_year=settings.weeks_per_year, transport=transport)

    @property
    def busy(self):
        return self._busy

    @property
    def queued(self):
        return len(self._queue)

    async def close(self):
        self.cancel_pending()
        await self._client.aclose()

    # ── Admission ─────────────────────────────────────────────────────

    def _submit(self, label, factory):
        """Queue a request; factory builds its coroutine once it is admitted."""
        future = asyncio.get_running_loop().create_future()
        self._queue.append((label, factory, future))
        self._drain()
        return future

    def _drain(self):
        while not self._busy and self._queue:
            label, factory, future = self._queue.popleft()
            if future.cancelled():
                continue
            self._busy = True
            task = asyncio.ensure_future(self._execute(label, factory))
            task.add_done_callback(partial(self._settle, future))

    async def _execute(self, label, factory):
        try:
            return await asyncio.wait_for(factory(), self._timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ModelTimeoutError(f"{label} timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise ModelUnavailableError(f"{label} failed: {e}") from e
        finally:
            self._busy = False
            self._drain()

    @staticmethod
    def _settle(future, task):
        if future.cancelled():
            return
        if task.cancelled():
            future.cancel()
        elif task.exception() is not None:
            future.set_exception(task.exception())
        else:
            future.set_result(task.result())

    def cancel_pending(self):
        """Cancel every queued request. The in-flight one runs to completion."""
        cancelled = 0
        while self._queue:
            _, _, future = self._queue.popleft()
            if future.cancel():
                cancelled += 1
        if cancelled:
            logger.info("Cancelled %d queued model request(s)", cancelled)
        return cancelled

    # ── Transport ─────────────────────────────────────────────────────

    async def _request(self, method, path, mth, params=None, **kwargs):
        params = {"mth": mth, **(params or {})}
        response = await self._client.request(method, path, params=params, **kwargs)
        if response.status_code >= 400:
            raise ModelUnavailableError(
                f"Model responded with HTTP {response.status_code}",
                status=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ModelError("Model returned an invalid payload", retryable=False) from e
        rows = data.get("rows") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise ModelError("Model payload has no rows", retryable=False)
        return rows

    def _require_session(self):
        if self.session_id is None:
            raise ModelError("Model session is not initialised", retryable=False)

    # ── Session ───────────────────────────────────────────────────────

    async def init(self):
        """Create the remote instance and give it a random name."""
        rows = await self._submit("init", lambda: self._request("POST", RES_PATH, "insert"))
        if not rows or "res_id" not in rows[0]:
            raise ModelError("Model did not return an instance id", retryable=False)
        self.session_id = int(rows[0]["res_id"])
        logger.info("Model instance %s created", self.session_id)
        await self.rename(self.generate_name())
        return self.session_id

    def generate_name(self):
        name = f"{self._rng.choice(NAME_WORDS)}_{self._names}"
        self._names += 1
        return name

    async def rename(self, name):
        self._require_session()
        data = {"res_id": str(self.session_id), "res_name": name}
        rows = await self._submit(
            "rename", lambda: self._request("POST", RES_PATH, "update", data=data))
        confirmed = rows[0].get("res_name", name) if rows else name
        logger.debug("Model instance %s renamed to %s", self.session_id, confirmed)
        return confirmed

    # ── Data ──────────────────────────────────────────────────────────

    async def upsert_column(self, column, plant_type, value):
        """Push one column value. Types the model does not track are skipped."""
        self._require_session()
        column = column if isinstance(column, ModelColumn) else ModelColumn.from_string(column)
        if plant_type is not None:
            plant_type = plant_type if isinstance(plant_type, PlantType) \
                else PlantType.from_string(plant_type)
            if plant_type.model_suffix is None:
                return False
        data = {
            "res_id": str(self.session_id),
            "col_id": str(column.wire_id(plant_type)),
            "col_name": column.wire_name(plant_type),
            "value": str(value),
        }
        await self._submit(f"upsert {data['col_name']}",
                           lambda: self._request("POST", DATA_PATH, "update", data=data))
        return True

    async def fetch(self, turn):
        """Winter and summer peak rows for a turn."""
        self._require_session()
        winter, summer = peak_weeks(turn, self._years_per_turn, self._weeks_per_year)
        params = {"res_id": str(self.session_id), "weeks": f"{winter},{summer}"}
        rows = await self._submit(f"fetch turn {turn}",
                                  lambda: self._request("GET", DATA_PATH, "ctx", params=params))
        logger.debug("Fetched %d model row(s) for turn %d", len(rows), turn)
        return rows

    def fetch_nowait(self, turn):
        """Start a fetch without waiting for it; returns the task."""
        return asyncio.ensure_future(self.fetch(turn))
