"""Relay controller - gates detected submissions and forwards them.

State has two independent axes, enabled and identified. Submissions are
forwarded only while both hold; otherwise they are dropped without error.
Delivery is detached: handlers answer as soon as the attempt is scheduled.
"""

import asyncio
import logging
from typing import Any

from .ingestion import SubmissionIngestionClient, now_ms
from .models import (
    GetFlags,
    GetStats,
    GetStatus,
    GetUserId,
    PersistenceError,
    RapidSolveFlag,
    RelayState,
    SetUserId,
    Submission,
    SubmissionDetected,
    SubmissionRecord,
    ToggleExtension,
    UserStats,
)
from .stats import evaluate_flag, update_stats
from .store import (
    ENABLED_KEY,
    FLAGS_KEY,
    HISTORY_KEY,
    STATS_KEY,
    USER_ID_KEY,
    PersistentState,
)

logger = logging.getLogger(__name__)

FLAG_LIMIT = 100


class RelayController:
    """Owns the relay state and handles each inbound message type."""

    def __init__(
        self,
        store: PersistentState,
        client: SubmissionIngestionClient,
        history_limit: int = 100,
        flag_window_minutes: float = 10.0,
    ):
        """Initialize the controller.

        Args:
            store: Durable state, mirrored on every mutation
            client: Ingestion API client
            history_limit: Relayed submissions kept locally
            flag_window_minutes: Max gap between two solves to raise a flag
        """
        self.store = store
        self.client = client
        self.history_limit = history_limit
        self.flag_window_ms = int(flag_window_minutes * 60_000)

        self.state = RelayState()
        self.stats = UserStats()
        self.history: list[SubmissionRecord] = []
        self.flags: list[RapidSolveFlag] = []

        self._init_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def user_id(self) -> str | None:
        return self.state.user_id

    @property
    def is_enabled(self) -> bool:
        return self.state.is_enabled

    @property
    def pending_deliveries(self) -> int:
        return len(self._tasks)

    # --- Lifecycle ---

    async def initialize(self) -> None:
        """Hydrate state from the store, once.

        Safe to call repeatedly and concurrently; every caller waits for the
        same hydration. Handlers call this first so gating never sees
        un-hydrated state.
        """
        if self._init_task is None or self._init_task.cancelled():
            self._init_task = asyncio.ensure_future(self._hydrate())
        # A cancelled caller must not cancel the hydration other callers share
        await asyncio.shield(self._init_task)

    async def _hydrate(self) -> None:
        try:
            await self._load()
        except Exception:
            logger.exception("Unexpected error loading relay state, starting from defaults")
            self.state = RelayState()
            self.stats = UserStats()
            self.history = []
            self.flags = []

    async def _load(self) -> None:
        try:
            stored = await self.store.get(
                [USER_ID_KEY, ENABLED_KEY, STATS_KEY, HISTORY_KEY, FLAGS_KEY]
            )
        except PersistenceError as e:
            logger.warning("Could not load relay state, starting from defaults: %s", e)
            return

        user_id = stored[USER_ID_KEY]
        self.state.user_id = user_id if isinstance(user_id, str) and user_id else None
        self.state.is_enabled = stored[ENABLED_KEY] is not False

        try:
            if stored[STATS_KEY]:
                self.stats = UserStats.from_dict(stored[STATS_KEY])
            self.history = [SubmissionRecord.from_dict(r) for r in stored[HISTORY_KEY] or []]
            self.flags = [RapidSolveFlag.from_dict(f) for f in stored[FLAGS_KEY] or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Discarding unreadable submission history: %s", e)
            self.stats = UserStats()
            self.history = []
            self.flags = []

        logger.info(
            "Relay state loaded (enabled=%s, identified=%s, history=%d)",
            self.state.is_enabled,
            self.state.user_id is not None,
            len(self.history),
        )

    async def drain(self) -> None:
        """Wait for every detached delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Finish pending deliveries and close the ingestion client."""
        await self.drain()
        await self.client.close()

    # --- Handlers ---

    async def set_user_id(self, message: SetUserId) -> dict[str, Any]:
        await self.initialize()
        # An empty id clears identification like null does
        self.state.user_id = message.user_id or None
        if self.state.user_id is None:
            await self._forget([USER_ID_KEY])
        else:
            await self._persist({USER_ID_KEY: self.state.user_id})
        return {"success": True}

    async def toggle_extension(self, message: ToggleExtension) -> dict[str, Any]:
        await self.initialize()
        self.state.is_enabled = message.enabled
        await self._persist({ENABLED_KEY: message.enabled})
        logger.info("Relay %s", "enabled" if message.enabled else "disabled")
        return {"success": True}

    async def get_user_id(self, message: GetUserId) -> dict[str, Any]:
        await self.initialize()
        return {"userId": self.state.user_id}

    async def submission_detected(self, message: SubmissionDetected) -> dict[str, Any]:
        """Forward a detected submission if the relay is active.

        Raises:
            InvalidMessage: If an active relay receives malformed data
        """
        await self.initialize()

        if not self.state.is_active:
            logger.debug(
                "Relay inactive (enabled=%s, identified=%s), dropping submission",
                self.state.is_enabled,
                self.state.user_id is not None,
            )
            return {"success": True}

        submission = Submission.from_observer(message.data)
        flag = self._record(submission)
        self._track(asyncio.create_task(self._deliver(submission, self.state.user_id, flag)))
        return {"success": True}

    async def get_status(self, message: GetStatus) -> dict[str, Any]:
        await self.initialize()
        return {
            "success": True,
            "enabled": self.state.is_enabled,
            "userId": self.state.user_id,
            "connected": await self.client.health_check(),
        }

    async def get_stats(self, message: GetStats) -> dict[str, Any]:
        await self.initialize()
        return {"success": True, "data": self.stats.to_dict()}

    async def get_flags(self, message: GetFlags) -> dict[str, Any]:
        await self.initialize()
        return {"success": True, "data": [f.to_dict() for f in self.flags]}

    # --- Internals ---

    def _record(self, submission: Submission) -> RapidSolveFlag | None:
        """Add a submission to local history and stats; return any flag raised."""
        timestamp = now_ms()
        record = SubmissionRecord.from_submission(submission, timestamp)
        previous = self.history[0] if self.history else None

        self.history.insert(0, record)
        del self.history[self.history_limit:]
        update_stats(self.stats, record)

        if record.status != "accepted":
            return None
        flag = evaluate_flag(previous, record, self.flag_window_ms, timestamp)
        if flag:
            logger.info(
                "Rapid-solve flag: %s after %s (%dms apart)",
                record.problem_title,
                previous.problem_title,
                flag.gap_ms,
            )
            self.flags.insert(0, flag)
            del self.flags[FLAG_LIMIT:]
        return flag

    async def _deliver(self, submission: Submission, user_id: str, flag: RapidSolveFlag | None) -> None:
        try:
            entries = {
                STATS_KEY: self.stats.to_dict(),
                HISTORY_KEY: [r.to_dict() for r in self.history],
            }
            if flag:
                entries[FLAGS_KEY] = [f.to_dict() for f in self.flags]
            await self._persist(entries)

            result = await self.client.send(submission, user_id)
            if result.ok:
                logger.info(
                    "Submission '%s' delivered (id=%s)",
                    submission.problem_title,
                    result.server_id,
                )
            else:
                logger.warning(
                    "Submission '%s' not delivered: %s",
                    submission.problem_title,
                    result.reason,
                )

            if flag:
                flag_result = await self.client.send_flag(flag, user_id)
                if not flag_result.ok:
                    logger.warning("Flag not delivered: %s", flag_result.reason)
        except Exception:
            logger.exception("Unexpected error while relaying '%s'", submission.problem_title)

    async def _persist(self, entries: dict[str, Any]) -> None:
        """Write through to the store; in-memory state stays authoritative on failure."""
        try:
            await self.store.set(entries)
        except PersistenceError as e:
            logger.warning("Failed to persist %s: %s", ", ".join(entries), e)

    async def _forget(self, keys: list[str]) -> None:
        try:
            await self.store.delete(keys)
        except PersistenceError as e:
            logger.warning("Failed to clear %s: %s", ", ".join(keys), e)

    def _track(self, task: asyncio.Task) -> None:
        """Track a background task and remove it on completion."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
