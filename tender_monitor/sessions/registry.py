"""
In-memory registry of live crawl sessions with write-back persistence.

The registry holds the authoritative copy of every live session. Mutations
apply under a lock, stamp ``last_activity_at`` and queue a snapshot for the
next batched flush. Terminal transitions persist synchronously and evict.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.pool import ThreadPoolExecutor as APSThreadPoolExecutor

from config import SessionConfig
from tender_monitor.concurrent.cancellation import CancellationToken
from tender_monitor.utils.dates import DateRange
from tender_monitor.utils.errors import DatabaseError, SessionError, SessionNotFoundError
from tender_monitor.utils.logging import get_business_logger
from .eta import apply_estimate, estimate_for_session
from .models import (
    COUNTER_FIELDS,
    ETA_TRIGGER_FIELDS,
    CrawlSession,
    ScrapingProvider,
    SessionStatus,
    generate_session_id,
)
from .stats import build_overview, build_session_stats


logger = get_business_logger('session_registry')


class SessionRegistry:
    """
    Tracks crawl sessions for the lifetime of the process.

    Construct one per process and pass it to whoever needs it; call
    ``start()`` to begin periodic flushing and ``shutdown()`` to stop it
    with a final flush.
    """

    def __init__(
        self,
        repository=None,
        config: Optional[SessionConfig] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize the registry.

        Args:
            repository: SessionRepository-like object with ``upsert_sessions``;
                None keeps sessions in memory only
            config: Session settings
            clock: Time source, injectable for tests
        """
        self.repository = repository
        self.config = config or SessionConfig()
        self._clock = clock

        self._lock = threading.RLock()
        self._sessions: Dict[str, CrawlSession] = {}
        self._tokens: Dict[str, CancellationToken] = {}

        # Write-back cache: id -> latest snapshot
        self._pending: Dict[str, CrawlSession] = {}
        self._pending_lock = threading.Lock()
        # Serializes batched flushes against terminal writes
        self._flush_lock = threading.Lock()

        self._scheduler: Optional[BackgroundScheduler] = None
        self._running = False

    # Lifecycle

    def start(self) -> None:
        """Start the flush ticker and the retention sweep."""
        if self._running:
            logger.warning("Session registry is already running")
            return

        self._scheduler = BackgroundScheduler(
            executors={'default': APSThreadPoolExecutor(max_workers=1)},
            job_defaults={'coalesce': True, 'max_instances': 1}
        )
        self._scheduler.add_job(
            func=self._flush_job,
            trigger=IntervalTrigger(seconds=self.config.flush_interval),
            id='session_flush',
            name='Session write-back flush',
            replace_existing=True
        )
        self._scheduler.add_job(
            func=self.cleanup_old_sessions,
            trigger=IntervalTrigger(seconds=self.config.cleanup_interval),
            id='session_cleanup',
            name='Session retention sweep',
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            f"Session registry started (flush every {self.config.flush_interval}s, "
            f"retain {self.config.max_retained_sessions} sessions)"
        )

    def shutdown(self) -> None:
        """Stop the ticker and force a final flush."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=True)
            self._scheduler = None
        self._running = False

        try:
            flushed = self.flush()
            logger.info(f"Session registry shut down, final flush wrote {flushed} sessions")
        except DatabaseError as e:
            logger.error(f"Final session flush failed: {e}")

    @property
    def is_running(self) -> bool:
        return self._running

    # Creation

    def create_session(
        self,
        provider,
        session_id: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        base_url: Optional[str] = None,
        organizations: Optional[List[str]] = None,
        date_range: Optional[DateRange] = None,
        per_org_limit: Optional[int] = None
    ) -> CrawlSession:
        """
        Register a new RUNNING session.

        Args:
            provider: ScrapingProvider or its name
            session_id: Caller supplied id; generated when omitted

        Returns:
            Snapshot of the created session

        Raises:
            SessionError: If the id is already live
        """
        provider = ScrapingProvider.parse(provider)
        session_id = session_id or generate_session_id()
        now = self._clock()

        session = CrawlSession(
            id=session_id,
            provider=provider,
            name=name or f"{provider.value} crawl",
            description=description,
            base_url=base_url,
            started_at=now,
            last_activity_at=now,
            organizations=list(organizations or []),
            date_range=date_range,
            per_org_limit=per_org_limit,
            current_stage="INIT",
        )

        with self._lock:
            if session_id in self._sessions:
                raise SessionError(f"Session already exists: {session_id}", {"session_id": session_id})
            self._sessions[session_id] = session
            self._tokens[session_id] = CancellationToken()
            snapshot = session.snapshot()

        self._enqueue(snapshot)
        logger.info(f"Created session {session_id} for provider {provider.value}")
        return snapshot

    # Mutations

    def _mutate(self, session_id: str, apply: Callable[[CrawlSession], bool]) -> bool:
        """
        Apply a change to a live session.

        ``apply`` returns True when the ETA must be recomputed. Unknown and
        terminal sessions are left untouched.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.is_terminal:
                logger.debug(f"Ignoring update for session {session_id}: not live")
                return False

            now = self._clock()
            recompute = apply(session)
            session.last_activity_at = now
            if recompute:
                apply_estimate(session, estimate_for_session(session, now))
            snapshot = session.snapshot()

        self._enqueue(snapshot)
        return True

    @staticmethod
    def _check_counter_names(values: Dict[str, Any]) -> None:
        unknown = set(values) - set(COUNTER_FIELDS)
        if unknown:
            raise SessionError(f"Unknown session counters: {sorted(unknown)}", {"counters": sorted(unknown)})

    @staticmethod
    def _clamp_organizations(session: CrawlSession) -> None:
        if session.organizations_found > 0 and session.organizations_scraped > session.organizations_found:
            session.organizations_scraped = session.organizations_found

    def update_counters(self, session_id: str, **counters: int) -> bool:
        """
        Set counters to absolute values.

        Counters never decrease while the session is live; a lower value is
        ignored.
        """
        self._check_counter_names(counters)

        def apply(session: CrawlSession) -> bool:
            for name, value in counters.items():
                if value is None:
                    continue
                setattr(session, name, max(getattr(session, name), int(value)))
            self._clamp_organizations(session)
            return bool(ETA_TRIGGER_FIELDS.intersection(counters))

        return self._mutate(session_id, apply)

    def increment_counters(self, session_id: str, **deltas: int) -> bool:
        """Add non-negative deltas to counters; for concurrent writers of one session."""
        self._check_counter_names(deltas)

        def apply(session: CrawlSession) -> bool:
            for name, delta in deltas.items():
                if delta:
                    setattr(session, name, getattr(session, name) + max(0, int(delta)))
            self._clamp_organizations(session)
            return bool(ETA_TRIGGER_FIELDS.intersection(name for name, delta in deltas.items() if delta))

        return self._mutate(session_id, apply)

    def update_activity(self, session_id: str, organization: Optional[str] = None,
                        stage: Optional[str] = None) -> bool:
        def apply(session: CrawlSession) -> bool:
            if organization is not None:
                session.current_organization = organization
            if stage is not None:
                session.current_stage = stage
            return False

        return self._mutate(session_id, apply)

    def update_progress(self, session_id: str, percent: float) -> bool:
        """Raise progress to ``percent`` (clamped to 0-100)."""
        def apply(session: CrawlSession) -> bool:
            value = min(100.0, max(0.0, float(percent)))
            session.progress_percent = max(session.progress_percent, value)
            return True

        return self._mutate(session_id, apply)

    def update_performance(self, session_id: str, pages_per_minute: Optional[float] = None,
                           avg_response_time: Optional[float] = None) -> bool:
        def apply(session: CrawlSession) -> bool:
            if pages_per_minute is not None:
                session.pages_per_minute = float(pages_per_minute)
            if avg_response_time is not None:
                session.avg_response_time = float(avg_response_time)
            return False

        return self._mutate(session_id, apply)

    def _transition(self, session_id: str, expected: SessionStatus, target: SessionStatus) -> bool:
        changed = []

        def apply(session: CrawlSession) -> bool:
            if session.status is expected:
                session.status = target
                changed.append(session.id)
            return False

        return self._mutate(session_id, apply) and bool(changed)

    def pause(self, session_id: str) -> bool:
        """Pause a running session; the engine waits at its next checkpoint."""
        return self._transition(session_id, SessionStatus.RUNNING, SessionStatus.PAUSED)

    def resume(self, session_id: str) -> bool:
        return self._transition(session_id, SessionStatus.PAUSED, SessionStatus.RUNNING)

    def is_paused(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            return session is not None and session.status is SessionStatus.PAUSED

    def is_live(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            return session is not None and not session.is_terminal

    # Terminal transitions

    def complete(self, session_id: str, **final_fields: Any) -> bool:
        """
        Mark a session COMPLETED, persist it and evict it.

        Args:
            session_id: Session id
            final_fields: Final counter values (and optionally
                ``pages_per_minute`` / ``avg_response_time``)

        Returns:
            False if the session is unknown or already terminal
        """
        counters = {k: v for k, v in final_fields.items() if k in COUNTER_FIELDS}
        extra = set(final_fields) - set(counters) - {"progress_percent", "pages_per_minute", "avg_response_time"}
        if extra:
            raise SessionError(f"Unknown final fields: {sorted(extra)}", {"fields": sorted(extra)})

        def apply(session: CrawlSession, now: datetime) -> None:
            for name, value in counters.items():
                if value is not None:
                    setattr(session, name, max(getattr(session, name), int(value)))
            self._clamp_organizations(session)
            session.progress_percent = 100.0

            elapsed_minutes = (now - session.started_at).total_seconds() / 60
            if final_fields.get("pages_per_minute") is not None:
                session.pages_per_minute = float(final_fields["pages_per_minute"])
            elif elapsed_minutes > 0:
                session.pages_per_minute = round(session.pages_navigated / elapsed_minutes, 2)
            if final_fields.get("avg_response_time") is not None:
                session.avg_response_time = float(final_fields["avg_response_time"])

            apply_estimate(session, estimate_for_session(session, now))
            session.estimated_time_remaining_ms = 0
            session.estimated_time_remaining_formatted = "0s"
            session.estimated_completion_time = now

        return self._finish(session_id, SessionStatus.COMPLETED, apply)

    def fail(self, session_id: str, error_message: str) -> bool:
        """Mark a session FAILED with its error message, persist and evict."""
        def apply(session: CrawlSession, now: datetime) -> None:
            session.error_message = error_message
            session.error_count += 1

        return self._finish(session_id, SessionStatus.FAILED, apply)

    def stop(self, session_id: str) -> bool:
        """
        Request a stop.

        Flips the status to STOPPED and cancels the session's token; the
        engine notices at its next checkpoint and unwinds without completing.
        """
        with self._lock:
            token = self._tokens.get(session_id)
        if token is not None:
            token.cancel("stopped")

        return self._finish(session_id, SessionStatus.STOPPED, lambda session, now: None)

    def _finish(self, session_id: str, status: SessionStatus,
                apply: Callable[[CrawlSession, datetime], None]) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.is_terminal:
                return False

            now = self._clock()
            apply(session, now)
            session.status = status
            session.completed_at = now
            session.last_activity_at = now
            snapshot = session.snapshot()

        self._persist_now(snapshot)

        with self._lock:
            self._sessions.pop(session_id, None)
            token = self._tokens.pop(session_id, None)
        if token is not None and status is not SessionStatus.COMPLETED:
            token.cancel(status.value.lower())

        logger.info(f"Session {session_id} finished with status {status.value}")
        return True

    # Reads

    def get(self, session_id: str) -> Optional[CrawlSession]:
        """
        Return a snapshot of a session.

        Live sessions come from memory; evicted ones from the repository.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session.snapshot()

        with self._pending_lock:
            pending = self._pending.get(session_id)
            if pending is not None:
                return pending.snapshot()

        if self.repository is None:
            return None
        try:
            return self.repository.get_session(session_id)
        except DatabaseError as e:
            logger.error(f"Failed to load session {session_id}: {e}")
            return None

    def list_all(self) -> List[CrawlSession]:
        """Snapshots of all live sessions, newest first."""
        with self._lock:
            sessions = [s.snapshot() for s in self._sessions.values()]
        return sorted(sessions, key=lambda s: s.started_at, reverse=True)

    def list_active(self) -> List[CrawlSession]:
        return [s for s in self.list_all() if s.status is SessionStatus.RUNNING]

    def list_by_provider(self, provider) -> List[CrawlSession]:
        provider = ScrapingProvider.parse(provider)
        return [s for s in self.list_all() if s.provider is provider]

    def cancellation_token(self, session_id: str) -> CancellationToken:
        """
        Token the engine checks at its checkpoints.

        Raises:
            SessionNotFoundError: If the session is not live
        """
        with self._lock:
            token = self._tokens.get(session_id)
        if token is None:
            raise SessionNotFoundError(f"Session is not live: {session_id}", {"session_id": session_id})
        return token

    def _known_sessions(self) -> List[CrawlSession]:
        """Live sessions merged over persisted history."""
        merged: Dict[str, CrawlSession] = {}
        if self.repository is not None:
            try:
                for session in self.repository.list_sessions(limit=self.config.max_retained_sessions):
                    merged[session.id] = session
            except DatabaseError as e:
                logger.error(f"Failed to load session history: {e}")
        for session in self.list_all():
            merged[session.id] = session
        return list(merged.values())

    def get_stats(self) -> Dict[str, Any]:
        return build_session_stats(self._known_sessions())

    def get_overview(self) -> Dict[str, Any]:
        return build_overview(self._known_sessions(), now=self._clock())

    # Retention

    def cleanup_old_sessions(self) -> int:
        """
        Keep only the newest ``max_retained_sessions`` live sessions.

        Evicted sessions are cancelled and flushed first.

        Returns:
            Number of sessions evicted
        """
        limit = self.config.max_retained_sessions
        with self._lock:
            if len(self._sessions) <= limit:
                return 0
            ordered = sorted(self._sessions.values(), key=lambda s: s.started_at)
            victims = ordered[:len(ordered) - limit]
            tokens = []
            for session in victims:
                self._sessions.pop(session.id, None)
                token = self._tokens.pop(session.id, None)
                if token is not None:
                    tokens.append(token)
                self._enqueue(session.snapshot())

        for token in tokens:
            token.cancel("evicted")

        try:
            self.flush()
        except DatabaseError as e:
            logger.error(f"Flush after session cleanup failed: {e}")

        logger.info(f"Cleaned up {len(victims)} old sessions")
        return len(victims)

    # Persistence

    def _enqueue(self, snapshot: CrawlSession) -> None:
        if self.repository is None:
            return
        with self._pending_lock:
            self._pending[snapshot.id] = snapshot

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def flush(self) -> int:
        """
        Persist every queued snapshot in one batch.

        Returns:
            Number of sessions written

        Raises:
            DatabaseError: If the write fails; unsent snapshots are re-queued
        """
        if self.repository is None:
            return 0

        with self._flush_lock:
            with self._pending_lock:
                batch, self._pending = self._pending, {}
            if not batch:
                return 0

            try:
                self.repository.upsert_sessions(list(batch.values()))
            except DatabaseError:
                with self._pending_lock:
                    for session_id, snapshot in batch.items():
                        # Newer snapshots queued meanwhile win
                        self._pending.setdefault(session_id, snapshot)
                raise

        logger.debug(f"Flushed {len(batch)} session snapshots")
        return len(batch)

    def _flush_job(self) -> None:
        try:
            self.flush()
        except DatabaseError as e:
            logger.error(f"Scheduled session flush failed: {e}")

    def _persist_now(self, snapshot: CrawlSession) -> None:
        if self.repository is None:
            return

        with self._flush_lock:
            with self._pending_lock:
                self._pending.pop(snapshot.id, None)
            try:
                self.repository.upsert_sessions([snapshot])
            except DatabaseError as e:
                logger.error(f"Failed to persist terminal state of session {snapshot.id}: {e}")
                with self._pending_lock:
                    self._pending[snapshot.id] = snapshot
