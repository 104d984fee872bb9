"""Per-turn context window reduction.

Control flow for one turn:
  budget check -> duplicate optimization -> (maybe) truncation
  -> save ledger -> materialize view
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from ..errors import ContextOverflowError, PersistenceError
from .budget import (
    ContextWindowInfo,
    UsageSnapshot,
    count_view_chars,
    estimate_view_tokens,
    needs_reduction,
    project_usage,
)
from .ledger import DeletionRange, EditLedger
from .messages import CanonicalHistory
from .optimizer import DuplicateContentOptimizer
from .truncation import TruncationPlanner, TruncationPolicy
from .view import MaterializedView, materialize

if TYPE_CHECKING:
    from ..config import Config
    from ..storage.base import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One conversation: its canonical history and its edit ledger.

    Owned by the caller and passed into every manager call.
    """

    session_id: str
    history: CanonicalHistory = field(default_factory=CanonicalHistory)
    ledger: EditLedger = field(default_factory=EditLedger)
    # Warnings raised while opening the session, reported on the next turn
    pending_warnings: list[str] = field(default_factory=list)


@dataclass
class ReductionResult:
    """Outcome of one prepare_turn() call."""

    view: MaterializedView
    deletion_range: Optional[DeletionRange]
    reduction_applied: bool
    needs_reduction: bool = False
    overflow: bool = False
    optimized_blocks: int = 0
    warnings: list[str] = field(default_factory=list)

    def raise_for_overflow(self) -> None:
        """Raise ContextOverflowError if history could not be reduced enough."""
        if self.overflow:
            raise ContextOverflowError(
                "Conversation exceeds the context window and cannot be truncated further",
                deletion_end=self.deletion_range.end if self.deletion_range else 0,
            )


class ContextWindowManager:
    """Keeps a session's view within the model's context window.

    Reduction happens in two phases: duplicate content is collapsed first,
    and whole user/assistant pairs are elided only if that was not enough.
    All decisions live in the session's edit ledger, which is saved before
    control returns to the caller.
    """

    def __init__(
        self,
        store: Optional["LedgerStore"] = None,
        optimizer: Optional[DuplicateContentOptimizer] = None,
        planner: Optional[TruncationPlanner] = None,
        always_optimize: bool = True,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Ledger persistence. Defaults to an in-memory store.
            optimizer: Duplicate-content optimizer.
            planner: Truncation planner.
            always_optimize: Run the optimizer every turn, not only when
                the budget is exceeded.
        """
        if store is None:
            from ..storage.memory import MemoryLedgerStore

            store = MemoryLedgerStore()
        self._store = store
        self._optimizer = optimizer or DuplicateContentOptimizer()
        self._planner = planner or TruncationPlanner()
        self._always_optimize = always_optimize

    @classmethod
    def from_config(cls, config: "Config", store: Optional["LedgerStore"] = None) -> "ContextWindowManager":
        """Build a manager from loaded configuration."""
        if store is None:
            store = config.storage.create_store()
        planner = TruncationPlanner(
            policy=TruncationPolicy(config.context.truncation_policy),
            preserved_tail_pairs=config.context.preserved_tail_pairs,
        )
        return cls(
            store=store,
            planner=planner,
            always_optimize=config.context.always_optimize,
        )

    @property
    def store(self) -> "LedgerStore":
        return self._store

    def open_session(
        self,
        session_id: str,
        history: Optional[CanonicalHistory] = None,
    ) -> Session:
        """Create a session, resuming its ledger from the store if one exists."""
        session = Session(
            session_id=session_id,
            history=history if history is not None else CanonicalHistory(),
        )
        try:
            ledger = self._store.load(session_id)
        except PersistenceError as e:
            logger.warning(
                f"Could not load ledger for session {session_id}, starting empty: {e}",
                extra={"ctx": {"session": session_id}},
            )
            session.pending_warnings.append(str(e))
            ledger = None

        if ledger is not None:
            session.ledger = ledger
            logger.info(
                f"Resumed session {session_id} at revision {ledger.revision} "
                f"({len(ledger.updates)} updates, range={self._format_range(ledger.deletion_range)})"
            )
        return session

    def prepare_turn(
        self,
        session: Session,
        window: ContextWindowInfo,
        usage: Optional[UsageSnapshot],
    ) -> ReductionResult:
        """Reduce the session if needed and return the view to send.

        Args:
            session: The conversation to prepare.
            window: Capacity information for the selected model.
            usage: Token usage of the previous response, if known.

        Returns:
            The materialized view plus what changed this turn.
        """
        history = session.history
        ledger = session.ledger
        warnings = list(session.pending_warnings)
        session.pending_warnings.clear()
        log_ctx = {"ctx": {"session": session.session_id}}

        over_budget = needs_reduction(usage, window)
        before = ledger.copy()
        applied = False
        optimized = 0
        overflow = False

        if over_budget or self._always_optimize:
            chars_before = count_view_chars(materialize(history, ledger)) if over_budget else 0
            optimized = self._optimizer.optimize(history, ledger)
            applied = optimized > 0

            if over_budget:
                total = usage.total
                projected = total
                if optimized:
                    chars_after = count_view_chars(materialize(history, ledger))
                    projected = project_usage(total, chars_before, chars_after)
                    logger.info(
                        f"Optimization saved {chars_before - chars_after} chars, "
                        f"projected usage {projected}/{window.allowed_size}",
                        extra=log_ctx,
                    )

                if projected >= window.allowed_size:
                    pressure = total / window.allowed_size if window.allowed_size else float("inf")
                    try:
                        self._planner.apply(history, ledger, pressure=pressure)
                        applied = True
                    except ContextOverflowError as e:
                        overflow = True
                        logger.warning(f"Unrecoverable context overflow: {e}", extra=log_ctx)

        if ledger != before:
            ledger.revision += 1
            try:
                self._store.save(session.session_id, ledger)
            except PersistenceError as e:
                logger.warning(
                    f"Ledger not persisted, reduction will not survive a restart: {e}",
                    extra=log_ctx,
                )
                warnings.append(str(e))

        view = materialize(history, ledger)
        if applied:
            logger.info(
                f"Reduced session {session.session_id}: {len(history)} -> {len(view)} messages, "
                f"~{estimate_view_tokens(view)} tokens, "
                f"range={self._format_range(ledger.deletion_range)}",
                extra=log_ctx,
            )

        return ReductionResult(
            view=view,
            deletion_range=ledger.deletion_range,
            reduction_applied=applied,
            needs_reduction=over_budget,
            overflow=overflow,
            optimized_blocks=optimized,
            warnings=warnings,
        )

    def get_status(self, session: Session) -> dict:
        """Status dict for CLI / debugging."""
        ledger = session.ledger
        view = materialize(session.history, ledger)
        rng = ledger.deletion_range
        return {
            "session_id": session.session_id,
            "history_messages": len(session.history),
            "view_messages": len(view),
            "elided_messages": len(session.history) - len(view),
            "deletion_range": rng.to_dict() if rng else None,
            "updates": len(ledger.updates),
            "watermark": ledger.watermark,
            "revision": ledger.revision,
            "token_estimate": estimate_view_tokens(view),
        }

    @staticmethod
    def _format_range(rng: Optional[DeletionRange]) -> str:
        return f"[{rng.start}, {rng.end})" if rng else "none"
