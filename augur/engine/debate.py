"""多空辩论引擎。 / Bull/bear debate engine.

Implements the DEBATE stage: a fixed number of strictly sequential rounds in
which each side critiques the other and revises its thesis.

State machine per round:
    INIT → BULL_OPENING → BEAR_REBUTTAL → BULL_REBUTTAL → RESOLVED

Any critic failure, round timeout or out-of-range revision degrades the debate:
the refined theses are reset to the originals and the pipeline carries on.
"""

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from augur.primitives.errors import DebateDegraded
from augur.primitives.models import (
    DebatePhase,
    DebateRecord,
    DebateTurn,
    RefinedThesis,
    SignalDirection,
    Thesis,
)

logger = logging.getLogger(__name__)

STAGE = "debate"

TurnCallback = Callable[[DebateTurn], Union[Awaitable[None], None]]

# (phase, speaker) in execution order within one round
_ROUND_PHASES: Tuple[Tuple[DebatePhase, SignalDirection], ...] = (
    (DebatePhase.BULL_OPENING, SignalDirection.YES),
    (DebatePhase.BEAR_REBUTTAL, SignalDirection.NO),
    (DebatePhase.BULL_REBUTTAL, SignalDirection.YES),
)


def _coerce_refined(raw: Any) -> RefinedThesis:
    """Accept a RefinedThesis or a plain dict from the critic."""
    if isinstance(raw, RefinedThesis):
        return raw
    if isinstance(raw, dict):
        confidence = raw.get("confidence")
        return RefinedThesis(
            fair_probability=float(raw["fair_probability"]),
            core_argument=str(raw.get("core_argument", "")),
            confidence=float(confidence) if confidence is not None else None,
            catalysts=tuple(raw.get("catalysts") or ()),
            failure_conditions=tuple(raw.get("failure_conditions") or ()),
        )
    raise TypeError(f"critic returned {type(raw).__name__}, expected RefinedThesis")


def apply_refinement(thesis: Thesis, refined: RefinedThesis, phase: DebatePhase) -> Thesis:
    """Return a new thesis carrying the critic's revision.

    Raises:
        DebateDegraded: the revised probability or confidence is outside [0, 1].
    """
    p = refined.fair_probability
    if not isinstance(p, (int, float)) or not 0.0 <= p <= 1.0:
        raise DebateDegraded(phase.value, f"refined fair_probability out of range: {p!r}")
    confidence = thesis.confidence
    if refined.confidence is not None:
        if not 0.0 <= refined.confidence <= 1.0:
            raise DebateDegraded(phase.value, f"refined confidence out of range: {refined.confidence!r}")
        confidence = refined.confidence
    return replace(
        thesis,
        fair_probability=float(p),
        confidence=confidence,
        edge=float(p) - thesis.market_probability,
        core_argument=refined.core_argument or thesis.core_argument,
        catalysts=tuple(refined.catalysts) or thesis.catalysts,
        failure_conditions=tuple(refined.failure_conditions) or thesis.failure_conditions,
    )


class DebateEngine:
    """Runs sequential critique rounds between the bull and bear theses.

    Protocol (each round):
        BULL_OPENING  — bull revises against the current bear.
        BEAR_REBUTTAL — bear revises against the revised bull.
        BULL_REBUTTAL — bull revises once more against the revised bear.

    Originals are never overwritten; only the refined pair moves.
    """

    def __init__(
        self,
        critic: Optional[Any] = None,
        rounds: int = 1,
        round_timeout: float = 30.0,
        on_turn: Optional[TurnCallback] = None,
    ):
        self.critic = critic
        self.rounds = rounds
        self.round_timeout = round_timeout
        self._on_turn = on_turn

    async def run(self, bull: Thesis, bear: Thesis) -> DebateRecord:
        """Execute the debate.

        Args:
            bull: Original bull thesis.
            bear: Original bear thesis.

        Returns:
            DebateRecord. ``skipped`` when no critic or zero rounds are
            configured, ``degraded`` when any round failed.
        """
        if self.critic is None or self.rounds <= 0:
            logger.info("Debate skipped: no critic configured or zero rounds.")
            return DebateRecord(
                original_bull=bull,
                original_bear=bear,
                refined_bull=bull,
                refined_bear=bear,
                skipped=True,
            )

        turns: List[DebateTurn] = []
        refined_bull, refined_bear = bull, bear
        rounds_completed = 0

        try:
            for round_num in range(1, self.rounds + 1):
                refined_bull, refined_bear = await asyncio.wait_for(
                    self._run_round(round_num, refined_bull, refined_bear, turns),
                    timeout=self.round_timeout,
                )
                rounds_completed = round_num
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            return self._degraded(
                bull, bear, turns, rounds_completed,
                f"round {rounds_completed + 1} timed out after {self.round_timeout}s",
            )
        except DebateDegraded as exc:
            return self._degraded(bull, bear, turns, rounds_completed, str(exc))
        except Exception as exc:
            return self._degraded(
                bull, bear, turns, rounds_completed, f"{type(exc).__name__}: {exc}",
            )

        logger.info(
            f"Debate resolved after {rounds_completed} round(s): "
            f"bull {bull.fair_probability:.3f}→{refined_bull.fair_probability:.3f}, "
            f"bear {bear.fair_probability:.3f}→{refined_bear.fair_probability:.3f}"
        )
        return DebateRecord(
            original_bull=bull,
            original_bear=bear,
            refined_bull=refined_bull,
            refined_bear=refined_bear,
            rounds_completed=rounds_completed,
            turns=tuple(turns),
        )

    # ------------------------------------------------------------------
    # Internal methods
    # ------------------------------------------------------------------

    async def _run_round(
        self,
        round_num: int,
        bull: Thesis,
        bear: Thesis,
        turns: List[DebateTurn],
    ) -> Tuple[Thesis, Thesis]:
        for phase, speaker in _ROUND_PHASES:
            if speaker == SignalDirection.YES:
                before = bull
                bull = await self._exchange(phase, bull, bear)
                after = bull
            else:
                before = bear
                bear = await self._exchange(phase, bear, bull)
                after = bear
            turn = DebateTurn(
                round_number=round_num,
                phase=phase,
                speaker=speaker,
                probability_before=before.fair_probability,
                probability_after=after.fair_probability,
                argument=after.core_argument,
            )
            turns.append(turn)
            logger.debug(
                f"Round {round_num} {phase.value}: "
                f"{before.fair_probability:.3f}→{after.fair_probability:.3f}"
            )
            if self._on_turn is not None:
                result = self._on_turn(turn)
                if inspect.isawaitable(result):
                    await result
        return bull, bear

    async def _exchange(self, phase: DebatePhase, thesis: Thesis, opposing: Thesis) -> Thesis:
        raw = self.critic.critique(thesis, opposing)
        if inspect.isawaitable(raw):
            raw = await raw
        try:
            refined = _coerce_refined(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise DebateDegraded(phase.value, f"malformed critique: {exc}") from exc
        return apply_refinement(thesis, refined, phase)

    @staticmethod
    def _degraded(
        bull: Thesis,
        bear: Thesis,
        turns: List[DebateTurn],
        rounds_completed: int,
        reason: str,
    ) -> DebateRecord:
        logger.warning(f"Debate degraded, falling back to original theses: {reason}")
        return DebateRecord(
            original_bull=bull,
            original_bear=bear,
            refined_bull=bull,
            refined_bear=bear,
            degraded=True,
            rounds_completed=rounds_completed,
            turns=tuple(turns),
            degradation_reason=reason,
        )
