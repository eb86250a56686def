"""Reflection plus concurrent generation of the check-in sections.

The reflection call is mandatory and runs first. Everything after it is
optional: each task settles into a ``TaskOutcome`` and a failure only leaves
its field empty. Tasks with dependencies are submitted once every dependency
has settled, successfully or not. The record is persisted exactly once, after
the last task settled.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence

from .errors import AnalysisError
from .generative import GenerativeClient
from .models import (
    AggregatedResult,
    AnalysisContext,
    AnalysisTask,
    CheckInRecord,
    TaskOutcome,
    normalize_score,
)
from .store import PersistenceWriter

logger = logging.getLogger("moodframe")

WORKOUT = "workout"
HABIT = "habit"
INSIGHT = "insight"
PREDICTION = "prediction"
PLAN_HELP = "plan_help"
MOOD_TITLE = "mood_title"


def build_tasks(generator: GenerativeClient) -> List[AnalysisTask]:
    def _plan_help(ctx: AnalysisContext):
        return generator.generate_plan_help(
            ctx.transcript,
            ctx.emotion_label,
            ctx.emotion_score,
            exercises=ctx.settled.get(WORKOUT),
            habit=ctx.settled.get(HABIT),
        )

    return [
        AnalysisTask(
            WORKOUT, lambda ctx: generator.suggest_workout(ctx.transcript, ctx.emotion_label)
        ),
        AnalysisTask(
            HABIT, lambda ctx: generator.suggest_habit(ctx.transcript, ctx.emotion_label)
        ),
        AnalysisTask(
            INSIGHT,
            lambda ctx: generator.generate_insight(
                ctx.transcript, ctx.emotion_label, ctx.emotion_score
            ),
        ),
        AnalysisTask(
            PREDICTION,
            lambda ctx: generator.generate_prediction(
                ctx.transcript, ctx.emotion_label, ctx.emotion_score
            ),
        ),
        AnalysisTask(
            MOOD_TITLE,
            lambda ctx: generator.generate_mood_title(
                ctx.transcript, ctx.emotion_label, ctx.sensing
            ),
        ),
        AnalysisTask(PLAN_HELP, _plan_help, depends_on=(WORKOUT, HABIT)),
    ]


def _settle(task: AnalysisTask, context: AnalysisContext) -> TaskOutcome:
    try:
        value = task.invoke(context)
    except Exception as exc:
        logger.warning("Analysis task %s failed: %s", task.name, exc)
        return TaskOutcome.failure(task.name, str(exc) or type(exc).__name__)
    if value is None:
        logger.info("Analysis task %s produced nothing", task.name)
    return TaskOutcome.success(task.name, value)


class AnalysisOrchestrator:
    def __init__(
        self,
        generator: GenerativeClient,
        writer: Optional[PersistenceWriter] = None,
        max_workers: int = 6,
        tasks: Optional[Sequence[AnalysisTask]] = None,
    ) -> None:
        self.generator = generator
        self.writer = writer
        self.max_workers = max_workers
        self.tasks = list(tasks) if tasks is not None else build_tasks(generator)

    def reflect(
        self,
        transcript: Optional[str],
        emotion_label: Optional[str],
        emotion_score: Optional[float],
    ) -> str:
        try:
            return self.generator.reflect_state(transcript, emotion_label, emotion_score)
        except Exception as exc:
            logger.error("State reflection failed: %s", exc)
            raise AnalysisError(f"Analysis failed: {exc}") from exc

    def analyze(
        self,
        transcript: Optional[str],
        emotion_label: Optional[str],
        emotion_score: Optional[float],
    ) -> AggregatedResult:
        emotion_score = normalize_score(emotion_score)
        sensing = self.reflect(transcript, emotion_label, emotion_score)
        result = AggregatedResult(
            transcript=transcript,
            emotion_label=emotion_label,
            emotion_score=emotion_score,
            sensing=sensing,
        )
        context = AnalysisContext(
            transcript=transcript,
            emotion_label=emotion_label,
            emotion_score=emotion_score,
            sensing=sensing,
        )
        self._fan_out(context, result)

        failed_required = [t.name for t in self.tasks if t.required and t.name in result.errors]
        if failed_required:
            raise AnalysisError(f"Required analysis failed: {', '.join(failed_required)}")
        if result.errors:
            logger.info(
                "Analysis finished with %d empty section(s): %s",
                len(result.errors),
                ", ".join(sorted(result.errors)),
            )
        return result

    def _fan_out(self, context: AnalysisContext, result: AggregatedResult) -> None:
        settled: set = set()
        waiting = [t for t in self.tasks if t.depends_on]
        pending: Dict[Future, AnalysisTask] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="analysis") as pool:
            for task in self.tasks:
                if not task.depends_on:
                    pending[pool.submit(_settle, task, context)] = task

            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    task = pending.pop(future)
                    outcome = future.result()
                    result.record(outcome)
                    context.settled[task.name] = outcome.value if outcome.ok else None
                    settled.add(task.name)

                ready = [t for t in waiting if all(dep in settled for dep in t.depends_on)]
                for task in ready:
                    waiting.remove(task)
                    pending[pool.submit(_settle, task, context)] = task

        for task in waiting:
            result.record(TaskOutcome.failure(task.name, "unresolved dependencies"))

    def run(
        self,
        transcript: Optional[str],
        emotion_label: Optional[str],
        emotion_score: Optional[float],
        *,
        user_id: str,
    ) -> CheckInRecord:
        result = self.analyze(transcript, emotion_label, emotion_score).freeze()
        record = CheckInRecord.from_result(user_id, result)
        if self.writer is not None:
            self.writer.persist(record)
        return record
