import datetime
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from targetscheduler.errors import ConfigurationError
from .exposures import completed_count
from .types import ExposurePlan, Project, ProjectPriority, Target
from .visibility import VisibilityResult, minutes_to_culmination

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """A target that passed visibility, ready to be scored."""

    target: Target
    visibility: VisibilityResult
    plans: Sequence[ExposurePlan] = field(default_factory=list)

    @property
    def window_end(self) -> datetime.datetime:
        return self.visibility.interval.end


@dataclass
class ScoringContext:
    now: datetime.datetime
    candidates: Sequence[Candidate]
    previous_target: Target | None = None


@dataclass
class ScoredCandidate:
    candidate: Candidate
    score: float
    components: dict[str, float]

    @property
    def target(self) -> Target:
        return self.candidate.target


class ScoringRule(ABC):
    name: str
    default_weight: float = 1.0

    @abstractmethod
    def score(self, candidate: Candidate, context: ScoringContext) -> float:
        raise NotImplementedError


class ProjectPriorityRule(ScoringRule):
    name = "Project Priority"
    default_weight = 0.5

    def score(self, candidate, context):
        return candidate.target.project.priority / float(ProjectPriority.HIGH)


class PercentCompleteRule(ScoringRule):
    name = "Percent Complete"
    default_weight = 0.5

    def score(self, candidate, context):
        return 1.0 - _completion(candidate.target.exposure_plans, candidate.target.project)


class MosaicCompletionRule(ScoringRule):
    name = "Mosaic Completion"
    default_weight = 0.5

    def score(self, candidate, context):
        project = candidate.target.project
        if not project.is_mosaic:
            return 0.0
        plans = [p for t in project.targets if t.enabled for p in t.exposure_plans]
        return _completion(plans, project)


class MeridianProximityRule(ScoringRule):
    name = "Meridian Proximity"
    default_weight = 0.75

    def score(self, candidate, context):
        minutes = abs(minutes_to_culmination(candidate.visibility, context.now))
        return _clamp(1.0 - minutes / 720.0)


class SettingSoonestRule(ScoringRule):
    name = "Setting Soonest"
    default_weight = 0.5

    def score(self, candidate, context):
        remaining = _remaining_minutes(candidate, context.now)
        if remaining <= 0:
            return 1.0
        soonest = min(_remaining_minutes(c, context.now) for c in context.candidates)
        return _clamp(max(soonest, 0.0) / remaining)


class TargetSwitchPenaltyRule(ScoringRule):
    name = "Target Switch Penalty"
    default_weight = 0.67

    def score(self, candidate, context):
        previous = context.previous_target
        if previous is None:
            return 0.0
        return 1.0 if previous.id == candidate.target.id else 0.0


DEFAULT_RULES: tuple[ScoringRule, ...] = (
    ProjectPriorityRule(),
    PercentCompleteRule(),
    MosaicCompletionRule(),
    MeridianProximityRule(),
    SettingSoonestRule(),
    TargetSwitchPenaltyRule(),
)


def _completion(plans: Sequence[ExposurePlan], project: Project) -> float:
    desired = sum(p.desired for p in plans if p.enabled)
    if desired <= 0:
        return 1.0
    done = sum(min(completed_count(p, project.enable_grader), p.desired) for p in plans if p.enabled)
    return _clamp(done / desired)


def _remaining_minutes(candidate: Candidate, now: datetime.datetime) -> float:
    return (candidate.window_end - now).total_seconds() / 60.0


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class ScoringEngine:
    def __init__(self, rules: Sequence[ScoringRule] | None = None):
        self._rules = {rule.name: rule for rule in (rules or DEFAULT_RULES)}

    @property
    def rule_names(self) -> list[str]:
        return list(self._rules)

    def weights_for(self, project: Project) -> dict[str, float]:
        """Resolve the effective weight map for a project.

        A project without weights uses the rule defaults; otherwise only the
        rules it names take part. Negative weights, or a map in which every
        weight is zero, are configuration errors.
        """
        if not project.rule_weights:
            return {name: rule.default_weight for name, rule in self._rules.items()}
        weights: dict[str, float] = {}
        for name, weight in project.rule_weights.items():
            if name not in self._rules:
                logger.warning("Project %s: ignoring unknown scoring rule %r", project.name, name)
                continue
            if weight < 0:
                raise ConfigurationError(f"Project {project.name}: rule weight for {name} is negative")
            weights[name] = float(weight)
        if not any(w > 0 for w in weights.values()):
            raise ConfigurationError(f"Project {project.name}: all scoring rule weights are zero")
        return weights

    def score(self, candidate: Candidate, context: ScoringContext) -> ScoredCandidate:
        weights = self.weights_for(candidate.target.project)
        components: dict[str, float] = {}
        total = 0.0
        weight_sum = 0.0
        for name, weight in weights.items():
            if weight == 0:
                continue
            value = _clamp(self._rules[name].score(candidate, context))
            components[name] = value
            total += weight * value
            weight_sum += weight
        return ScoredCandidate(candidate=candidate, score=total / weight_sum, components=components)

    def rank(self, context: ScoringContext) -> list[ScoredCandidate]:
        scored = []
        for candidate in context.candidates:
            try:
                scored.append(self.score(candidate, context))
            except ConfigurationError as exc:
                candidate.target.project.reject(str(exc))
                logger.warning("Excluding target %s: %s", candidate.target.name, exc)
        scored.sort(key=lambda s: (-s.score, s.candidate.window_end, s.target.id))
        for entry in scored:
            logger.debug(
                "Scored %s: %.4f %s",
                entry.target.name,
                entry.score,
                {k: round(v, 3) for k, v in entry.components.items()},
            )
        return scored

    def select(self, context: ScoringContext) -> ScoredCandidate | None:
        """Return the winning candidate, or None when nothing is schedulable."""
        ranked = self.rank(context)
        if not ranked:
            logger.info("Scoring: nothing schedulable at %s", context.now.isoformat())
            return None
        return ranked[0]
