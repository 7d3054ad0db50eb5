"""
Category Router
===============

Maps a coaching query to a prioritized list of corpus categories.

The router decides:
1. Whether the user wants a constructed artifact (a full program, a split)
   -> construction intent, which allows synthesis across categories
2. Which muscles/topics are mentioned -> topic categories
3. Which entities (muscles, exercises) feed graph expansion

Routing is based on:
- Compiled regex patterns for intents (action verb + artifact noun,
  named split structures, program review, myth checks)
- A fixed synonym -> canonical muscle -> category table
- Explicit topic hints from the caller (unknown hints pass through)
- Optional YAML overrides

Example:
    >>> router = CategoryRouter()
    >>> decision = router.classify("Build me an upper/lower program for delts")
    >>> decision.is_construction_intent
    True
    >>> decision.priority_categories
    ('hypertrophy_programs', 'hypertrophy_principles', 'shoulders')
"""

import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

import structlog
import yaml

from kbrag.config.retrieval import RetrievalConfig
from kbrag.retrieval.models import Query, RoutingDecision

log = structlog.get_logger()


def _alternation(terms: Iterable[str]) -> Optional[Pattern]:
    """Word-bounded alternation, longest terms first so phrases win."""
    ordered = sorted(set(terms), key=lambda t: (-len(t), t))
    if not ordered:
        return None
    body = "|".join(re.escape(t).replace(r"\ ", r"[\s-]+") for t in ordered)
    return re.compile(r"(?<![a-z0-9])(" + body + r")(?![a-z0-9])", re.IGNORECASE)


def _unique(items: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(i for i in items if i))


class CategoryRouter:
    """
    Query classifier producing a ``RoutingDecision``.

    Supported intents:
    - construction: "build/create/design/make/give me ... program/routine/split/
      schedule/plan/workout", or a named structure ("upper/lower", "push/pull",
      "full body", "ppl", "4 day split")
    - review: "review my program", "here is my routine", ...
    - myths: "is it true", "myth", "misconception", ...
    - topic: muscle synonyms (delts -> shoulders, quads -> quadriceps, ...)
    """

    ACTION_PATTERNS = [
        r"\bbuild\b",
        r"\bcreate\b",
        r"\bdesign\b",
        r"\bmake\b",
        r"\bgive[\s-]+me\b",
        r"\bwrite\b",
        r"\bput\s+together\b",
    ]

    ARTIFACT_PATTERNS = [
        r"\bprograms?\b",
        r"\broutines?\b",
        r"\bsplits?\b",
        r"\bschedules?\b",
        r"\bplans?\b",
        r"\bworkouts?\b",
        r"\bmesocycles?\b",
    ]

    STRUCTURE_PATTERNS = [
        r"\bupper\s*/\s*lower\b",
        r"\bupper[\s-]+lower\b",
        r"\bpush\s*/\s*pull\b",
        r"\bpush[\s-]+pull\b",
        r"\bppl\b",
        r"\bfull[\s-]+body\b",
        r"\bbro\s+split\b",
        r"\banterior\s*/\s*posterior\b",
        r"\b\d+[\s-]*day\s+(?:split|program|routine|workout|plan)s?\b",
    ]

    REVIEW_PATTERNS = [
        r"\b(?:review|check|evaluate|analy[sz]e|critique|rate)\s+my\b",
        r"\bfeedback\s+on\s+my\b",
        r"\bwhat\s+do\s+you\s+think\s+(?:of|about)\s+my\b",
        r"\bhere\s+is\s+my\s+(?:program|workout|routine|split)\b",
        r"\bis\s+this\s+(?:program|workout|routine)\s+good\b",
    ]

    MYTH_PATTERNS = [
        r"\bmyths?\b",
        r"\bmisconceptions?\b",
        r"\btrue\s+or\s+false\b",
        r"\bfact[\s-]+check\b",
        r"\bis\s+it\s+true\b",
    ]

    # Query term -> canonical muscle
    MUSCLE_TERMS: Dict[str, str] = {
        "chest": "chest", "pectorals": "chest", "pecs": "chest", "pec": "chest",
        "biceps": "biceps", "bicep": "biceps",
        "triceps": "triceps", "tricep": "triceps",
        "shoulders": "shoulders", "shoulder": "shoulders", "delts": "shoulders",
        "delt": "shoulders", "deltoids": "shoulders",
        "back": "back", "lats": "back", "latissimus": "back", "rhomboids": "back",
        "traps": "back", "trapezius": "back",
        "arms": "arms",
        "legs": "legs",
        "quads": "quadriceps", "quad": "quadriceps", "quadriceps": "quadriceps",
        "hamstrings": "hamstrings", "hamstring": "hamstrings",
        "glutes": "glutes", "glute": "glutes",
        "calves": "calves", "calf": "calves",
        "adductors": "adductors", "adductor": "adductors",
        "abs": "abs", "core": "abs", "abdominals": "abs",
        "forearms": "forearms", "forearm": "forearms",
    }

    # Canonical muscle -> corpus categories
    MUSCLE_CATEGORIES: Dict[str, Tuple[str, ...]] = {
        "chest": ("chest",),
        "biceps": ("elbow_flexors",),
        "triceps": ("triceps",),
        "shoulders": ("shoulders",),
        "back": ("back",),
        "arms": ("elbow_flexors", "triceps", "forearms"),
        "legs": ("legs", "quadriceps", "hamstrings", "glutes", "calves", "adductors"),
        "quadriceps": ("quadriceps",),
        "hamstrings": ("hamstrings",),
        "glutes": ("glutes",),
        "calves": ("calves",),
        "adductors": ("adductors",),
        "abs": ("abs",),
        "forearms": ("forearms",),
    }

    # Query term -> canonical exercise (graph entities only)
    EXERCISE_TERMS: Dict[str, str] = {
        "squat": "squat", "squats": "squat", "back squat": "squat",
        "front squat": "front squat",
        "deadlift": "deadlift", "deadlifts": "deadlift",
        "romanian deadlift": "romanian deadlift", "rdl": "romanian deadlift",
        "bench press": "bench press", "bench": "bench press",
        "incline press": "incline press",
        "overhead press": "overhead press", "ohp": "overhead press",
        "military press": "overhead press",
        "pull up": "pull-up", "pull-up": "pull-up", "pullup": "pull-up", "pull-ups": "pull-up",
        "chin up": "chin-up", "chin-up": "chin-up", "chinup": "chin-up",
        "lat pulldown": "lat pulldown", "pulldown": "lat pulldown",
        "row": "row", "rows": "row", "barbell row": "row", "cable row": "row",
        "leg press": "leg press",
        "lunge": "lunge", "lunges": "lunge", "split squat": "split squat",
        "hip thrust": "hip thrust", "hip thrusts": "hip thrust",
        "lateral raise": "lateral raise", "lateral raises": "lateral raise",
        "curl": "curl", "curls": "curl", "bicep curl": "curl",
        "tricep extension": "tricep extension", "pushdown": "tricep pushdown",
        "dip": "dip", "dips": "dip",
        "calf raise": "calf raise", "calf raises": "calf raise",
        "leg curl": "leg curl", "leg extension": "leg extension",
        "fly": "fly", "flyes": "fly", "flies": "fly",
    }

    REVIEW_CATEGORIES = ("hypertrophy_programs_review", "hypertrophy_programs")
    MYTH_CATEGORIES = ("myths",)

    def __init__(
        self,
        config: Optional[RetrievalConfig] = None,
        known_categories: Optional[Iterable[str]] = None,
        config_path: Optional[Path] = None,
    ):
        """
        Args:
            config: Supplies the default and construction categories when
                ``classify`` is called without a per-call config
            known_categories: Corpus categories; query text naming one of them
                ("rest periods" -> rest_periods) routes to it literally
            config_path: Optional YAML with ``muscle_terms``,
                ``muscle_categories`` and ``exercise_terms`` overrides
        """
        self.config = config or RetrievalConfig()
        self.known_categories = tuple(sorted(set(known_categories or ())))
        self.config_path = config_path

        self.muscle_terms = dict(self.MUSCLE_TERMS)
        self.muscle_categories = dict(self.MUSCLE_CATEGORIES)
        self.exercise_terms = dict(self.EXERCISE_TERMS)
        self._load_config()

        self._action = [re.compile(p, re.IGNORECASE) for p in self.ACTION_PATTERNS]
        self._artifact = [re.compile(p, re.IGNORECASE) for p in self.ARTIFACT_PATTERNS]
        self._structure = [re.compile(p, re.IGNORECASE) for p in self.STRUCTURE_PATTERNS]
        self._review = [re.compile(p, re.IGNORECASE) for p in self.REVIEW_PATTERNS]
        self._myth = [re.compile(p, re.IGNORECASE) for p in self.MYTH_PATTERNS]
        self._muscle_re = _alternation(self.muscle_terms)
        self._exercise_re = _alternation(self.exercise_terms)
        self._category_re = {
            cat: re.compile(
                r"(?<![a-z0-9])" + re.escape(cat.replace("_", " ")).replace(r"\ ", r"[\s_-]+")
                + r"s?(?![a-z0-9])",
                re.IGNORECASE,
            )
            for cat in self.known_categories
        }

        log.info(
            "CategoryRouter initialized",
            muscle_terms=len(self.muscle_terms),
            exercise_terms=len(self.exercise_terms),
            known_categories=len(self.known_categories),
        )

    def _load_config(self):
        """Merge YAML overrides into the lookup tables."""
        if self.config_path is None or not Path(self.config_path).exists():
            return
        try:
            with open(self.config_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            log.warning(f"Failed to load router config: {e}")
            return

        for term, canonical in (data.get("muscle_terms") or {}).items():
            self.muscle_terms[str(term).lower()] = str(canonical).lower()
        for canonical, cats in (data.get("muscle_categories") or {}).items():
            self.muscle_categories[str(canonical).lower()] = tuple(cats)
        for term, canonical in (data.get("exercise_terms") or {}).items():
            self.exercise_terms[str(term).lower()] = str(canonical).lower()
        log.debug("Router overrides loaded", path=str(self.config_path))

    @staticmethod
    def _any(patterns: Sequence[Pattern], text: str) -> List[str]:
        return [m.group(0) for p in patterns for m in [p.search(text)] if m]

    def detect_construction_intent(self, text: str) -> Tuple[bool, List[str]]:
        """Action verb + artifact noun, or a named split structure."""
        structures = self._any(self._structure, text)
        if structures:
            return True, structures
        actions = self._any(self._action, text)
        artifacts = self._any(self._artifact, text)
        if actions and artifacts:
            return True, actions + artifacts
        return False, []

    def _muscles(self, text: str) -> List[str]:
        if self._muscle_re is None:
            return []
        found = []
        for m in self._muscle_re.finditer(text):
            key = re.sub(r"[\s-]+", " ", m.group(1).lower())
            canonical = self.muscle_terms.get(key) or self.muscle_terms.get(m.group(1).lower())
            if canonical:
                found.append(canonical)
        return list(dict.fromkeys(found))

    def _exercises(self, text: str) -> List[str]:
        if self._exercise_re is None:
            return []
        found = []
        for m in self._exercise_re.finditer(text):
            key = re.sub(r"[\s-]+", " ", m.group(1).lower())
            canonical = self.exercise_terms.get(key) or self.exercise_terms.get(m.group(1).lower())
            if canonical:
                found.append(canonical)
        return list(dict.fromkeys(found))

    def _topic_hint_categories(self, topics: Sequence[str]) -> Tuple[List[str], List[str]]:
        categories: List[str] = []
        entities: List[str] = []
        for hint in topics:
            key = hint.strip().lower()
            if not key:
                continue
            canonical = self.muscle_terms.get(key)
            if canonical:
                entities.append(canonical)
                categories.extend(self.muscle_categories.get(canonical, (canonical,)))
            else:
                # Unmapped hints are literal category candidates
                categories.append(key)
        return categories, entities

    def classify(
        self,
        query: Union[Query, str],
        config: Optional[RetrievalConfig] = None,
    ) -> RoutingDecision:
        """
        Classify a query into prioritized categories.

        Args:
            query: Query (text plus optional topic hints) or raw text
            config: Per-call configuration snapshot

        Returns:
            RoutingDecision with a non-empty ``priority_categories``
        """
        config = config or self.config
        if isinstance(query, str):
            text, topics = query, ()
        else:
            text, topics = query.text, query.topics
        lowered = text.lower()

        is_construction, construction_terms = self.detect_construction_intent(lowered)
        review_terms = self._any(self._review, lowered)
        myth_terms = self._any(self._myth, lowered)

        muscles = self._muscles(lowered)
        exercises = self._exercises(lowered)

        topic_categories: List[str] = []
        for muscle in muscles:
            topic_categories.extend(self.muscle_categories.get(muscle, (muscle,)))
        hint_categories, hint_entities = self._topic_hint_categories(topics)
        topic_categories.extend(hint_categories)
        literal = [cat for cat, pattern in self._category_re.items() if pattern.search(lowered)]
        topic_categories.extend(literal)

        priority: List[str] = []
        if is_construction:
            priority.extend(config.construction_categories)
        if review_terms:
            priority.extend(self.REVIEW_CATEGORIES)
        priority.extend(topic_categories)
        if myth_terms:
            priority.extend(self.MYTH_CATEGORIES)
        if priority and (is_construction or muscles):
            # Training queries always carry the foundational principles
            priority.append(config.default_category)

        used_default = False
        priority_categories = _unique(priority)
        if not priority_categories:
            priority_categories = (config.default_category,)
            used_default = True

        entities = _unique(muscles + hint_entities + exercises)
        matched = _unique(construction_terms + review_terms + myth_terms + muscles + exercises + literal)

        reasons = []
        if is_construction:
            reasons.append("construction intent")
        if review_terms:
            reasons.append("program review")
        if myth_terms:
            reasons.append("myth check")
        if topic_categories:
            reasons.append(f"topics {list(_unique(topic_categories))}")
        if used_default:
            reasons.append(f"no rule matched, default '{config.default_category}'")

        decision = RoutingDecision(
            priority_categories=priority_categories,
            is_construction_intent=is_construction,
            topic_categories=_unique(topic_categories),
            entities=entities,
            matched_terms=matched,
            used_default=used_default,
            reasoning="; ".join(reasons),
        )

        log.debug(
            "Router decision",
            priority=list(decision.priority_categories),
            construction=is_construction,
            entities=list(entities),
        )
        return decision
