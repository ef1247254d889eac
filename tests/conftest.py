"""Shared fixtures: small item pool, concept graph and an in-memory Redis."""

import random

import pytest

from core.assessment_session import AssessmentConfig, DiagnosticReport, ReadinessLevel, WeakConcept
from core.knowledge_graph import ConceptNode
from core.repositories import (
    ContentBundle,
    InMemoryConceptRepository,
    InMemoryItemRepository,
    InMemorySimilarityLookup,
)
from core.question_selector import SelectableItem
from redis_store import RedisStore


class FakeRedis:
    """Just the Redis commands RedisStore uses, kept in dicts."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    def llen(self, key):
        return len(self.data.get(key, []))

    def rpush(self, key, *values):
        self.data.setdefault(key, []).extend(values)
        return len(self.data[key])

    def lrange(self, key, start, end):
        values = self.data.get(key, [])
        stop = len(values) if end == -1 else end + 1
        return list(values[start:stop])

    def hset(self, key, mapping=None):
        self.data.setdefault(key, {}).update(mapping or {})
        return len(mapping or {})

    def hgetall(self, key):
        return dict(self.data.get(key, {}))

    def sadd(self, key, *members):
        existing = self.data.setdefault(key, set())
        added = len(set(members) - existing)
        existing.update(members)
        return added

    def smembers(self, key):
        return set(self.data.get(key, set()))

    def pipeline(self):
        return FakePipeline(self)

    def transaction(self, func, *watches, value_from_callable=False):
        pipe = FakePipeline(self)
        value = func(pipe)
        results = pipe.execute()
        return value if value_from_callable else results


class FakePipeline:
    """Queues writes until execute(); reads before multi() run immediately, as after WATCH."""

    def __init__(self, client):
        self.client = client
        self.commands = []

    def get(self, key):
        return self.client.get(key)

    def multi(self):
        pass

    def set(self, *args, **kwargs):
        self.commands.append(("set", args, kwargs))

    def rpush(self, *args, **kwargs):
        self.commands.append(("rpush", args, kwargs))

    def hset(self, *args, **kwargs):
        self.commands.append(("hset", args, kwargs))

    def sadd(self, *args, **kwargs):
        self.commands.append(("sadd", args, kwargs))

    def execute(self):
        return [getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in self.commands]


def make_item(item_id, topic="ohms_law", b=0.0, a=1.2, c=0.2, **kwargs):
    defaults = dict(
        cognitive="CALCULATION",
        difficulty="MEDIUM",
        correct_answer="A",
        stem=f"Question {item_id}",
        options={"A": "right", "B": "wrong", "C": "wrong", "D": "wrong"},
    )
    defaults.update(kwargs)
    return SelectableItem(id=item_id, topic=topic, irt_a=a, irt_b=b, irt_c=c, **defaults)


def build_item_pool(jurisdiction="ca", per_topic=8, topics=("ohms_law", "grounding", "branch_circuits")):
    repo = InMemoryItemRepository()
    for topic in topics:
        for i in range(per_topic):
            b = -2.0 + 4.0 * i / max(1, per_topic - 1)
            repo.add(jurisdiction, make_item(f"{topic}-{i}", topic=topic, b=round(b, 2)))
    return repo


def make_report(*weak_topics):
    """Completed-assessment report with the given topics marked weak."""
    return DiagnosticReport(
        assessment_id="assessment-1",
        final_ability=-0.5,
        final_se=0.3,
        confidence_interval_95=(-1.088, 0.088),
        questions_asked=15,
        topic_performance=[],
        weak_concepts=[WeakConcept(topic=t, accuracy=0.4) for t in weak_topics],
        strong_concepts=[],
        estimated_exam_score=62.5,
        readiness_level=ReadinessLevel.DEVELOPING,
    )


def build_concepts():
    """
    ohms -> series -> load_calc
    ohms -> ampacity -> branch -> load_calc
    ohms -> grounding
    """
    return [
        ConceptNode("ohms", "Ohm's Law", [], topic="ohms_law", estimated_minutes=30),
        ConceptNode("series", "Series Circuits", ["ohms"], topic="ohms_law", estimated_minutes=40),
        ConceptNode("ampacity", "Ampacity", ["ohms"], topic="wiring", estimated_minutes=35),
        ConceptNode("branch", "Branch Circuits", ["ampacity"], topic="branch_circuits", estimated_minutes=40),
        ConceptNode("grounding", "Grounding", ["ohms"], topic="grounding", estimated_minutes=45),
        ConceptNode("load_calc", "Load Calculations", ["series", "branch"], topic="load_calc", estimated_minutes=50),
    ]


@pytest.fixture
def item_pool():
    return build_item_pool()


@pytest.fixture
def concepts():
    return build_concepts()


@pytest.fixture
def content_bundle():
    concept_repo = InMemoryConceptRepository()
    for concept in build_concepts():
        concept_repo.add("ca", concept)

    similarity = InMemorySimilarityLookup({
        "ohms": [("ohms_law-0", 0.95), ("ohms_law-1", 0.9), ("ohms_law-2", 0.5)],
        "series": [("ohms_law-3", 0.88)],
        "ampacity": [("branch_circuits-0", 0.81), ("branch_circuits-1", 0.7)],
        "branch": [("branch_circuits-2", 0.92), ("branch_circuits-3", 0.9)],
        "grounding": [("grounding-0", 0.9), ("grounding-1", 0.85), ("grounding-2", 0.8)],
        "load_calc": [("ohms_law-4", 0.6)],
    })
    return ContentBundle(items=build_item_pool(), concepts=concept_repo, similarity=similarity)


@pytest.fixture
def small_config():
    return AssessmentConfig(min_questions=3, max_questions=6, se_threshold=0.3)


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return RedisStore(client=fake_redis)
