"""
Shared fixtures: an in-process completion gateway scripted per service tag.
"""

import json

import pytest

from goalcoach.backend import Backend
from goalcoach.errors import TransportError


class ScriptedGateway:
    """
    Fake gateway. Each service tag maps to a list of responses consumed in
    order; the last one repeats. An Exception instance is raised instead of
    returned. Unscripted tags fail with TransportError.
    """

    def __init__(self):
        self.script: dict[str, list] = {}
        self.calls: list[dict] = []

    def set(self, service_tag: str, *responses) -> "ScriptedGateway":
        self.script[service_tag] = [json.dumps(r) if isinstance(r, (dict, list)) else r for r in responses]
        return self

    def complete(self, service_tag, system_instruction, user_prompt, *, temperature=None, max_tokens=None):
        self.calls.append({
            "tag": service_tag,
            "system": system_instruction,
            "prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        queue = self.script.get(service_tag)
        if not queue:
            raise TransportError(f"no scripted response for {service_tag}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def tags(self) -> list[str]:
        return [c["tag"] for c in self.calls]


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def backend(gateway):
    return Backend(gateway=gateway)


def question(qid="q-1", text="When do you want to finish?", **extra):
    return {"id": qid, "text": text, "type": "text", "purpose": "deadline", "priority": 1, **extra}


def analysis_payload(completeness, questions=(), **extra):
    return {
        "completeness": completeness,
        "needsClarification": completeness <= 80,
        "insights": "Make it measurable.",
        "suggestedQuestions": list(questions),
        "suggestedTasks": [],
        **extra,
    }


@pytest.fixture
def make_question():
    return question


@pytest.fixture
def make_analysis():
    return analysis_payload
