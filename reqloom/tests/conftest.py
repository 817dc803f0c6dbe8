"""Shared fixtures: in-memory SQLite store, scripted LLM, recording queue."""

import copy
import json
import uuid
from unittest.mock import MagicMock

import pytest
from llama_index.core.base.llms.types import CompletionResponse

from reqloom.core.analysis import AnalysisEngine
from reqloom.core.db import DatabaseManager, User
from reqloom.core.gateway import InferenceGateway


LOGIN_RESULT = {
    "projectTitle": "Login Page",
    "functionalRequirements": [
        "The login form must respond fast to invalid credentials.",
    ],
    "nonFunctionalRequirements": ["Authentication completes within 500 ms."],
    "systemFeatures": [
        {
            "name": "Login",
            "description": "Username and password sign-in.",
            "functionalRequirements": ["Validate credentials against the user store."],
        },
    ],
    "userStories": [
        {"role": "user", "feature": "Login", "benefit": "I can reach my account"},
    ],
    "acceptanceCriteria": [
        {"story": "Login", "criteria": ["Valid credentials open the dashboard."]},
    ],
}


class ScriptedLLM:
    """Stand-in LLM returning scripted replies in order; the last one repeats."""

    def __init__(self, *replies):
        self.replies = list(replies) or [LOGIN_RESULT]
        self.prompts = []

    def complete(self, prompt, **kwargs):
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        text = reply if isinstance(reply, str) else json.dumps(reply)
        return CompletionResponse(text=text)

    @property
    def calls(self) -> int:
        return len(self.prompts)


def _add_user(db_manager, username: str) -> str:
    user_id = uuid.uuid4()
    with db_manager.get_session() as session:
        session.add(User(
            user_id=user_id,
            username=username,
            email=f"{username}@example.com",
            api_key=f"rql_{username}",
        ))
    return str(user_id)


@pytest.fixture
def db_manager():
    db = DatabaseManager("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def owner_id(db_manager):
    return _add_user(db_manager, "alice")


@pytest.fixture
def other_owner_id(db_manager):
    return _add_user(db_manager, "bob")


@pytest.fixture
def llm():
    return ScriptedLLM(LOGIN_RESULT)


@pytest.fixture
def make_llm():
    return ScriptedLLM


@pytest.fixture
def queue():
    q = MagicMock()
    q.publish.return_value = "msg-1"
    return q


@pytest.fixture
def inference(llm):
    gateway = InferenceGateway(llm, timeout_seconds=5)
    yield gateway
    gateway.shutdown()


@pytest.fixture
def engine(db_manager, inference, queue):
    return AnalysisEngine(db_manager, inference=inference, queue=queue)


@pytest.fixture
def deliver(engine, queue):
    """Process every message published so far, in order."""
    def _deliver():
        for call in queue.publish.call_args_list:
            engine.process(call.args[0])
    return _deliver


@pytest.fixture
def completed(engine, owner_id, deliver):
    """A root analysis already COMPLETED with LOGIN_RESULT."""
    submitted = engine.submit(owner_id, text="Build a login page")
    deliver()
    return submitted["analysisId"]


def good_draft():
    """A draft that passes every structural check."""
    return {
        "introduction": {
            "purpose": "Let customers sign in to the web shop securely.",
            "scope": "Covers login, logout and password reset flows.",
        },
        "overallDescription": {
            "productPerspective": "A new module of the existing web shop.",
            "productFunctions": "Authenticate users and manage sessions.",
            "userClasses": {"content": "Registered customers and support staff."},
            "operatingEnvironment": "Modern desktop and mobile browsers.",
            "constraints": "Must reuse the existing user database.",
        },
        "systemFeatures": {
            "features": [{
                "name": "Login",
                "description": "Username and password sign-in.",
                "functionalRequirements": "Reject invalid credentials with a clear message.",
            }],
        },
        "nonFunctional": {
            "performance": "Sign-in completes within 500 ms at p95.",
            "security": "Passwords are stored with bcrypt.",
        },
    }


@pytest.fixture
def draft():
    return good_draft()


@pytest.fixture
def login_result():
    return copy.deepcopy(LOGIN_RESULT)
