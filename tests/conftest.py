"""Shared fixtures for buildq tests."""

import json

import pytest
import pytest_asyncio

from buildq.config import Config, _ENV_KEYS
from buildq.models import Role
from buildq.router import ProviderRouter


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Provider keys from the developer's shell must not leak into tests."""
    for env_name, _ in _ENV_KEYS:
        monkeypatch.delenv(env_name, raising=False)


@pytest.fixture
def tmp_project(tmp_path):
    """Temporary project: .buildq/config.yaml + a small web app."""
    buildq_dir = tmp_path / ".buildq"
    buildq_dir.mkdir()

    (buildq_dir / "config.yaml").write_text("""\
mode: autonomous
roles:
  architect:
    provider: google
    model: gemini-2.5-flash
  coder:
    provider: groq
    model: llama-3.1-8b-instant
  reviewer:
    provider: openrouter
    model: mistralai/mistral-7b-instruct
budgets:
  max_retries: 2
  provider_max_attempts: 1
correction:
  strategy: append
memory:
  enabled: true
  path: .buildq/memory.md
""")
    (tmp_path / "index.html").write_text("<html><body><main>Hello</main></body></html>\n")
    (tmp_path / "style.css").write_text("body { margin: 0; }\n")
    return tmp_path


@pytest.fixture
def ready_config():
    """Config with a key for every provider used by the default roles."""
    cfg = Config()
    cfg.providers.google.api_key = "AIza-test"
    cfg.providers.groq.api_key = "gsk-test"
    cfg.providers.openrouter.api_key = "sk-or-test"
    return cfg


class ScriptedTextGen:
    """TextGen that replays canned responses and records prompts."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[tuple[str, str]] = []

    async def chat(self, system: str, user: str) -> str:
        self.calls.append((system, user))
        if not self.responses:
            raise AssertionError("ScriptedTextGen ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item(system, user)
        return item if isinstance(item, str) else json.dumps(item)


class ScriptedRoles:
    """One ScriptedTextGen per role, plugged into a ProviderRouter factory."""

    def __init__(self):
        self.gens = {role: ScriptedTextGen([]) for role in Role}

    def script(self, role: Role, *responses):
        self.gens[role].responses.extend(responses)
        return self

    def router(self, config: Config) -> ProviderRouter:
        by_pair = {
            (config.role(role).provider, config.role(role).model): role for role in Role
        }

        def factory(provider, model, api_key, cfg):
            return self.gens[by_pair[(provider, model)]]

        return ProviderRouter.for_config(config, factory=factory)


@pytest.fixture
def roles():
    return ScriptedRoles()


@pytest_asyncio.fixture
async def db(tmp_path):
    """Real SQLite file database (WAL mode)."""
    from buildq.db import Database
    db = Database(str(tmp_path / "test.db"))
    await db.init()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def memory_db():
    """In-memory database for fast unit tests."""
    from buildq.db import Database
    db = Database(":memory:")
    await db.init()
    yield db
    await db.close()
