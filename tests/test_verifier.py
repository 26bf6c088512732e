"""Tests for the Reviewer verdict."""

import json

import pytest

from buildq.models import Role
from buildq.verifier import Verifier, parse_verdict


# --- Verdict parsing ---

def test_parse_task_completed_true():
    verdict = parse_verdict(json.dumps({
        "thoughts": "footer present",
        "taskCompleted": True,
        "analysis": "The footer was added.",
    }))
    assert verdict.passed
    assert verdict.rationale == "The footer was added."
    assert verdict.thoughts == "footer present"


def test_parse_task_completed_false():
    verdict = parse_verdict('{"taskCompleted": false, "analysis": "No footer in the diff."}')
    assert not verdict.passed
    assert verdict.rationale == "No footer in the diff."


def test_truthy_non_bool_is_not_pass():
    assert not parse_verdict('{"taskCompleted": "yes"}').passed


def test_verdict_dialect():
    assert parse_verdict('{"verdict": "pass", "summary": "ok"}').passed
    assert not parse_verdict('{"verdict": "maybe"}').passed


def test_malformed_json_not_pass():
    """Non-JSON reviewer response → fail (safe default)."""
    verdict = parse_verdict("I think the code looks great! It passes all checks.")
    assert not verdict.passed
    assert "parse" in verdict.rationale


def test_missing_rationale_gets_default():
    assert parse_verdict('{"taskCompleted": true}').rationale == "Objective achieved."


# --- Reviewer call ---

@pytest.mark.asyncio
async def test_verify_sends_diff_and_objective(ready_config, roles):
    roles.script(Role.REVIEWER, {"taskCompleted": True, "analysis": "ok"})
    verifier = Verifier(roles.router(ready_config))

    verdict = await verifier.verify("Add a footer", "+<footer/>\n", "Update index.html")

    assert verdict.passed
    system, user = roles.gens[Role.REVIEWER].calls[0]
    assert "Reviewer" in system
    assert "Add a footer" in user
    assert "+<footer/>" in user
    assert "Update index.html" in user


@pytest.mark.asyncio
async def test_verify_empty_diff_is_labelled(ready_config, roles):
    roles.script(Role.REVIEWER, {"taskCompleted": False, "analysis": "Nothing changed."})
    verdict = await Verifier(roles.router(ready_config)).verify("Add a footer", "")
    assert not verdict.passed
    assert "(no changes)" in roles.gens[Role.REVIEWER].calls[0][1]


@pytest.mark.asyncio
async def test_verify_over_http(ready_config, httpx_mock):
    """Default router → OpenRouter chat completion."""
    from buildq.router import ProviderRouter

    httpx_mock.add_response(json={"choices": [{"message": {"content": json.dumps({
        "taskCompleted": True, "analysis": "Footer added."
    })}}]})
    verdict = await Verifier(ProviderRouter.for_config(ready_config)).verify("o", "d")
    assert verdict.passed
    assert "openrouter.ai" in str(httpx_mock.get_request().url)
