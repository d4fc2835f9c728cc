"""Tests for task_orchestrator.lib.questions and the console question agent."""

import pytest

from task_orchestrator.collaborators.console import ConsoleQuestionAgent
from task_orchestrator.lib.questions import (
    INTENT_QUESTIONS,
    AnswerError,
    Option,
    Question,
    QuestionKind,
    intent_fields_from_answers,
    validate_answers,
)

COLOR = Question(
    id="color",
    prompt="Pick a color",
    kind=QuestionKind.SINGLE_SELECT,
    options=[Option("red"), Option("blue")],
)
TAGS = Question(
    id="tags",
    prompt="Pick tags",
    kind=QuestionKind.MULTI_SELECT,
    options=[Option("a"), Option("b"), Option("c")],
    required=False,
)

ANSWERS = {
    "personas": ["Developer", "End user"],
    "technical_constraints": ["No new dependencies"],
    "compliance": ["GDPR"],
    "business_constraints": ["Fixed deadline"],
    "risks": ["Data loss", "Scope creep"],
    "risk_appetite": "cautious",
    "quantitative_metrics": ["Error rate"],
    "qualitative_metrics": [],
}


class TestValidateAnswers:
    def test_single_select_accepts_bare_string(self):
        assert validate_answers([COLOR], {"color": "red"}) == {"color": ["red"]}

    def test_single_select_rejects_two(self):
        with pytest.raises(AnswerError) as exc_info:
            validate_answers([COLOR], {"color": ["red", "blue"]})
        assert exc_info.value.question_id == "color"

    def test_unknown_label(self):
        with pytest.raises(AnswerError) as exc_info:
            validate_answers([COLOR], {"color": "green"})
        assert "green" in str(exc_info.value)

    def test_required_missing(self):
        with pytest.raises(AnswerError):
            validate_answers([COLOR], {})

    def test_optional_missing_is_empty(self):
        assert validate_answers([COLOR, TAGS], {"color": "blue"})["tags"] == []

    def test_multi_select_keeps_option_order(self):
        assert validate_answers([TAGS], {"tags": ["c", "a", "c"]}) == {"tags": ["a", "c"]}

    def test_unknown_question(self):
        with pytest.raises(AnswerError):
            validate_answers([COLOR], {"color": "red", "size": "xl"})


class TestIntentFields:
    def test_maps_answers_to_intent(self):
        fields = intent_fields_from_answers("  Users can't export data  ", ANSWERS)
        assert fields["problem_statement"] == "Users can't export data"
        assert [p["name"] for p in fields["user_personas"]] == ["End user", "Developer"]
        assert fields["constraints"]["compliance"] == ["GDPR"]
        assert fields["success_metrics"]["business"] == ["Delivered by the agreed deadline"]

    def test_risk_levels_follow_appetite(self):
        fields = intent_fields_from_answers("p", ANSWERS)
        risks = {r["description"]: r for r in fields["risks"]}
        assert risks["Data loss"]["probability"] == "high"
        assert risks["Data loss"]["impact"] == "high"
        assert risks["Scope creep"]["impact"] == "medium"
        assert risks["Scope creep"]["mitigation"]

    def test_invalid_answers_raise(self):
        with pytest.raises(AnswerError):
            intent_fields_from_answers("p", dict(ANSWERS, risk_appetite="reckless"))

    def test_question_ids_unique(self):
        ids = [q.id for q in INTENT_QUESTIONS]
        assert len(ids) == len(set(ids))


class TestConsoleQuestionAgent:
    def make_agent(self, replies):
        replies = iter(replies)
        output = []
        agent = ConsoleQuestionAgent(input_fn=lambda _: next(replies), output_fn=output.append)
        return agent, output

    def test_single_select_by_number(self):
        agent, _ = self.make_agent(["2"])
        assert agent.ask([COLOR]) == {"color": ["blue"]}

    def test_multi_select_comma_separated(self):
        agent, _ = self.make_agent(["1, 3"])
        assert agent.ask([TAGS]) == {"tags": ["a", "c"]}

    def test_invalid_input_asked_again(self):
        agent, output = self.make_agent(["x", "9", "1,2", "1"])
        assert agent.ask([COLOR]) == {"color": ["red"]}
        assert "Enter option numbers." in output
        assert "Choose exactly one option." in output

    def test_optional_blank_is_empty(self):
        agent, _ = self.make_agent([""])
        assert agent.ask([TAGS]) == {"tags": []}
