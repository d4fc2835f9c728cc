"""
Typed question/answer contract for the conversational collaborator.

Questions are enumerated up front with enumerated option labels. The
question agent returns chosen labels per question id; validate_answers()
checks them against the question set, and intent_fields_from_answers()
shapes the intent record from which options were chosen.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class QuestionKind(Enum):
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"


@dataclass(frozen=True)
class Option:
    label: str
    description: str = ""


@dataclass
class Question:
    id: str
    prompt: str
    kind: QuestionKind
    options: list[Option] = field(default_factory=list)
    required: bool = True

    @property
    def labels(self) -> list[str]:
        return [o.label for o in self.options]


class AnswerError(ValueError):
    """Answer doesn't fit the question it answers."""

    def __init__(self, question_id: str, message: str):
        self.question_id = question_id
        super().__init__(f"Question '{question_id}': {message}")


def validate_answers(questions: list[Question], answers: dict) -> dict[str, list[str]]:
    """Normalize answers to {question_id: [labels]} and check them.

    A single-select answer may be given as a bare string.

    Raises:
        AnswerError: unknown question, unknown label, wrong arity, missing required answer
    """
    by_id = {q.id: q for q in questions}
    unknown = set(answers) - set(by_id)
    if unknown:
        raise AnswerError(sorted(unknown)[0], "not in question set")

    normalized: dict[str, list[str]] = {}
    for question in questions:
        raw = answers.get(question.id)
        if raw is None or raw == [] or raw == "":
            if question.required:
                raise AnswerError(question.id, "answer required")
            normalized[question.id] = []
            continue

        chosen = [raw] if isinstance(raw, str) else list(raw)
        if question.kind is QuestionKind.SINGLE_SELECT and len(chosen) != 1:
            raise AnswerError(question.id, f"expected exactly one option, got {len(chosen)}")

        for label in chosen:
            if label not in question.labels:
                raise AnswerError(
                    question.id,
                    f"'{label}' is not one of: {', '.join(question.labels)}",
                )
        # Preserve option order, drop repeats
        normalized[question.id] = [l for l in question.labels if l in chosen]

    return normalized


# ---------------------------------------------------------------------------
# Intent interview
# ---------------------------------------------------------------------------

RISK_LIKELIHOOD = {"cautious": "high", "balanced": "medium", "aggressive": "low"}

RISK_MITIGATIONS = {
    "Data loss": "Back up data before migrations and verify restores",
    "Security breach": "Threat-model new endpoints and add auth tests",
    "Performance regression": "Add performance budgets to validation",
    "Scope creep": "Keep non-goals explicit in the PRD",
    "Third-party outage": "Wrap external calls with timeouts and fallbacks",
}

INTENT_QUESTIONS = [
    Question(
        id="personas",
        prompt="Who will use this?",
        kind=QuestionKind.MULTI_SELECT,
        options=[
            Option("End user", "People using the product day to day"),
            Option("Administrator", "People configuring or moderating"),
            Option("Developer", "People integrating through an API"),
            Option("Operator", "People running the system in production"),
        ],
    ),
    Question(
        id="technical_constraints",
        prompt="Which technical constraints apply?",
        kind=QuestionKind.MULTI_SELECT,
        options=[
            Option("Use the existing stack"),
            Option("No new dependencies"),
            Option("Must work offline"),
            Option("Must support mobile"),
        ],
        required=False,
    ),
    Question(
        id="compliance",
        prompt="Which compliance regimes apply?",
        kind=QuestionKind.MULTI_SELECT,
        options=[Option("GDPR"), Option("HIPAA"), Option("SOC 2"), Option("PCI-DSS")],
        required=False,
    ),
    Question(
        id="business_constraints",
        prompt="Which business constraints apply?",
        kind=QuestionKind.MULTI_SELECT,
        options=[Option("Fixed deadline"), Option("Fixed budget"), Option("Must not disrupt existing users")],
        required=False,
    ),
    Question(
        id="risks",
        prompt="Which risks worry you?",
        kind=QuestionKind.MULTI_SELECT,
        options=[Option(label) for label in RISK_MITIGATIONS],
        required=False,
    ),
    Question(
        id="risk_appetite",
        prompt="How much risk is acceptable?",
        kind=QuestionKind.SINGLE_SELECT,
        options=[
            Option("cautious", "Treat every listed risk as likely"),
            Option("balanced", "Treat listed risks as possible"),
            Option("aggressive", "Treat listed risks as unlikely"),
        ],
    ),
    Question(
        id="quantitative_metrics",
        prompt="How will success be measured?",
        kind=QuestionKind.MULTI_SELECT,
        options=[Option("Response time"), Option("Error rate"), Option("Conversion rate"), Option("Adoption")],
        required=False,
    ),
    Question(
        id="qualitative_metrics",
        prompt="Which qualitative outcomes matter?",
        kind=QuestionKind.MULTI_SELECT,
        options=[Option("User satisfaction"), Option("Maintainability"), Option("Accessibility")],
        required=False,
    ),
]


def intent_fields_from_answers(problem_statement: str, answers: dict) -> dict:
    """Build the intent section from validated interview answers."""
    chosen = validate_answers(INTENT_QUESTIONS, answers)
    personas_q = next(q for q in INTENT_QUESTIONS if q.id == "personas")
    descriptions = {o.label: o.description for o in personas_q.options}

    likelihood = RISK_LIKELIHOOD[chosen["risk_appetite"][0]]
    business_metrics = []
    if "Fixed deadline" in chosen["business_constraints"]:
        business_metrics.append("Delivered by the agreed deadline")

    return {
        "problem_statement": problem_statement.strip(),
        "user_personas": [
            {"name": label, "description": descriptions.get(label, "")}
            for label in chosen["personas"]
        ],
        "constraints": {
            "technical": chosen["technical_constraints"],
            "compliance": chosen["compliance"],
            "business": chosen["business_constraints"],
        },
        "risks": [
            {
                "description": label,
                "probability": likelihood,
                "impact": "high" if label in ("Data loss", "Security breach") else "medium",
                "mitigation": RISK_MITIGATIONS[label],
            }
            for label in chosen["risks"]
        ],
        "success_metrics": {
            "quantitative": chosen["quantitative_metrics"],
            "qualitative": chosen["qualitative_metrics"],
            "business": business_metrics,
        },
    }
