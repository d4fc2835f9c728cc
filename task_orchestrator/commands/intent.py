"""
task-orchestrator intent - Capture the problem framing.

Asks the intent interview (personas, constraints, risks, success metrics)
and merges the answers into the document's intent section, then completes
the intent_complete phase. Answers can come from a YAML/JSON file instead
of the console:

    personas: [Developer, End user]
    risk_appetite: balanced
    ...
"""

from pathlib import Path

import yaml

from task_orchestrator.collaborators.base import QuestionAgent
from task_orchestrator.collaborators.console import ConsoleQuestionAgent
from task_orchestrator.commands.common import open_workspace
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.document import merge_intent
from task_orchestrator.lib.questions import INTENT_QUESTIONS, AnswerError, intent_fields_from_answers

INTENT_PHASE = "intent_complete"


def _load_answers(path: Path) -> dict:
    data = yaml.safe_load(Path(path).read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: answers must be a mapping of question ID to answer")
    return data


def cmd_intent(args, settings: WorkflowSettings, agent: QuestionAgent | None = None) -> int:
    """Run the intent interview and merge the result."""
    ws = open_workspace(settings)
    ws.require_session()
    ws.gate.enter(INTENT_PHASE)
    doc = ws.load()

    problem = args.problem
    if not problem:
        problem = input("Problem statement: ").strip()
    if not problem:
        print("ERROR: A problem statement is required")
        return 2

    if args.answers:
        answers = _load_answers(args.answers)
    else:
        answers = (agent or ConsoleQuestionAgent()).ask(INTENT_QUESTIONS)

    try:
        fields = intent_fields_from_answers(problem, answers)
    except AnswerError as e:
        print(f"ERROR: {e}")
        return 2

    updated = merge_intent(doc, fields, overwrite=args.force)
    ws.save(updated)
    ws.gate.complete(INTENT_PHASE)

    print(f"Intent captured: {len(fields['user_personas'])} personas, {len(fields['risks'])} risks")
    print("Next: task-orchestrator set-phase prd_complete")
    return 0
