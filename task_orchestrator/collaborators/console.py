"""Console question agent for interactive planning."""

from typing import Callable

from task_orchestrator.lib.questions import Question, QuestionKind


class ConsoleQuestionAgent:
    """Asks typed questions on the terminal.

    Options are numbered; multi-select answers are comma separated
    numbers. Invalid input is asked again.
    """

    def __init__(self, input_fn: Callable[[str], str] = input, output_fn: Callable[[str], None] = print):
        self.input_fn = input_fn
        self.output_fn = output_fn

    def ask(self, questions: list[Question]) -> dict[str, list[str]]:
        answers = {}
        for question in questions:
            answers[question.id] = self._ask_one(question)
        return answers

    def _ask_one(self, question: Question) -> list[str]:
        multi = question.kind is QuestionKind.MULTI_SELECT
        self.output_fn("")
        self.output_fn(question.prompt + (" (comma separated)" if multi else ""))
        for i, option in enumerate(question.options, 1):
            suffix = f" - {option.description}" if option.description else ""
            self.output_fn(f"  {i}. {option.label}{suffix}")

        while True:
            raw = self.input_fn("> ").strip()
            if not raw and not question.required:
                return []
            try:
                picks = [int(part) for part in raw.split(",") if part.strip()]
            except ValueError:
                self.output_fn("Enter option numbers.")
                continue
            if not picks or any(p < 1 or p > len(question.options) for p in picks):
                self.output_fn(f"Choose between 1 and {len(question.options)}.")
                continue
            if not multi and len(picks) != 1:
                self.output_fn("Choose exactly one option.")
                continue
            return [question.options[p - 1].label for p in picks]
