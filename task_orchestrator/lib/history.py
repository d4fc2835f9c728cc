"""
Failure history formatting for collaborator prompts.

Each retry shows the collaborators what went wrong before, so the next
attempt doesn't repeat the same mistake.
"""

__all__ = ["format_failure_history", "format_scenarios"]


def format_failure_history(failure_log: list | None, limit: int = 10) -> str:
    """
    Format a story's failure log for insertion into a prompt.

    Args:
        failure_log: FailureEntry objects or dicts with attempt/stage/reason/validators
        limit: Only the most recent entries are shown

    Returns:
        Markdown string, empty when there is nothing to report
    """
    if not failure_log:
        return ""

    entries = []
    for entry in failure_log[-limit:]:
        if not isinstance(entry, dict):
            entry = vars(entry)
        attempt = entry.get("attempt", "?")
        stage = entry.get("stage") or "unknown"

        parts = [f"### Attempt {attempt} ({stage})\n"]
        if entry.get("validators"):
            parts.append(f"Failed validators: {', '.join(entry['validators'])}\n")
        parts.append(f"```\n{entry.get('reason', '')}\n```\n")
        entries.append("".join(parts))

    return "## Previous failures\n\n" + "\n".join(entries)


def format_scenarios(scenarios: list | None) -> str:
    """Render Gherkin scenarios as a plain feature block."""
    if not scenarios:
        return "(no scenarios)"

    blocks = []
    for i, scenario in enumerate(scenarios, 1):
        if not isinstance(scenario, dict):
            scenario = vars(scenario)
        lines = [f"Scenario: {scenario.get('name') or f'Scenario {i}'}"]
        for keyword in ("given", "when", "then"):
            steps = scenario.get(keyword, [])
            for j, step in enumerate(steps):
                label = keyword.capitalize() if j == 0 else "And"
                lines.append(f"  {label} {step}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
