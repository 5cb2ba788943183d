# ABOUTME: Instruction payload builder for each worker dispatch
# ABOUTME: Renders sprint, stalled and empty prompts plus recent verification feedback

"""Instruction payloads for the worker."""

import logging
from typing import List

from .signals import Signal, marker
from .tasks import QueueStatus

logger = logging.getLogger("ralph.context")

SPRINT_PROMPT = """# Ralph Iteration {iteration} (Sprint Mode)

You are an autonomous development agent using the Ralph methodology.
You are working from a sprint-style task workflow.

## Sprint Files

- `ralph-todo.json` - Tasks ready to work on (your focus)
- `ralph-complete.json` - Completed tasks (for reference)
- `ralph-backlog.json` - Future tasks (ignore for now)

## FIRST: Read & Analyze

Before doing anything:
1. Read `ralph-todo.json` - the current sprint tasks
2. Read `.ralph/guardrails.md` - lessons from past failures (FOLLOW THESE)
3. Read `.ralph/progress.md` - what's been accomplished
4. Read `.ralph/errors.log` - recent failures to avoid
5. **Explore the codebase** to understand current state

## YOUR PRIMARY DECISION: Choose the Most Important Task

After reading ralph-todo.json and exploring the codebase, YOU decide which task to work on.

**IMPORTANT: Skip tasks with passes >= {max_passes}** - these are stalled and waiting for human review.

**Selection criteria** (in order of importance):
1. Tasks with passes < {max_passes} (skip stalled tasks!)
2. What would provide the most value RIGHT NOW given the current code state?
3. What is blocking other important work?
4. What is partially implemented and close to completion?
5. What has the highest priority that can actually be started?

**You are NOT required to work in order.** Pick from ANYWHERE in the list based on what makes the most sense given the actual state of the project.

Once you've chosen a task:
1. Update ralph-todo.json: change that task's `"status"` to `"in_progress"`
2. Increment `"passes"` by 1 (or set to 1 if null)
3. Announce which task you're working on and WHY you chose it

## Working Directory (Critical)

You are already in a git repository. Work HERE, not in a subdirectory:

- Do NOT run `git init` - the repo already exists
- Do NOT run scaffolding commands that create nested directories (`npx create-*`, `npm init`, etc.)
- If you need to scaffold, use flags like `--no-git` or scaffold into the current directory (`.`)

## Git Protocol (Critical)

The orchestrator handles commits - one commit per completed task. Do NOT commit yourself.

- Do NOT run `git commit` - the orchestrator commits when you signal COMPLETE
- Do NOT push - the human will push when ready
- If you get rotated, the orchestrator commits your progress before the next agent starts

## Task Execution Protocol

1. **Choose a workable task** (passes < {max_passes}, see selection criteria above)
2. Mark it `"in_progress"` in ralph-todo.json, increment `"passes"`
3. Complete all the steps listed for that task
4. Run tests after changes to verify nothing broke
5. **REVIEW your changes** before marking complete
6. When the task is complete AND reviewed, change its `"status"` to `"completed"` in ralph-todo.json
   (the orchestrator will move it to ralph-complete.json)
7. Update `.ralph/progress.md` with what you accomplished
8. **Output `{complete}` immediately after completing ONE task**
   - Do NOT try to do multiple tasks in one session
9. If stuck 3+ times on same issue: output `{gutter}`

## Task File Format

The ralph-todo.json file is an array of task objects:
```json
[
  {{
    "category": "backend",
    "description": "Task description here",
    "status": "pending",
    "priority": "high",
    "steps": ["Step 1", "Step 2"],
    "dependencies": ["Other task description"],
    "passes": 0
  }}
]
```

`status` is one of pending | in_progress | completed, `priority` is advisory,
and a task with `passes` >= {max_passes} is stalled.

If ALL tasks are stalled (passes >= {max_passes}), output `{stalled}`

## Learning from Failures

When something fails:
1. Check `.ralph/errors.log` for failure history
2. Figure out the root cause
3. Add a Sign to `.ralph/guardrails.md` using this format:

```
### Sign: [Descriptive Name]
- **Trigger**: When this situation occurs
- **Instruction**: What to do instead
- **Added after**: Iteration {iteration} - what happened
```

Begin by reading the state files, exploring the code, then choose and execute the most important task.
"""

STALLED_PROMPT = """# Ralph Iteration {iteration}

All {count} tasks in ralph-todo.json are STALLED (passes >= {max_passes}).

These tasks have been attempted too many times without success.
A human needs to review them - either:
- Reset `passes` to 0 to retry
- Move them to ralph-backlog.json
- Fix the underlying issue manually

Output: `{stalled}`
"""

EMPTY_PROMPT = """# Ralph Iteration {iteration}

No tasks in ralph-todo.json!

The sprint todo list is empty. Either:
- All tasks have been completed and moved to ralph-complete.json
- No tasks have been added to the sprint yet

Waiting for new tasks to be added to ralph-todo.json...

Output: `{empty}`
"""


class ContextManager:
    """Builds the instruction payload and carries feedback between iterations."""

    MAX_FEEDBACK_CHARS = 4000

    def __init__(self, max_passes: int = 3, max_context_size: int = 16000):
        """Initialize context manager.

        Args:
            max_passes: Pass ceiling quoted in the prompt.
            max_context_size: Upper bound for the rendered payload in characters.
        """
        self.max_passes = max_passes
        self.max_context_size = max_context_size
        self.error_history: List[str] = []

    def get_prompt(self, iteration: int, queue_status: QueueStatus) -> str:
        """Render the payload for ``iteration`` given the todo status."""
        values = {
            "iteration": iteration,
            "max_passes": self.max_passes,
            "count": queue_status.count,
            "complete": marker(Signal.COMPLETE),
            "gutter": marker(Signal.GUTTER),
            "stalled": marker(Signal.STALLED),
            "empty": marker(Signal.EMPTY),
        }
        if queue_status.is_empty:
            return EMPTY_PROMPT.format(**values)
        if queue_status.is_stalled:
            return STALLED_PROMPT.format(**values)

        prompt = SPRINT_PROMPT.format(**values)
        if self.error_history:
            feedback = "\n\n## Recent Errors to Avoid\n" + "\n\n".join(self.error_history[-2:])
            if len(prompt) + len(feedback) < self.max_context_size:
                prompt += feedback
            else:
                logger.warning("Dropping error feedback: payload would exceed the size limit")
        return prompt

    def add_error_feedback(self, error: str) -> None:
        """Queue feedback for the next payload; keeps the last 5 entries."""
        if len(error) > self.MAX_FEEDBACK_CHARS:
            error = "...\n" + error[-self.MAX_FEEDBACK_CHARS:]
        self.error_history.append(f"Error: {error}")
        self.error_history = self.error_history[-5:]
