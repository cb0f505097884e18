# goalcoach/prompts.py
from typing import Any

COACH_INSTRUCTIONS = """
You are an expert goal coach. You help people turn vague intentions into specific,
measurable, time-boxed plans. Be concrete and brief.
"""

PLANNER_INSTRUCTIONS = """
You are a task planning assistant. You break goals into small, ordered, actionable
steps with realistic timelines.
"""

SUGGESTION_INSTRUCTIONS = """
You are a task management expert.
- Identify the task domain (health / learning / work / other) before answering.
- Flag anything in the user's situation that makes a proposal risky.
- Always offer exactly 3 alternative paths: conservative, balanced, aggressive.
"""


ANALYSIS_PROMPT = """
Given a goal and its context, analyze it and provide structured feedback.

Consider these aspects:
1. Specificity - Is the goal clear and measurable?
2. Timeline - Are there clear deadlines or milestones?
3. Achievability - Is it realistic given the context?
4. Relevance - Is it meaningful and motivating?
5. Trackability - Can progress be measured?

Goal: "{GOAL_TITLE}"
{GOAL_DESCRIPTION}

Context:
{PREVIOUS_ANSWERS}

Current step: {CURRENT_STEP}

Return a JSON object with this exact structure:
{
  "completeness": number (0-100),
  "needsClarification": boolean,
  "insights": string,
  "category": string,
  "missingElements": [string],
  "suggestedQuestions": [
    {
      "id": string,
      "text": string,
      "type": "choice" | "yes_no" | "multiple_choice" | "text",
      "purpose": string,
      "options": [{"id": string, "text": string, "emoji": string}],
      "priority": number (1-5)
    }
  ],
  "suggestedTasks": [
    {"title": string, "timeline": string, "priority": "high" | "medium" | "low"}
  ]
}
"""


NEXT_QUESTION_PROMPT = """
Based on this goal and context, generate the single most important clarifying question to ask next.

Goal: {GOAL_TITLE}
Category: {CATEGORY}
Missing Elements: {MISSING_ELEMENTS}
Previous Questions:
{PREVIOUS_QUESTIONS}

Relevant history:
{RELEVANT_CONTEXT}

If the goal is already specific enough to plan, return null.
Otherwise return a single question object:
{
  "id": string,
  "text": string,
  "type": "text" | "choice" | "multiple_choice" | "yes_no",
  "options": [string],
  "purpose": string,
  "priority": number (1-5)
}
"""


TASK_PLAN_PROMPT = """
Create a task plan for this goal based on all collected information.

Goal: {GOAL_TITLE}
Selected approach: {SELECTED_OPTION}
Task type: {TASK_TYPE}

User profile:
{USER_PROFILE}

Collected information:
{RELEVANT_CONTEXT}

Generate a list of tasks that:
1. Break the goal down into manageable steps
2. Include specific timelines
3. Consider dependencies between tasks
4. Prioritize tasks appropriately
5. Are specific and actionable

Return a JSON array of task objects:
[
  {
    "id": string,
    "title": string,
    "description": string,
    "timeline": string,
    "priority": "high" | "medium" | "low",
    "dependencies": [string]
  }
]
"""


DETAILED_PLAN_PROMPT = """
Process the task "{GOAL_TITLE}" using the selected approach: "{SELECTED_OPTION}".
Task type: {TASK_TYPE}

User profile:
{USER_PROFILE}

Relevant history:
{RELEVANT_CONTEXT}

Answer in this exact layout:

## <plan title>
### Approach
<one or two sentences on how the plan works>
### Notes
<risks or things to watch out for>
### Subtasks
- <short action, 30 characters max>
- <4 to 6 items in total>
"""


FEEDBACK_PROMPT = """
Review this feedback and suggest improvements to the task plan.

Goal: {GOAL_TITLE}
Current Tasks:
{CURRENT_TASKS}

Feedback: {FEEDBACK}

Previous feedback and answers:
{RELEVANT_CONTEXT}

Consider:
1. The user's specific concerns
2. Previous feedback history
3. Goal context and category ({CATEGORY})
4. Task dependencies and timeline

Return:
{
  "updatedTasks": [Task],
  "suggestions": [string],
  "confidenceLevel": number (0-1)
}
"""


SUGGESTION_PROMPT = """
Please process the task "{TASK_TITLE}".

[User Profile]
{USER_PROFILE}

[Task Context]
* Explicit need: {TASK_TITLE}
* Implicit needs: {IMPLICIT_NEEDS}
* Task type: {TASK_TYPE}
* Recent feedback: {RECENT_FEEDBACK}

[History]
{CONTEXT_HISTORY}

[Output]
Give exactly 3 different options, one per line, numbered 1-3.
Each line is "<name>(<rationale>)": a 2-6 word name and a short rationale in parentheses.
No headings, no introduction, nothing else.
"""


# -----------------------
# Task type detection
# -----------------------

TASK_TYPES: dict[str, tuple[str, ...]] = {
    "work": ("work", "job", "project", "deadline", "meeting", "presentation", "client", "report", "email"),
    "learning": ("learn", "study", "course", "read", "book", "education", "skill", "practice", "knowledge"),
    "health": ("health", "exercise", "workout", "diet", "nutrition", "medical", "doctor", "fitness", "wellbeing"),
}


def detect_task_type(task_title: str) -> str:
    lower = (task_title or "").lower()
    for task_type, keywords in TASK_TYPES.items():
        if any(k in lower for k in keywords):
            return task_type
    return "other"


# -----------------------
# User profile
# -----------------------

def _join(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v)
    return str(value) if value else ""


def render_user_profile(profile: dict | None, recent_feedback: str | None = None) -> str:
    """
    Profile dict (camelCase keys, as sent by the client) -> the four-line block
    the prompts expect. Missing fields are simply left out.
    """
    profile = profile or {}
    basic = [
        f"{label} {profile[key]}"
        for key, label in (("age", "Age"), ("occupation", "Occupation"), ("location", "Location"),
                           ("height", "Height"), ("weight", "Weight"))
        if profile.get(key)
    ]
    abilities = [
        f"{label}: {_join(profile[key])}"
        for key, label in (("strengths", "Strengths"), ("weaknesses", "Weaknesses"))
        if profile.get(key)
    ]
    conditions = [
        f"{label}: {_join(profile[key])}"
        for key, label in (("healthConditions", "Health"), ("workConditions", "Work"),
                           ("learningConditions", "Learning"))
        if profile.get(key)
    ]
    history = _join(profile.get("history")) or recent_feedback or "No history"

    return "\n".join([
        "- Basic information: " + (", ".join(basic) or "Not provided"),
        "- Abilities: " + (", ".join(abilities) or "Not provided"),
        "- Special conditions: " + (", ".join(conditions) or "No special conditions"),
        "- History: " + history,
    ])
