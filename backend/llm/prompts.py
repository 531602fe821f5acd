"""
Prompt builders for the two reasoning-service calls
"""

from typing import Dict, List, Optional, Sequence

from models.entities import Project
from models.tracking import ScreenSample

OCR_PROMPT_LIMIT = 500

CHANGE_DETECTION_SYSTEM_PROMPT = """You detect changes in a user's work context.
Compare two observations of the user's screen and decide whether the work itself meaningfully changed.

Answer with JSON only:
{
  "hasChange": true or false,
  "confidence": number from 0 to 100,
  "reasoning": "short reason"
}

Counts as a change:
- a file from a different project was opened
- a different website is being browsed
- the user switched to a different task

Does not count as a change:
- scrolling within the same document
- navigating between pages of the same site
- a window title that only changed slightly"""

PROJECT_JUDGMENT_SYSTEM_PROMPT = """You are a time tracking assistant.
Decide which project the user is currently working on from their screen context.

Registered projects:
{project_list}

Answer with JSON only:
{{
  "projectId": "id of the matching project, or null if none match",
  "confidence": confidence score from 0 to 100,
  "reasoning": "one or two short sentences",
  "isWork": true or false (whether this is work at all),
  "alternatives": [
    {{"projectId": "id of another candidate", "score": 0-100}}
  ]
}}

Hints:
- a project or client name in the window title means high confidence
- the URL can identify the project
- development and design tools suggest the kind of work being done
- video sites and social networks are most likely not work"""


def _describe(sample: ScreenSample) -> List[str]:
    return [
        f"- App: {sample.app_name or 'unknown'}",
        f"- Window: {sample.window_title or 'unknown'}",
        f"- URL: {sample.url or 'none'}",
    ]


def build_change_detection_messages(
    previous: ScreenSample, current: ScreenSample
) -> List[Dict[str, str]]:
    user_prompt = "\n".join(
        ["Previous state:"]
        + _describe(previous)
        + ["", "Current state:"]
        + _describe(current)
        + ["", "Did the work context meaningfully change?"]
    )
    return [
        {"role": "system", "content": CHANGE_DETECTION_SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def format_project_list(projects: Sequence[Project]) -> str:
    return "\n".join(
        f'- ID: {p.id}, Name: "{p.name}", Client: "{p.client_name or "unknown"}"'
        for p in projects
    )


def build_project_judgment_messages(
    sample: ScreenSample,
    projects: Sequence[Project],
    ocr_text: Optional[str] = None,
) -> List[Dict[str, str]]:
    lines = ["Current work state:"] + _describe(sample)
    text = ocr_text if ocr_text is not None else sample.ocr_text
    if text:
        lines.append(f"- Screen text: {text[:OCR_PROMPT_LIMIT]}")
    lines += ["", "Which project is the user working on?"]

    return [
        {
            "role": "system",
            "content": PROJECT_JUDGMENT_SYSTEM_PROMPT.format(
                project_list=format_project_list(projects)
            ),
        },
        {"role": "user", "content": "\n".join(lines)},
    ]
