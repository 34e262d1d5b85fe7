"""
Meeting transcript → action items.

Flow:
  1. TranscriptExtractor sends the transcript and the team roster to a
     hosted chat-completions model and gets back a JSON array
  2. parse_extraction_response validates it (all or nothing)
  3. propose_assignments resolves each raw assignee name to a member
  4. TranscriptReview lets the user edit/drop/reassign, then commits the
     batch into the board's "To Do" column

The model is untrusted: a malformed reply fails the whole extraction
and nothing is added to the board.
"""
import json
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence

import requests

from .config import Config
from .resolver import resolve
from .schema import Column, MemberProfile, Scope, ValidationError
from .store import BoardStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
TODO_COLUMN_NAME = "to do"


class ExtractionError(Exception):
    """Raised when the extraction service cannot be reached or refuses the request."""
    pass


class ExtractionParseError(ExtractionError):
    """Raised when the service reply is not a well-formed task list."""
    pass


# System prompt for transcript extraction; {members} is the roster block
EXTRACTION_PROMPT = """You are an expert at extracting action items and tasks from meeting transcripts.

Your job is to:
1. Identify all action items, tasks, and to-dos mentioned in the transcript
2. Determine who each task is assigned to (if mentioned)
3. Return structured JSON output

Rules:
- Extract only concrete, actionable tasks
- If a task mentions a person's name, put it in "assigneeName" exactly as it was said
- If no assignee is clear, set "assigneeName" to null
- Keep task titles short: 5-15 words
- Ignore general discussion that doesn't result in an action item
- Look for phrases like "will do", "should", "needs to", "action item", "TODO", "assigned to", "take care of"
- Write task titles in the language of the transcript

Team members available for assignment:
{members}

Respond with ONLY a JSON array, no markdown, no explanation. Example:
[
  {{"title": "Set up the database schema", "assigneeName": "Alex", "confidence": 0.9}},
  {{"title": "Review the auth PR", "assigneeName": null, "confidence": 0.7}}
]"""


@dataclass(frozen=True)
class ExtractedTask:
    """One item as the model returned it."""
    title: str
    assignee_name_raw: Optional[str]
    confidence: float


@dataclass(frozen=True)
class ProposedTask:
    """An extracted task with its resolved assignee, pending user review."""
    title: str
    assignee_id: Optional[str]
    assignee_name: Optional[str]
    raw_name: Optional[str]
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "assignee": self.assignee_id,
            "assignee_name": self.assignee_name,
            "raw_name": self.raw_name,
            "confidence": self.confidence,
        }


def format_roster(roster: Sequence[MemberProfile]) -> str:
    lines = [f"- {m.display_name} ({m.email})" for m in roster]
    return "\n".join(lines) or "No team members provided"


def build_messages(transcript: str, roster: Sequence[MemberProfile]) -> List[Dict[str, str]]:
    """Chat messages for one extraction request."""
    user_prompt = (
        "Extract action items from this meeting transcript:\n\n"
        f"---\n{transcript}\n---\n\n"
        "Return ONLY a valid JSON array."
    )
    return [
        {"role": "system", "content": EXTRACTION_PROMPT.format(members=format_roster(roster))},
        {"role": "user", "content": user_prompt},
    ]


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r'^```(?:json)?\s*', '', text)
        text = re.sub(r'\s*```$', '', text)
    return text.strip()


def parse_extraction_response(response: str) -> List[ExtractedTask]:
    """
    Parse the model's reply into tasks.

    Raises ExtractionParseError unless the whole reply is a JSON array of
    {"title": str, "assigneeName": str|null, "confidence": number in [0, 1]}.
    """
    if not isinstance(response, str):
        raise ExtractionParseError("Response is not text")
    try:
        data = json.loads(_strip_fences(response))
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ExtractionParseError("Response must be a JSON array of tasks")

    tasks = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ExtractionParseError(f"Task {index} is not an object")

        title = item.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ExtractionParseError(f"Task {index} has no title")

        name = item.get("assigneeName")
        if name is not None and not isinstance(name, str):
            raise ExtractionParseError(f"Task {index} has a non-string assigneeName")

        confidence = item.get("confidence", DEFAULT_CONFIDENCE)
        if confidence is None:
            confidence = DEFAULT_CONFIDENCE
        # bool is an int subclass; reject it explicitly
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ExtractionParseError(f"Task {index} has a non-numeric confidence")
        if not 0.0 <= confidence <= 1.0:
            raise ExtractionParseError(f"Task {index} confidence {confidence} is outside [0, 1]")

        tasks.append(ExtractedTask(
            title=title.strip(),
            assignee_name_raw=(name.strip() or None) if name else None,
            confidence=float(confidence),
        ))
    return tasks


def propose_assignments(tasks: Sequence[ExtractedTask],
                        roster: Sequence[MemberProfile]) -> List[ProposedTask]:
    """Resolve each task's raw assignee name against the roster."""
    proposals = []
    for task in tasks:
        member = resolve(task.assignee_name_raw, roster)
        proposals.append(ProposedTask(
            title=task.title,
            assignee_id=member.member_id if member else None,
            assignee_name=member.display_name if member else None,
            raw_name=task.assignee_name_raw,
            confidence=task.confidence,
        ))
    return proposals


def pick_import_column(columns: Sequence[Column]) -> Column:
    """The "To Do" column (any case), else the leftmost column."""
    if not columns:
        raise ValidationError("There are no columns. Create a column first.")
    for column in columns:
        if column.name.strip().lower() == TODO_COLUMN_NAME:
            return column
    return min(columns, key=lambda c: c.order)


class TranscriptExtractor:
    """Client for the hosted extraction model."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def extract(self, transcript: str, roster: Sequence[MemberProfile]) -> List[ExtractedTask]:
        """Send one request and return the validated task list."""
        if not transcript or not transcript.strip():
            raise ValidationError("Paste a meeting transcript first")

        api_key = self.config.llm_api_key
        if not api_key:
            raise ExtractionError(
                f"Extraction API key not configured (set {self.config.llm_api_key_env})"
            )

        url = self.config.llm_base_url.rstrip("/") + "/chat/completions"
        payload = {
            "model": self.config.llm_model,
            "messages": build_messages(transcript, roster),
            "max_tokens": self.config.llm_max_tokens,
        }
        try:
            r = self.session.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=self.config.llm_timeout,
            )
            r.raise_for_status()
            body = r.json()
        except requests.RequestException as e:
            logger.error(f"Extraction request failed: {e}")
            raise ExtractionError(f"Failed to reach the extraction service: {e}") from e
        except ValueError as e:
            raise ExtractionParseError(f"Extraction service returned non-JSON body: {e}") from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionParseError(f"Unexpected completion shape: {e}") from e

        try:
            tasks = parse_extraction_response(content or "")
        except ExtractionParseError:
            logger.error(f"Failed to parse extraction response: {str(content)[:200]!r}")
            raise
        logger.info(f"Extracted {len(tasks)} tasks from transcript ({len(transcript)} chars)")
        return tasks

    def propose(self, transcript: str, roster: Sequence[MemberProfile]) -> List[ProposedTask]:
        """Extract and resolve assignees in one step."""
        return propose_assignments(self.extract(transcript, roster), roster)


class TranscriptReview:
    """
    Proposed tasks the user confirms or edits before anything is created.
    """

    def __init__(self, proposals: Sequence[ProposedTask], roster: Sequence[MemberProfile]):
        self.proposals: List[ProposedTask] = list(proposals)
        self.roster = list(roster)

    def edit_title(self, index: int, title: str) -> None:
        self.proposals[index] = replace(self.proposals[index], title=title)

    def set_assignee(self, index: int, member_id: Optional[str]) -> None:
        member = next((m for m in self.roster if m.member_id == member_id), None)
        if member_id is not None and member is None:
            raise ValidationError(f"{member_id} is not on this team")
        self.proposals[index] = replace(
            self.proposals[index],
            assignee_id=member.member_id if member else None,
            assignee_name=member.display_name if member else None,
        )

    def remove(self, index: int) -> None:
        del self.proposals[index]

    def commit(self, store: BoardStore, scope: Scope, columns: Sequence[Column]) -> List[str]:
        """Create every remaining task in the import column. Returns the new card ids."""
        items = [
            {"title": p.title.strip(), "assignee": p.assignee_id}
            for p in self.proposals if p.title and p.title.strip()
        ]
        if not items:
            raise ValidationError("No action items found in the transcript")
        column = pick_import_column(columns)
        return store.create_card_batch(scope, items, column.column_id)
