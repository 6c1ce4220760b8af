"""
Plan Generator (LLM collaborator)

Produces training-plan structures and workouts with the OpenAI chat API.
Nothing here touches the database: callers hand in plain context objects
and receive unsaved dataclasses, so a job can build its full result before
writing anything.

Any failure (transport, refusal, malformed or incomplete JSON) surfaces as
GenerationFailure with an operator-readable message.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import OpenAI

from core.config import settings
from core.exceptions import GenerationFailure
from services.llm_json import coerce_int, extract_json_object

logger = logging.getLogger(__name__)


@dataclass
class PlanContext:
    """Everything the model sees about the client."""
    client_name: str
    questionnaire: Dict[str, Any]
    questionnaire_notes: Optional[str] = None
    body_composition: Optional[Dict[str, Any]] = None


@dataclass
class GeneratedWorkout:
    week_number: int
    session_number: int
    workout_name: Optional[str]
    workout_data: Dict[str, Any]
    workout_reasoning: Optional[str] = None


@dataclass
class PlanStructure:
    client_type: Optional[str]
    sessions_per_week: Optional[int]
    session_length_minutes: Optional[int] = None
    training_style: Optional[str] = None
    plan_structure: Dict[str, Any] = field(default_factory=dict)
    ai_reasoning: Optional[str] = None


@dataclass
class WeekContext:
    """Input for generating one later week of an existing plan."""
    plan: PlanContext
    structure: PlanStructure
    week_number: int
    # [{"week_number": 1, "workouts": [{"session_number":..,"status":..,"workout_data":..,"performance_notes":..}]}]
    previous_weeks: List[Dict[str, Any]] = field(default_factory=list)


SYSTEM_PROMPT = (
    "You are an experienced strength and conditioning coach writing programs for personal trainers. "
    "You MUST respond with ONLY valid JSON. No markdown code blocks, no explanations."
)


def _parse_workouts(data: Dict[str, Any]) -> List[GeneratedWorkout]:
    raw = data.get("workouts")
    if not isinstance(raw, list):
        raise GenerationFailure("Model response is missing a 'workouts' list")

    workouts: List[GeneratedWorkout] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        workout_data = item.get("workout_data")
        workouts.append(
            GeneratedWorkout(
                week_number=coerce_int(item.get("week_number")) or 0,
                session_number=coerce_int(item.get("session_number")) or 0,
                workout_name=item.get("workout_name"),
                workout_data=workout_data if isinstance(workout_data, dict) else {},
                workout_reasoning=item.get("workout_reasoning"),
            )
        )
    return workouts


class PlanGenerator:
    """OpenAI-backed generation of plan structures and weekly workouts."""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.OPENAI_MODEL

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise GenerationFailure("OPENAI_API_KEY not configured")
            self._client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_S)
        return self._client

    def _chat_json(self, prompt: str, max_tokens: int = 4000) -> Dict[str, Any]:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_completion_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except GenerationFailure:
            raise
        except Exception as e:
            logger.error(f"OpenAI plan generation request failed: {e}")
            raise GenerationFailure(f"OpenAI request failed: {e}")

        if not response.choices:
            raise GenerationFailure("No response from OpenAI")
        return extract_json_object(response.choices[0].message.content)

    def generate_plan_structure(self, context: PlanContext) -> PlanStructure:
        prompt = f"""Design a 6-week training plan for {context.client_name}.

Questionnaire answers:
{json.dumps(context.questionnaire, default=str)}

Trainer notes: {context.questionnaire_notes or "none"}

Latest body composition scan:
{json.dumps(context.body_composition, default=str) if context.body_composition else "not available"}

Return a JSON object:
{{
  "client_type": string,
  "sessions_per_week": integer,
  "session_length_minutes": integer,
  "training_style": string,
  "plan_structure": {{"weeks": [{{"week_number": integer, "focus": string}}]}},
  "ai_reasoning": string
}}"""
        data = self._chat_json(prompt, max_tokens=2000)
        plan_structure = data.get("plan_structure")
        return PlanStructure(
            client_type=data.get("client_type"),
            sessions_per_week=coerce_int(data.get("sessions_per_week")),
            session_length_minutes=coerce_int(data.get("session_length_minutes")),
            training_style=data.get("training_style"),
            plan_structure=plan_structure if isinstance(plan_structure, dict) else {},
            ai_reasoning=data.get("ai_reasoning"),
        )

    def generate_workouts(
        self,
        structure: PlanStructure,
        context: PlanContext,
        week_number: int = 1,
    ) -> List[GeneratedWorkout]:
        """Workouts for the first week of a freshly structured plan."""
        prompt = f"""Write the Week {week_number} workouts for {context.client_name}.

Plan structure:
{json.dumps(structure.__dict__, default=str)}

Questionnaire answers:
{json.dumps(context.questionnaire, default=str)}

Return exactly {structure.sessions_per_week} workouts as JSON:
{{
  "workouts": [
    {{
      "week_number": {week_number},
      "session_number": integer starting at 1,
      "workout_name": string,
      "workout_data": {{"exercises": [{{"name": string, "sets": integer, "reps": string, "rir": integer, "rest_seconds": integer}}]}},
      "workout_reasoning": string
    }}
  ]
}}"""
        return _parse_workouts(self._chat_json(prompt))

    def generate_week_workouts(self, context: WeekContext) -> List[GeneratedWorkout]:
        """Workouts for a later week, progressed from what the client actually did."""
        prompt = f"""Write the Week {context.week_number} workouts for {context.plan.client_name}.

Plan structure:
{json.dumps(context.structure.__dict__, default=str)}

Previous weeks (prescribed workouts, their status and the client's performance):
{json.dumps(context.previous_weeks, default=str)}

Progress load and volume based on performance. Skipped sessions mean the client
missed that stimulus; do not progress those movements aggressively.

Return exactly {context.structure.sessions_per_week} workouts as JSON:
{{
  "workouts": [
    {{
      "week_number": {context.week_number},
      "session_number": integer starting at 1,
      "workout_name": string,
      "workout_data": {{"exercises": [{{"name": string, "sets": integer, "reps": string, "rir": integer, "rest_seconds": integer}}]}},
      "workout_reasoning": string
    }}
  ]
}}"""
        return _parse_workouts(self._chat_json(prompt))
