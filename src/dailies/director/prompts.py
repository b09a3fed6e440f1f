from __future__ import annotations

from textwrap import dedent
from typing import Any, Dict

from .model import MAX_SCENE_SECONDS

DIRECTOR_SYSTEM_INSTRUCTION = (
    "You are an expert filmmaker. Create a JSON production plan. Keep the subject and environment "
    "descriptions detailed, describe each action clearly, and make every scene look like it was shot "
    "in the exact same location with the exact same characters."
)

TRANSITION_TYPES = ("fade", "fadeblack", "fadewhite", "dissolve", "pixelize", "wipeleft", "wiperight", "slideleft")

_SEGMENT_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "start_time": {"type": "STRING", "description": "MM:SS, relative to the start of the scene"},
        "end_time": {"type": "STRING", "description": "MM:SS, equal to the next segment's start_time"},
        "prompt": {
            "type": "STRING",
            "description": 'Action in this segment. Spoken lines are written as Name says: "line".',
        },
        "camera_movement": {"type": "STRING"},
        "audio_cues": {"type": "STRING"},
    },
    "required": ["start_time", "end_time", "prompt", "camera_movement"],
}

PLAN_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "subject_prompt": {"type": "STRING", "description": "Detailed visual description of the main subject."},
        "environment_prompt": {"type": "STRING", "description": "Detailed description of location and atmosphere."},
        "visual_style": {"type": "STRING", "description": "Cinematic style, lighting and lens details."},
        "reasoning": {"type": "STRING", "description": "Brief explanation of the scene sequence."},
        "scenes": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": {"type": "STRING"},
                    "order": {"type": "INTEGER"},
                    "duration_seconds": {"type": "NUMBER", "description": f"1 to {int(MAX_SCENE_SECONDS)} seconds"},
                    "segments": {"type": "ARRAY", "items": _SEGMENT_SCHEMA},
                    "master_prompt": {
                        "type": "STRING",
                        "description": "Segments combined as '[MM:SS-MM:SS] camera: action' in order",
                    },
                    "transition": {
                        "type": "OBJECT",
                        "properties": {
                            "type": {"type": "STRING", "enum": list(TRANSITION_TYPES)},
                            "duration": {"type": "NUMBER", "description": "Seconds, 0.1 to 2.0"},
                        },
                    },
                },
                "required": ["id", "order", "duration_seconds", "segments"],
            },
        },
    },
    "required": ["subject_prompt", "environment_prompt", "visual_style", "scenes", "reasoning"],
}


def render_planning_prompt(brief: str, has_character_reference: bool = False, has_environment_reference: bool = False) -> str:
    logline = " ".join(brief.split())
    prompt = dedent(
        f"""
        {DIRECTOR_SYSTEM_INSTRUCTION}

        You are a visionary film director and cinematographer.
        Break this narrative into a sequence of scenes: "{logline}".

        Guidelines:
        1. Use as many scenes as the story needs. Each scene lasts at most {int(MAX_SCENE_SECONDS)} seconds.
        2. Split each scene into contiguous timestamped segments (MM:SS, starting at 00:00 inside the scene).
        3. The subject must be consistent across all scenes; the environment stays stable but may be seen from different angles.
        4. Vary the camera angles (wide, medium, close-up) to keep the sequence dynamic.
        5. Give every scene except the last a transition into the next one; its duration must be shorter than both scenes.
        6. Write dialogue as: Name says: "line".
        """
    ).strip()
    if has_character_reference:
        prompt += "\nThe user supplied a reference photo of the main character; describe it faithfully."
    if has_environment_reference:
        prompt += "\nThe user supplied a reference photo of the location; describe it faithfully."
    return prompt
