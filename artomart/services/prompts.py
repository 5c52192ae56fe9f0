"""Structured prompt templates for agent archetypes.

Rendering is a pure function of the template and its inputs, so identical
inputs always produce identical messages and the same fingerprint.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

Message = Dict[str, str]


@dataclass(frozen=True)
class PromptTemplate:
    """Role framing, a slot for the user's text, and fixed guidelines."""

    role_framing: str
    user_text_slot: str = 'User message: "{user_text}"'
    guidelines: Tuple[str, ...] = ()

    def system_text(self) -> str:
        parts = [self.role_framing]
        if self.guidelines:
            parts.append("Guidelines:\n" + "\n".join(f"- {line}" for line in self.guidelines))
        return "\n\n".join(parts)

    def render(self, user_text: str, context_hints: Optional[Mapping[str, Any]] = None) -> List[Message]:
        """Build chat messages for a free-text request."""
        messages: List[Message] = [{"role": "system", "content": self.system_text()}]
        history = list((context_hints or {}).get("history", ()))
        for turn in history:
            role = "assistant" if turn.get("role") == "agent" else "user"
            messages.append({"role": role, "content": str(turn.get("text", ""))})
        extra = {key: value for key, value in (context_hints or {}).items() if key != "history"}
        user_content = self.user_text_slot.format(user_text=user_text)
        if extra:
            user_content += "\n\nContext: " + _canonical_json(extra)
        messages.append({"role": "user", "content": user_content})
        return messages

    def render_structured(
        self,
        action: str,
        payload: Mapping[str, Any],
        instruction: str,
        required_fields: Sequence[str] = (),
    ) -> List[Message]:
        """Build messages asking the model for a JSON object."""
        lines = [
            instruction,
            f"Action: {action}",
            "Input: " + _canonical_json(dict(payload)),
            "Respond with a single JSON object and nothing else.",
        ]
        if required_fields:
            lines.append("Required top-level keys: " + ", ".join(required_fields))
        return [
            {"role": "system", "content": self.system_text()},
            {"role": "user", "content": "\n".join(lines)},
        ]


def fingerprint(messages: Sequence[Message], **params: Any) -> str:
    """Stable hash of rendered messages plus generation parameters."""
    blob = _canonical_json({"messages": list(messages), "params": params})
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)
