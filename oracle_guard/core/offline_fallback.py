"""
Offline template answers.

Deterministic, rule-based stand-ins for the language model, used when no
backend is reachable. Every function here is pure: the same input always
yields the same text, which keeps degraded runs replayable.
"""

import json
from typing import List, Tuple

from .results import CallType

# (keyword, template) pairs are checked in order; first match wins
PROBLEM_TEMPLATES: List[Tuple[str, str]] = [
    ("RESOURCE_SCARCITY", "Resources are becoming scarce. We must act quickly to prevent shortages."),
    ("FACTION_CONFLICT", "Tensions between factions are rising. Political divisions threaten unity."),
    ("MORAL_CRISIS", "The settlement faces a moral dilemma. Values are at stake."),
    ("PERSONAL_GRIEVANCE", "An individual harbors resentment. Personal matters affect the community."),
]
DEFAULT_PROBLEM_TEMPLATE = "The settlement faces an uncertain situation. Careful leadership is needed."

DECISION_KEYWORDS: List[Tuple[Tuple[str, ...], str, float]] = [
    (("allocate", "give"), "allocate", 0.8),
    (("delegate", "assign"), "delegate", 0.75),
    (("negotiate", "talk"), "negotiate", 0.7),
    (("inspire", "motivate"), "inspire", 0.8),
    (("suppress", "restrict"), "suppress", 0.7),
]

WORLD_STATE_CUES: List[Tuple[str, str]] = [
    ('"food"', "Food resources are noteworthy."),
    ('"conflict"', "Faction tensions are rising."),
    ('"immigration"', "Population changes affecting settlement."),
    ('"religion"', "Religious movements reshaping society."),
]

CRISIS_TEMPLATES: List[Tuple[Tuple[str, ...], str]] = [
    (("famine", "food"), "The settlement faces food scarcity. Crops have failed and stores are depleting."),
    (("conflict", "faction"), "Faction tensions escalate. Different groups struggle for influence."),
    (("disease",), "Illness spreads through the settlement. Morale suffers."),
    (("rebellion",), "Discontent grows into outright rebellion. Authority is questioned."),
]

ROLE_LINES = {
    "farmer": ("food", "The harvest depends on good weather and hard work. We must plan ahead.",
               "There's much work to be done in the fields."),
    "warrior": ("conflict", "We must remain vigilant. Threats are everywhere.",
                "Strength and discipline keep our settlement safe."),
    "merchant": ("trade", "Trade brings prosperity and connections to distant lands.",
                 "Commerce is the lifeblood of civilization."),
}


def severity_label(severity: float) -> str:
    """Map a 0-1 severity onto a fixed label."""
    if severity < 0.3:
        return "Minor concern"
    if severity < 0.6:
        return "Moderate concern"
    if severity < 0.9:
        return "Serious concern"
    return "CRITICAL - Immediate action required!"


def apply_severity(text: str, severity: float) -> str:
    return f"{text} ({severity_label(severity)})"


def generate_npc_narrative(problem_type: str, severity: float) -> str:
    """Narrative for an NPC problem category such as RESOURCE_SCARCITY."""
    template = DEFAULT_PROBLEM_TEMPLATE
    for keyword, text in PROBLEM_TEMPLATES:
        if keyword in problem_type:
            template = text
            break
    return apply_severity(template, severity)


def interpret_decision(player_input: str, context: str = "") -> str:
    """Keyword interpretation of player input, as a JSON object string."""
    lowered = player_input.lower()
    for keywords, action, confidence in DECISION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return json.dumps({"action": action, "confidence": confidence})
    return json.dumps({"action": "unknown", "confidence": 0.5})


def analyze_world_state(world_state_json: str) -> str:
    findings = [text for cue, text in WORLD_STATE_CUES if cue in world_state_json]
    if not findings:
        return "Settlement conditions remain relatively stable at the moment."
    return " ".join(findings)


def generate_npc_dialogue(npc_name: str, npc_role: str, topic: str) -> str:
    role = npc_role.lower()
    line = "I await your guidance, leader."
    for role_key, (topic_key, on_topic, general) in ROLE_LINES.items():
        if role_key in role:
            line = on_topic if topic_key in topic.lower() else general
            break
    return f'{npc_name} ({npc_role}): "{line}"'


def generate_crisis_narrative(crisis_type: str, severity: float) -> str:
    lowered = crisis_type.lower()
    narrative = "An unexpected crisis threatens settlement stability."
    for keywords, text in CRISIS_TEMPLATES:
        if any(keyword in lowered for keyword in keywords):
            narrative = text
            break
    return apply_severity(narrative, severity)


def respond(prompt: str, call_type: CallType = CallType.UNKNOWN) -> str:
    """Answer a raw prompt from the templates.

    The call type picks the template family; untyped prompts fall back to
    keyword cues in the prompt itself.
    """
    if call_type == CallType.DECISION_INTERPRETATION:
        return interpret_decision(prompt)
    if call_type == CallType.WORLD_STATE_NARRATIVE:
        return analyze_world_state(prompt)
    if call_type == CallType.CRISIS_GENERATION:
        return generate_crisis_narrative(prompt, 0.5)
    if call_type == CallType.NPC_CONVERSATION:
        return generate_npc_dialogue("Settler", "villager", prompt)

    lowered = prompt.lower()
    if "crisis" in lowered:
        return "Crisis detected. Settlement facing challenge."
    if "decision" in lowered:
        return "Council reviews your decision. Response incoming."
    if "resource" in lowered:
        return "Resources are being assessed. Management recommended."
    return "Settlement acknowledges your leadership direction."
