"""Static persona style lookup.

Each onboarding persona maps to the interaction style the interface adopts
for that user.  Unknown persona ids fall back to ``emma``.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

DEFAULT_PERSONA = "emma"

COMPLEXITY_SIMPLIFIED = "simplified"


@dataclass(frozen=True)
class PersonaStyle:
    """Interaction style for one persona.

    Attributes:
        persona_id:        Persona key.
        preferred_actions: Action types the persona gravitates to.
        navigation_style:  'playful', 'efficient', 'flowing', 'gentle' or 'classic'.
        guidance_style:    Tone of guidance messages.
        max_complexity:    Ceiling on navigation complexity.
        exploration_hint:  Persona-flavored invitation to explore a new phase.
    """

    persona_id: str
    preferred_actions: tuple[str, ...]
    navigation_style: str
    guidance_style: str
    max_complexity: str
    exploration_hint: str


PERSONA_STYLES: Mapping[str, PersonaStyle] = MappingProxyType(
    {
        "emma": PersonaStyle(
            persona_id="emma",
            preferred_actions=("explore", "discover", "experiment"),
            navigation_style="playful",
            guidance_style="encouraging",
            max_complexity="moderate",
            exploration_hint="Explore a new phase of your cycle",
        ),
        "laure": PersonaStyle(
            persona_id="laure",
            preferred_actions=("plan", "optimize", "structure"),
            navigation_style="efficient",
            guidance_style="methodical",
            max_complexity="full",
            exploration_hint="Review another phase to plan your month",
        ),
        "clara": PersonaStyle(
            persona_id="clara",
            preferred_actions=("transform", "inspire", "create"),
            navigation_style="flowing",
            guidance_style="inspirational",
            max_complexity="full",
            exploration_hint="Discover what another phase can inspire in you",
        ),
        "sylvie": PersonaStyle(
            persona_id="sylvie",
            preferred_actions=("nurture", "balance", "understand"),
            navigation_style="gentle",
            guidance_style="nurturing",
            max_complexity="moderate",
            exploration_hint="Take a gentle look at another phase of your cycle",
        ),
        "christine": PersonaStyle(
            persona_id="christine",
            preferred_actions=("wisdom", "share", "guide"),
            navigation_style="classic",
            guidance_style="wise",
            max_complexity=COMPLEXITY_SIMPLIFIED,
            exploration_hint="Revisit another phase with the wisdom you have gathered",
        ),
    }
)


def persona_style(persona_id: str | None) -> PersonaStyle:
    """Return the style for ``persona_id``, or the default persona's style."""
    return PERSONA_STYLES.get(persona_id or DEFAULT_PERSONA, PERSONA_STYLES[DEFAULT_PERSONA])


def is_known_persona(persona_id: str | None) -> bool:
    return persona_id in PERSONA_STYLES
