"""Persona definitions loaded from YAML."""

import logging
import yaml
from pathlib import Path
from typing import Optional, List, Dict
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MEMORY_PERSONA_KEY = "memory_manager"


class Persona(BaseModel):
    """A named responding identity."""
    key: str
    name: str
    description: str = ""
    hidden: bool = False
    can_use_functions: bool = False
    self_introduction: str = ""
    detailed_instruction: str = ""
    function_declarations: List[str] = Field(default_factory=list)
    builtin_tools: List[str] = Field(default_factory=list)


class PersonaRegistry:
    """Lookup of personas by key, display name and @mention."""

    def __init__(self, personas: List[Persona]):
        self._personas: Dict[str, Persona] = {p.key: p for p in personas}

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> "PersonaRegistry":
        """
        Load personas from a YAML file.

        Args:
            path: Path to personas.yaml (default: config/personas.yaml)

        Returns:
            PersonaRegistry with every persona in the file
        """
        if path is None:
            path = Path(__file__).parent.parent / "config" / "personas.yaml"

        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}

        personas = [Persona(key=key, **(value or {})) for key, value in raw.items()]
        logger.info(f"Loaded {len(personas)} personas from {path}")
        return cls(personas)

    def get(self, key: str) -> Optional[Persona]:
        return self._personas.get(key)

    def require(self, key: str) -> Persona:
        persona = self._personas.get(key)
        if persona is None:
            raise KeyError(f"Unknown persona: {key}")
        return persona

    def by_name(self, name: Optional[str]) -> Optional[Persona]:
        if not name:
            return None
        for persona in self._personas.values():
            if persona.name == name:
                return persona
        return None

    def visible(self) -> List[Persona]:
        return [p for p in self._personas.values() if not p.hidden]

    def all(self) -> List[Persona]:
        return list(self._personas.values())

    @property
    def memory_persona(self) -> Persona:
        return self.require(MEMORY_PERSONA_KEY)

    def mention_map(self) -> Dict[str, str]:
        """Lowercase display name to persona key, for visible personas."""
        return {p.name.lower(): p.key for p in self.visible()}

    def __contains__(self, key: str) -> bool:
        return key in self._personas
