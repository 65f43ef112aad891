"""Agent profile loader from YAML files.

Keeps long system prompts and the greeting out of environment variables.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import structlog
import yaml

from app.ai.duplex_base import SessionConfig


logger = structlog.get_logger(__name__)

DEFAULT_INSTRUCTIONS = (
    "You are Genie, a helpful AI assistant with a warm, friendly personality. "
    "Keep responses concise and conversational - this is a phone call, not a text chat. "
    "Be natural and personable."
)

DEFAULT_GREETING = "Greet the caller warmly and ask how you can help. Be excited but natural."


@dataclass
class AgentConfig:
    """Agent profile.

    Fields:
        instructions: System instructions for the realtime session
        greeting: Instructions for the first response, spoken before the caller talks
        voice: Optional voice override
        temperature: Optional sampling temperature override
        metadata: Free-form documentation fields
    """

    instructions: str = DEFAULT_INSTRUCTIONS
    greeting: Optional[str] = DEFAULT_GREETING
    voice: Optional[str] = None
    temperature: Optional[float] = None
    metadata: Optional[Dict] = None

    @classmethod
    def from_yaml(cls, file_path: str | Path) -> "AgentConfig":
        """Load an agent profile from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the YAML is invalid or misses 'instructions'
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Agent config file not found: {file_path}")

        logger.info("Loading agent config from YAML", file_path=str(file_path))

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML file: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("YAML file must contain a mapping")

        instructions = data.get("instructions")
        if not instructions or not isinstance(instructions, str):
            raise ValueError("'instructions' field is required and must be a string")

        greeting = data.get("greeting")
        if greeting is not None and not isinstance(greeting, str):
            raise ValueError("'greeting' field must be a string")

        temperature = data.get("temperature")
        if temperature is not None:
            try:
                temperature = float(temperature)
            except (TypeError, ValueError) as e:
                raise ValueError(f"'temperature' must be a number: {e}") from e

        config = cls(
            instructions=instructions.strip(),
            greeting=greeting.strip() if greeting else None,
            voice=data.get("voice"),
            temperature=temperature,
            metadata=data.get("metadata"),
        )

        logger.info(
            "Agent config loaded",
            instructions_length=len(config.instructions),
            has_greeting=config.greeting is not None,
            voice=config.voice,
        )
        return config

    @classmethod
    def from_yaml_or_default(cls, file_path: Optional[str | Path]) -> "AgentConfig":
        """Load from file if one is configured, otherwise use built-in defaults.

        A configured file that fails to load is an error, not a fallback.
        """
        if not file_path:
            logger.info("No agent config file specified, using defaults")
            return cls()
        return cls.from_yaml(file_path)

    def session_config(self, voice: str, temperature: float) -> SessionConfig:
        """Build session.update parameters; profile overrides take precedence."""
        return SessionConfig(
            instructions=self.instructions,
            voice=self.voice or voice,
            temperature=self.temperature if self.temperature is not None else temperature,
        )

    def to_dict(self) -> Dict:
        """Summary for logging."""
        return {
            "instructions": self.instructions[:100] + "..." if len(self.instructions) > 100 else self.instructions,
            "greeting": self.greeting,
            "voice": self.voice,
            "temperature": self.temperature,
            "metadata": self.metadata,
        }
