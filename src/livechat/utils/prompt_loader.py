import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Iterable

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

# Sections a chat session reads from its prompt file
SUPPORT_CHAT_SECTIONS = (
    "sys_prompt",
    "escalation_tool",
    "messages",
    "staff_notification",
)


class PromptLoader:
    _prompts: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def load_prompts(
        cls,
        prompt_name: str,
        required: Iterable[str] = ()
    ) -> Dict[str, Any]:
        """
        Load the system prompt, tool declaration and fixed chat texts

        Args:
            prompt_name: Name of the prompt file (without .yaml extension)
            required: Top-level sections the caller needs

        Raises:
            FileNotFoundError: If the prompt file doesn't exist
            ValueError: If a required section is missing
        """
        if prompt_name not in cls._prompts:
            prompt_path = PROMPTS_DIR / f"{prompt_name}.yaml"
            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file {prompt_name}.yaml "
                                        f"not found")

            with open(prompt_path, 'r', encoding='utf-8') as f:
                cls._prompts[prompt_name] = yaml.safe_load(f) or {}
            logger.info(f"Loaded prompts from {prompt_path}")

        prompts = cls._prompts[prompt_name]
        missing = [key for key in required if key not in prompts]
        if missing:
            raise ValueError(
                f"Prompt file {prompt_name}.yaml is missing: {', '.join(missing)}"
            )
        return prompts
