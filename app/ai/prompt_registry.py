"""
AI Company Workflow Engine
Prompt Registry.

YAML-based prompt template management with:
    - Built-in defaults for review, generation and phase summaries
    - Optional overrides loaded from a prompts directory (*.yaml)
    - {{variable}} rendering
    - Version tracking

Usage:
    from app.ai.prompt_registry import PromptRegistry
    registry = PromptRegistry()
    messages = registry.render("deliverable_review",
                               deliverable_type="market-analysis",
                               name="Market Analysis Report",
                               description="", content="{...}")
"""

import logging
import os
import re
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

# Default prompts directory
_PROMPTS_DIR = os.getenv(
    "PROMPT_OVERRIDES_DIR",
    os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "prompts"),
)


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, version: str, system: str, user: str,
                 description: str = "", metadata: dict | None = None):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description
        self.metadata = metadata or {}

    def render(self, **variables) -> list[dict]:
        """
        Render template with variables, returning chat messages.

        Variables are replaced using {{variable_name}} syntax.

        Returns:
            List of message dicts: [{"role": "system", "content": "..."}, ...]
        """
        system_rendered = self._substitute(self.system, variables)
        user_rendered = self._substitute(self.user, variables)

        messages = []
        if system_rendered.strip():
            messages.append({"role": "system", "content": system_rendered})
        if user_rendered.strip():
            messages.append({"role": "user", "content": user_rendered})
        return messages

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        """Replace {{var}} placeholders with values."""
        def replacer(match):
            key = match.group(1).strip()
            return str(variables.get(key, f"{{{{{key}}}}}"))
        return re.sub(r'\{\{(\s*\w+\s*)\}\}', replacer, template)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "system_preview": self.system[:200],
            "user_preview": self.user[:200],
        }


class PromptRegistry:
    """
    Registry for loading and managing prompt templates.

    Built-in templates are registered first; YAML files in the prompts
    directory override them by (name, version).
    """

    def __init__(self, prompts_dir: str | None = None):
        self._prompts_dir = prompts_dir or _PROMPTS_DIR
        self._templates: dict[str, dict[str, PromptTemplate]] = {}  # name → {version → template}
        self._load_defaults()
        self._load_from_dir()

    def _load_defaults(self):
        """Register built-in default prompt templates."""
        for tpl in _DEFAULT_TEMPLATES:
            self._register(tpl)

    def _load_from_dir(self):
        """Load prompt templates from YAML files."""
        prompts_path = Path(self._prompts_dir)
        if not prompts_path.exists():
            logger.debug("Prompts directory not found: %s. Using defaults only.", self._prompts_dir)
            return

        for yaml_file in sorted(prompts_path.glob("*.yaml")):
            try:
                with open(yaml_file, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.error("Failed to load prompt %s: %s", yaml_file.name, e)
                continue
            if not data or not isinstance(data, dict):
                continue

            tpl = PromptTemplate(
                name=data.get("name", yaml_file.stem),
                version=data.get("version", "v1"),
                system=data.get("system", ""),
                user=data.get("user", ""),
                description=data.get("description", ""),
                metadata=data.get("metadata", {}),
            )
            self._register(tpl)
            logger.info("Loaded prompt template: %s (%s) from %s",
                        tpl.name, tpl.version, yaml_file.name)

    def _register(self, template: PromptTemplate):
        """Add template to registry."""
        if template.name not in self._templates:
            self._templates[template.name] = {}
        self._templates[template.name][template.version] = template

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        """Get a prompt template by name and version."""
        versions = self._templates.get(name, {})
        return versions.get(version)

    def render(self, name: str, /, version: str = "v1", **variables) -> list[dict]:
        """
        Render a prompt template with variables.

        Raises:
            KeyError: If template not found.
        """
        tpl = self.get(name, version)
        if not tpl:
            raise KeyError(f"Prompt template not found: {name} {version}")
        return tpl.render(**variables)

    def list_templates(self) -> list[dict]:
        """List all registered templates."""
        result = []
        for versions in self._templates.values():
            for tpl in versions.values():
                result.append(tpl.to_dict())
        return result


# ── Built-in Default Templates ────────────────────────────────────────────────

_DEFAULT_TEMPLATES = [
    PromptTemplate(
        name="deliverable_review",
        version="v1",
        description="CEO agent review of a generated deliverable",
        system=(
            "You are a discerning CEO with high standards. "
            "Be constructive but thorough in your reviews."
        ),
        user=(
            "You are the CEO Agent reviewing a {{deliverable_type}} deliverable for a business project.\n\n"
            "Deliverable Name: {{name}}\n"
            "Description: {{description}}\n"
            "Generated Content: {{content}}\n\n"
            "Evaluate quality and professionalism, brand consistency, strategic alignment "
            "and technical execution.\n\n"
            "Respond in JSON format only:\n"
            '{"quality_score": <1-10>, "approved": <true/false>, "feedback": "<constructive feedback>"}\n\n'
            "Only approve if quality_score is {{threshold}} or higher."
        ),
    ),
    PromptTemplate(
        name="deliverable_generate",
        version="v1",
        description="Produce content for one deliverable, optionally revising after feedback",
        system=(
            "You are a senior specialist on an AI company team producing a {{deliverable_type}} "
            "deliverable. Return ONLY valid JSON with a title, summary, sections and citations."
        ),
        user=(
            "Generate deliverable for:\n"
            "Business Name: {{project_name}}\n"
            "Industry: {{industry}}\n"
            "Description: {{project_description}}\n\n"
            "Deliverable: {{name}}\n"
            "Scope: {{description}}\n"
            "{{feedback_block}}"
        ),
    ),
    PromptTemplate(
        name="phase_summary",
        version="v1",
        description="Executive summary of a completed phase",
        system="You are the CEO Agent writing for the project owner. Plain prose, no JSON.",
        user=(
            "Write a short executive summary for phase {{phase_number}} ({{phase_name}}) "
            "of project {{project_name}}.\n\n"
            "Completed work:\n{{work_items}}"
        ),
    ),
]
