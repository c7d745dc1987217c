"""Discussion roles: a persona bound to exactly one model."""

import re
from dataclasses import dataclass

from config.config_loader import RoleConfig
from llm_council.invoker import ModelBinding

_ROLE_ID = re.compile(r"^[a-z0-9_-]{2,64}$")
_MIN_PERSONA_LEN = 20


@dataclass(frozen=True)
class AgentRole:
    id: str
    name: str
    persona: str
    model_id: str
    binding: ModelBinding


def validate_role(cfg: RoleConfig) -> list[str]:
    """Return a list of problems with a role definition (empty when valid)."""
    errors: list[str] = []
    if not _ROLE_ID.match(cfg.id or ""):
        errors.append("Role id must be 2-64 lowercase letters, digits, '-' or '_'")
    if not (cfg.name or "").strip():
        errors.append("Role name is required")
    if len((cfg.persona or "").strip()) < _MIN_PERSONA_LEN:
        errors.append(f"Persona must be at least {_MIN_PERSONA_LEN} characters")
    if not (cfg.model or "").strip():
        errors.append("Model is required")
    else:
        try:
            ModelBinding.parse(cfg.model)
        except ValueError as exc:
            errors.append(str(exc))
    return errors


def role_from_config(cfg: RoleConfig) -> AgentRole:
    """Build an AgentRole, parsing its model binding once.

    Raises:
        ValueError: If the definition is invalid.
    """
    errors = validate_role(cfg)
    if errors:
        raise ValueError(f"Invalid role '{cfg.id}': {'; '.join(errors)}")
    return AgentRole(
        id=cfg.id,
        name=cfg.name.strip(),
        persona=cfg.persona.strip(),
        model_id=cfg.model.strip(),
        binding=ModelBinding.parse(cfg.model),
    )


def roles_from_config(configs: list[RoleConfig], selected_ids: list[str] | None = None) -> list[AgentRole]:
    """Roles in configured order, or in selected_ids order when given.

    Raises:
        ValueError: On a repeated role id, an unknown selected id, a duplicate
            selection or an empty result.
    """
    by_id = {c.id: c for c in configs}
    if len(by_id) != len(configs):
        raise ValueError("Role ids must be unique")
    if selected_ids:
        unknown = [rid for rid in selected_ids if rid not in by_id]
        if unknown:
            raise ValueError(f"Unknown role(s): {', '.join(unknown)}")
        if len(set(selected_ids)) != len(selected_ids):
            raise ValueError("A role can only take one seat in a discussion")
        chosen = [by_id[rid] for rid in selected_ids]
    else:
        chosen = list(configs)

    if not chosen:
        raise ValueError("A discussion needs at least one role")
    return [role_from_config(c) for c in chosen]


def build_role_prompt(role: AgentRole, topic: str, max_rounds: int) -> str:
    return f"""{role.persona}

---

DISCUSSION TOPIC: "{topic}"

You are participating in a collaborative multi-agent discussion with other participants who have different perspectives.

GUIDELINES:
- Respond to previous points when relevant
- Build on others' ideas constructively
- Keep responses concise (2-4 paragraphs max)
- You can agree, disagree, ask questions, or propose new angles
- Stay in character as {role.name}
- The discussion ends after {max_rounds} rounds or when consensus is reached

Add your unique perspective to the discussion."""
