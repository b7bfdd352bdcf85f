"""
Phase templates.

A phase template describes one phase of a project at creation time:

    {
        "name": "Research",
        "team": {
            "name": "research-team",
            "division": "research",
            "members": [
                {"agent_id": "research-manager", "role": "executive"},
                {"agent_id": "market-research", "role": "lead"},
                "trend-prediction",            # shorthand → role "member"
            ],
        },
        "deliverables": [
            {"deliverable_type": "market_analysis", "name": "Market Analysis Report",
             "description": "..."},
        ],
    }

DEFAULT_PHASE_TEMPLATES is the six-phase business template used when a
project is created without explicit templates.
"""

import copy
import re

from app.core.exceptions import ValidationError
from app.models.team import MEMBER_ROLES


def _team(name, division, executive, agents):
    members = [{"agent_id": executive, "agent_name": executive.replace("-", " ").title(), "role": "executive"}]
    for i, agent in enumerate(agents):
        members.append({
            "agent_id": agent,
            "agent_name": agent.replace("-", " ").title(),
            "role": "lead" if i == 0 else "member",
        })
    return {"name": name, "division": division, "members": members}


def _d(deliverable_type, name, description):
    return {"deliverable_type": deliverable_type, "name": name, "description": description}


DEFAULT_PHASE_TEMPLATES = [
    {
        "name": "Research",
        "team": _team("research-team", "research", "research-manager",
                      ["market-research", "trend-prediction"]),
        "deliverables": [
            _d("market_analysis", "Market Analysis Report",
               "Comprehensive market size, trends, and opportunity analysis"),
            _d("competitor_analysis", "Competitor Landscape",
               "Analysis of direct and indirect competitors"),
            _d("target_customer", "Target Customer Profiles",
               "Detailed customer personas and segments"),
            _d("trend_forecast", "Trend Forecast Report",
               "Industry trends and future predictions"),
        ],
    },
    {
        "name": "Branding",
        "team": _team("branding-team", "brand", "brand-manager",
                      ["brand-identity", "visual-design", "content-creator"]),
        "deliverables": [
            _d("brand_identity", "Brand Identity Package",
               "Logo, colors, typography, and brand guidelines"),
            _d("brand_voice", "Brand Voice Document",
               "Tone, messaging, and communication guidelines"),
            _d("visual_assets", "Visual Asset Library",
               "Marketing images, icons, and graphics"),
        ],
    },
    {
        "name": "Development",
        "team": _team("development-team", "development", "development-manager",
                      ["code-builder", "qa-testing"]),
        "deliverables": [
            _d("website", "Business Website",
               "Fully functional landing page with branding"),
            _d("technical_docs", "Technical Documentation",
               "Site architecture and maintenance guides"),
        ],
    },
    {
        "name": "Content",
        "team": _team("content-team", "content", "content-manager",
                      ["content-creator", "seo-optimization"]),
        "deliverables": [
            _d("content_strategy", "Content Strategy", "Content calendar and topic planning"),
            _d("blog_content", "Blog Articles", "SEO-optimized blog posts"),
            _d("social_content", "Social Media Content", "Posts for all social platforms"),
        ],
    },
    {
        "name": "Marketing",
        "team": _team("marketing-team", "marketing", "marketing-manager",
                      ["social-media", "paid-ads", "influencer-outreach"]),
        "deliverables": [
            _d("marketing_strategy", "Marketing Strategy", "Comprehensive marketing plan"),
            _d("ad_campaigns", "Ad Campaigns", "Paid advertising campaigns"),
            _d("email_sequences", "Email Sequences", "Email marketing automation"),
        ],
    },
    {
        "name": "Sales",
        "team": _team("sales-team", "sales", "sales-manager",
                      ["sales-development", "sales-closer", "customer-success"]),
        "deliverables": [
            _d("sales_strategy", "Sales Strategy", "Sales process and methodology"),
            _d("sales_scripts", "Sales Scripts", "Call scripts and email templates"),
            _d("crm_setup", "CRM Configuration", "Customer relationship management setup"),
        ],
    },
]


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.strip().lower()).strip("_")


def normalize_deliverables(deliverables) -> list[dict]:
    """Validate a deliverable template list and fill in defaults."""
    if deliverables is None:
        return []
    if not isinstance(deliverables, list):
        raise ValidationError("deliverables must be a list", details={"deliverables": "not a list"})

    result = []
    for i, item in enumerate(deliverables):
        if not isinstance(item, dict) or not str(item.get("name") or "").strip():
            raise ValidationError(
                f"Deliverable #{i + 1} needs a name",
                details={f"deliverables[{i}].name": "required"},
            )
        name = item["name"].strip()
        result.append({
            "deliverable_type": (item.get("deliverable_type") or _slug(name))[:60],
            "name": name[:200],
            "description": item.get("description") or "",
        })
    return result


def _normalize_team(team, phase_name: str) -> dict:
    if team is None:
        return {"name": f"{_slug(phase_name).replace('_', '-')}-team", "division": "", "members": []}
    if isinstance(team, str):
        team = {"name": team}
    if not isinstance(team, dict) or not str(team.get("name") or "").strip():
        raise ValidationError(f"Team of phase '{phase_name}' needs a name", details={"team.name": "required"})

    members = []
    for m in team.get("members") or []:
        if isinstance(m, str):
            m = {"agent_id": m}
        if not isinstance(m, dict) or not m.get("agent_id"):
            raise ValidationError(f"Team '{team['name']}' has a member without agent_id",
                                  details={"team.members": "agent_id required"})
        role = m.get("role", "member")
        if role not in MEMBER_ROLES:
            raise ValidationError(
                f"Invalid role '{role}'. Must be one of: {', '.join(sorted(MEMBER_ROLES))}",
                details={"team.members.role": role},
            )
        members.append({
            "agent_id": m["agent_id"],
            "agent_name": m.get("agent_name") or m["agent_id"],
            "role": role,
        })
    return {"name": team["name"].strip(), "division": team.get("division") or "", "members": members}


def normalize_templates(templates) -> list[dict]:
    """Validate caller-supplied phase templates.

    Returns a deep-copied, defaulted list. ``None`` selects the default
    six-phase template.

    Raises:
        ValidationError: empty list, a phase without a name, or a
                         malformed team / deliverable entry.
    """
    if templates is None:
        return copy.deepcopy(DEFAULT_PHASE_TEMPLATES)
    if not isinstance(templates, list) or not templates:
        raise ValidationError("phase_templates must be a non-empty list",
                              details={"phase_templates": "required"})

    result = []
    for i, tpl in enumerate(templates):
        if not isinstance(tpl, dict) or not str(tpl.get("name") or "").strip():
            raise ValidationError(
                f"Phase #{i + 1} needs a name",
                details={f"phase_templates[{i}].name": "required"},
            )
        name = tpl["name"].strip()
        result.append({
            "name": name,
            "team": _normalize_team(tpl.get("team"), name),
            "deliverables": normalize_deliverables(tpl.get("deliverables")),
        })
    return result
