"""
Memory / identity file generator.

Pure functions: onboarding data in, text documents out. The orchestrator
writes the result into the instance's config volume (mounted at
/home/node/.openclaw), so every path below is relative to that mount.

    memory/brand.md     seeded once at provisioning, owned by the agent afterwards
    system-prompt.md    operator persona and rules
    IDENTITY.md         who the operator is
    USER.md             who the operator works for
    TOOLS.md            connected-app actions, grouped by app
    MODELS.md           models available on the platform
    openclaw.json       agent config (model route, gateway, memory file paths)
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from c4g.memory.tool_catalog import TOOL_CATALOG
from c4g.services.model_catalog import AVAILABLE_MODELS

CONFIG_FILE = "openclaw.json"
BRAND_MEMORY_FILE = "memory/brand.md"
SYSTEM_PROMPT_FILE = "system-prompt.md"
IDENTITY_FILE = "IDENTITY.md"
USER_FILE = "USER.md"
TOOLS_FILE = "TOOLS.md"
MODELS_FILE = "MODELS.md"

AGENT_HOME = "/home/node/.openclaw"

DEFAULT_TONE = "professional"
DEFAULT_INDUSTRY = "other"

TONE_MAP: Dict[str, Dict[str, str]] = {
    "professional": {
        "label": "Professional",
        "description": "Formal, clear, and authoritative. Uses industry terminology. "
                       "Avoids slang or casual expressions.",
    },
    "friendly": {
        "label": "Friendly & Approachable",
        "description": "Warm, conversational, and encouraging. Uses simple language. "
                       "Feels like a helpful colleague.",
    },
    "bold": {
        "label": "Bold & Provocative",
        "description": "Direct, confident, and edgy. Not afraid to challenge the status quo. "
                       "Uses strong verbs and punchy sentences.",
    },
    "creative": {
        "label": "Creative & Playful",
        "description": "Imaginative, witty, and fun. Loves metaphors and wordplay. "
                       "Makes content memorable and shareable.",
    },
}

INDUSTRY_CONTEXT: Dict[str, str] = {
    "ecommerce": "Focus on product descriptions, conversion-oriented copy, abandoned cart recovery, "
                 "and seasonal campaigns.",
    "saas": "Emphasize value propositions, feature announcements, onboarding sequences, "
            "and product-led growth content.",
    "agency": "Adapt to multiple client voices. Focus on case studies, thought leadership, "
              "and results-driven messaging.",
    "local": "Prioritize local SEO, community engagement, event promotion, "
             "and customer reviews/testimonials.",
    "personal": "Build personal authority. Focus on storytelling, authentic voice, "
                "and audience relationship building.",
    "food": "Visual-first content. Emphasize cravings, seasonal menus, reviews, "
            "and behind-the-scenes stories.",
    "fitness": "Motivational tone. Focus on transformations, community, challenges, "
               "and educational health content.",
    "real_estate": "Showcase listings with compelling narratives. Focus on lifestyle, "
                   "neighborhood highlights, and market insights.",
    "education": "Informative and trustworthy. Focus on outcomes, accessibility, student stories, "
                 "and expert positioning.",
    "other": "Adapt marketing strategies based on brand-specific context and goals.",
}


@dataclass
class Brand:
    name: str = ""
    industry: str = DEFAULT_INDUSTRY
    description: str = ""
    website: str = ""


@dataclass
class OnboardingData:
    operator_name: str = "AI Operator"
    brand: Brand = field(default_factory=Brand)
    tone: str = DEFAULT_TONE
    connected_apps: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["OnboardingData"]:
        """Build from the stored JSON blob (camelCase keys). None/empty → None."""
        if not data:
            return None
        brand = data.get("brand") or {}
        return cls(
            operator_name=data.get("operatorName") or "AI Operator",
            brand=Brand(
                name=brand.get("name") or "",
                industry=brand.get("industry") or DEFAULT_INDUSTRY,
                description=brand.get("description") or "",
                website=brand.get("website") or "",
            ),
            tone=data.get("tone") or DEFAULT_TONE,
            connected_apps=list(data.get("connectedApps") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operatorName": self.operator_name,
            "brand": {
                "name": self.brand.name,
                "industry": self.brand.industry,
                "description": self.brand.description,
                "website": self.brand.website,
            },
            "tone": self.tone,
            "connectedApps": list(self.connected_apps),
        }


def resolve_tone(tone: str) -> Dict[str, str]:
    return TONE_MAP.get(tone, TONE_MAP[DEFAULT_TONE])


def resolve_industry(industry: str) -> str:
    return INDUSTRY_CONTEXT.get(industry, INDUSTRY_CONTEXT[DEFAULT_INDUSTRY])


def generate_brand_memory(data: OnboardingData) -> str:
    tone = resolve_tone(data.tone)
    lines = [
        "# Brand Context",
        "",
        f"**Operator Name:** {data.operator_name}",
        f"**Company:** {data.brand.name}",
        f"**Industry:** {data.brand.industry}",
    ]
    if data.brand.description:
        lines.append(f"**Description:** {data.brand.description}")
    if data.brand.website:
        lines.append(f"**Website:** {data.brand.website}")

    lines += [
        "",
        "## Communication Style",
        f"**Tone:** {tone['label']}",
        tone["description"],
        "",
        "## Industry Notes",
        resolve_industry(data.brand.industry),
    ]

    if data.connected_apps:
        lines += [
            "",
            "## Connected Platforms",
            f"The following tools are connected and available: {', '.join(data.connected_apps)}.",
            "Prioritize creating content and campaigns for these platforms.",
        ]

    lines.append("")
    return "\n".join(lines)


def generate_system_prompt(data: OnboardingData) -> str:
    tone = resolve_tone(data.tone)
    brand = data.brand

    identity = [f"- **Company:** {brand.name}", f"- **Industry:** {brand.industry}"]
    if brand.description:
        identity.append(f"- **What they do:** {brand.description}")
    if brand.website:
        identity.append(f"- **Website:** {brand.website}")

    if data.connected_apps:
        can_do = (
            f"You have access to: {', '.join(data.connected_apps)}. "
            "Leverage these platforms actively. See TOOLS.md for the available actions."
        )
    else:
        can_do = (
            "No platforms are connected yet. Focus on strategy, copywriting, "
            "and campaign planning until tools are connected."
        )

    sections = [
        f"You are {data.operator_name}, an AI marketing operator for {brand.name}.",
        "## Your Role\n"
        "You are a hands-on marketing team member, not a consultant and not an assistant. "
        "You execute marketing tasks directly: writing copy, planning campaigns, "
        "analyzing data, and producing deliverables.",
        "## Brand Identity\n" + "\n".join(identity),
        "## Communication Rules\n"
        f"- **Tone:** {tone['label']}. {tone['description']}\n"
        f"- Always write as if you ARE part of the {brand.name} team\n"
        "- Match the brand's voice in all outputs\n"
        "- Be proactive: suggest next steps, flag opportunities, anticipate needs\n"
        "- When given a vague request, ask one clarifying question max, then execute",
        "## Operational Guidelines\n"
        "- Produce ready-to-publish content, not drafts or outlines\n"
        "- Include specific CTAs, hashtags, and formatting when relevant\n"
        "- When analyzing data, lead with insights and actionable recommendations\n"
        "- Keep responses concise; busy marketers don't read walls of text\n"
        "- Use bullet points and headers for clarity",
        "## What You Can Do\n" + can_do,
        "## What You Cannot Do\n"
        "- You cannot make purchases or financial transactions\n"
        "- You cannot send messages on behalf of the user without being asked\n"
        "- Always be transparent about your limitations",
    ]
    return "\n\n".join(sections) + "\n"


def generate_identity_doc(data: OnboardingData) -> str:
    tone = resolve_tone(data.tone)
    return (
        "# IDENTITY\n\n"
        f"- **Name:** {data.operator_name}\n"
        f"- **Role:** AI marketing operator for {data.brand.name}\n"
        f"- **Voice:** {tone['label']}\n\n"
        f"{tone['description']}\n\n"
        f"You speak as a member of the {data.brand.name} team. "
        "Your long-term brand knowledge lives in memory/brand.md; "
        "keep it current as you learn.\n"
    )


def generate_user_doc(data: OnboardingData) -> str:
    brand = data.brand
    lines = [
        "# USER",
        "",
        f"You work for the team behind **{brand.name}**.",
        "",
        f"- **Industry:** {brand.industry}",
    ]
    if brand.description:
        lines.append(f"- **About them:** {brand.description}")
    if brand.website:
        lines.append(f"- **Website:** {brand.website}")
    lines += [
        f"- **Preferred tone:** {resolve_tone(data.tone)['label']}",
        "",
        "## What they care about",
        resolve_industry(brand.industry),
        "",
    ]
    return "\n".join(lines)


def generate_tools_doc(connected_apps: List[str]) -> str:
    """Actions available through the Composio bridge, grouped by connected app."""
    lines = [
        "# TOOLS",
        "",
        "Run actions with:",
        "",
        "    node composio-bridge.js execute $USER_ID <ACTION> '<json args>'",
        "",
    ]
    known = [app for app in connected_apps if app in TOOL_CATALOG]
    unknown = [app for app in connected_apps if app not in TOOL_CATALOG]

    if not known and not unknown:
        lines.append("No apps are connected yet. Ask your human to connect them from the dashboard.")

    for app in known:
        display, actions = TOOL_CATALOG[app]
        lines.append(f"## {display}")
        for slug, summary in actions:
            lines.append(f"- `{slug}`: {summary}")
        lines.append("")

    if unknown:
        lines.append("## Other connected apps")
        lines.append(
            "List their actions with `node composio-bridge.js list-tools $USER_ID <app>`: "
            + ", ".join(unknown)
        )
        lines.append("")

    return "\n".join(lines).rstrip("\n") + "\n"


def generate_models_doc() -> str:
    lines = ["# MODELS", ""]
    for option in AVAILABLE_MODELS:
        lines.append(f"- **{option.name}** (`{option.route}`), provider: {option.provider}")
    lines.append("")
    return "\n".join(lines)


def generate_agent_config(model_route: str, port: int, has_memory: bool) -> str:
    """The openclaw.json document the agent reads at startup."""
    config: Dict[str, Any] = {
        "agent": {"model": model_route},
        "gateway": {"host": "0.0.0.0", "port": port},
    }
    if has_memory:
        config["memory"] = {
            "brandFile": f"{AGENT_HOME}/{BRAND_MEMORY_FILE}",
            "systemPromptFile": f"{AGENT_HOME}/{SYSTEM_PROMPT_FILE}",
        }
    return json.dumps(config, indent=2)


def render_document_set(data: OnboardingData) -> Dict[str, str]:
    """Full set written at initial provisioning, keyed by path under the config mount."""
    return {
        BRAND_MEMORY_FILE: generate_brand_memory(data),
        SYSTEM_PROMPT_FILE: generate_system_prompt(data),
        IDENTITY_FILE: generate_identity_doc(data),
        USER_FILE: generate_user_doc(data),
        TOOLS_FILE: generate_tools_doc(data.connected_apps),
        MODELS_FILE: generate_models_doc(),
    }


def render_hot_update_set(
    data: Optional[OnboardingData],
    docs: bool = True,
    identity: bool = True,
) -> Dict[str, str]:
    """Files a running instance may have refreshed. Never includes memory/brand.md."""
    files: Dict[str, str] = {}
    if docs:
        files[TOOLS_FILE] = generate_tools_doc(data.connected_apps if data else [])
        files[MODELS_FILE] = generate_models_doc()
    if identity and data is not None:
        files[IDENTITY_FILE] = generate_identity_doc(data)
        files[USER_FILE] = generate_user_doc(data)
    return files
