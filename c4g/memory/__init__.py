from c4g.memory.generator import (
    OnboardingData, Brand,
    generate_agent_config, generate_brand_memory, generate_system_prompt,
    generate_identity_doc, generate_user_doc, generate_tools_doc,
    render_document_set, render_hot_update_set,
)

__all__ = [
    "OnboardingData",
    "Brand",
    "generate_agent_config",
    "generate_brand_memory",
    "generate_system_prompt",
    "generate_identity_doc",
    "generate_user_doc",
    "generate_tools_doc",
    "render_document_set",
    "render_hot_update_set",
]
