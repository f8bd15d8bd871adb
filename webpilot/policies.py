"""
Policies: named instruction sets paired with the subset of tools they may call.
"""

from __future__ import annotations

from dataclasses import dataclass

from . import prompts
from . import tools as t

NAVIGATION = "Navigation"
FORM_AUTOMATION = "FormAutomation"
DATA_EXTRACTION = "DataExtraction"
UNIFIED = "Unified"
GATEWAY = "Gateway"


@dataclass(frozen=True)
class Policy:
    """
    An agent configuration.

    Attributes:
        name: Policy name recorded in transcripts
        instructions: System prompt for the LLM
        tools: Names of the tools this policy may call; any other call is rejected
    """

    name: str
    instructions: str
    tools: tuple[str, ...] = ()

    def allows(self, tool_name: str) -> bool:
        return tool_name in self.tools


NAVIGATION_POLICY = Policy(
    name=NAVIGATION,
    instructions=prompts.NAVIGATION_INSTRUCTIONS,
    tools=(t.NAVIGATE, t.SCREENSHOT, t.CLICK, t.WAIT_FOR_ELEMENT, t.SCROLL, t.PAGE_INFO),
)

FORM_AUTOMATION_POLICY = Policy(
    name=FORM_AUTOMATION,
    instructions=prompts.FORM_AUTOMATION_INSTRUCTIONS,
    tools=(
        t.SCREENSHOT,
        t.FILL,
        t.SELECT,
        t.CLICK,
        t.FIND_FORM_FIELDS,
        t.FIND_BUTTONS,
        t.DISCOVER_TARGET_FORM,
        t.WAIT_FOR_ELEMENT,
        t.PAGE_INFO,
    ),
)

DATA_EXTRACTION_POLICY = Policy(
    name=DATA_EXTRACTION,
    instructions=prompts.DATA_EXTRACTION_INSTRUCTIONS,
    tools=(
        t.SCREENSHOT,
        t.EXTRACT_TEXT,
        t.EXTRACT_LINKS,
        t.WAIT_FOR_ELEMENT,
        t.SCROLL,
        t.PAGE_INFO,
        t.READ_PAGE,
    ),
)

UNIFIED_POLICY = Policy(
    name=UNIFIED,
    instructions=prompts.UNIFIED_INSTRUCTIONS,
    tools=(
        t.INITIALIZE_BROWSER,
        t.SCREENSHOT,
        t.NAVIGATE,
        t.CLICK,
        t.FILL,
        t.EXTRACT_TEXT,
        t.WAIT_FOR_ELEMENT,
        t.FIND_FORM_FIELDS,
        t.FIND_BUTTONS,
        t.PAGE_INFO,
        t.SCROLL,
        t.SELECT,
        t.EXTRACT_LINKS,
        t.DISCOVER_TARGET_FORM,
        t.READ_PAGE,
        t.CLOSE_BROWSER,
    ),
)

# Routes only; never executes tools itself
GATEWAY_POLICY = Policy(name=GATEWAY, instructions=prompts.GATEWAY_INSTRUCTIONS)

POLICIES: dict[str, Policy] = {
    policy.name: policy
    for policy in (
        NAVIGATION_POLICY,
        FORM_AUTOMATION_POLICY,
        DATA_EXTRACTION_POLICY,
        UNIFIED_POLICY,
        GATEWAY_POLICY,
    )
}


def get_policy(name: str) -> Policy:
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown policy: {name}. Known: {', '.join(POLICIES)}") from None
