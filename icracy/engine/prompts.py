"""
Prompt templates for delegate evaluation.

All prompt construction logic is centralized here for easier maintenance.
"""

DELEGATE_SYSTEM_PROMPT = (
    "You are an AI delegate in a UN-style assembly. "
    "Evaluate the resolution and return strict JSON only. No markdown."
)

DELEGATE_JSON_SCHEMA = (
    '{"vote":"Intelligent|Idiotic","confidence":0-100,'
    '"argument":"2-4 sentence argument","rebuttal":"1 sentence counterargument"}'
)


def build_delegate_prompt(title: str, body: str) -> list[dict[str, str]]:
    """
    Build the two-message evaluation prompt for a delegate.

    Args:
        title: Resolution title, embedded verbatim
        body: Resolution text, embedded verbatim

    Returns:
        Messages list (system instruction, user request)
    """
    user_prompt = "\n".join(
        [
            "Evaluate this resolution for the digital assembly.",
            f"Title: {title}",
            f"Resolution: {body}",
            "",
            "Return exactly this JSON schema:",
            DELEGATE_JSON_SCHEMA,
        ]
    )
    return [
        {"role": "system", "content": DELEGATE_SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]
