"""Prompt text for the section generators.

Each section prompt is composed with the shared guidelines. Prompts are
plain strings; the summary prompt varies with what the commit contains.
"""

from __future__ import annotations

ANTI_HALLUCINATION_GUIDELINES = """
ANTI-HALLUCINATION RULES:
- Only use information explicitly present in the provided context
- When quoting, use exact text; never paraphrase and present it as a quote
- If insufficient context exists for a section, say less rather than invent
- Don't infer emotional states, motivations, or outcomes not explicitly stated
""".strip()

ACCESSIBILITY_GUIDELINES = """
EXTERNAL READER ACCESSIBILITY GUIDELINES:
- Write for someone unfamiliar with the project who has no prior context
- Use concrete language that explains real problems and solutions
- Avoid abstract buzzwords and corporate speak
- Skip internal task references like "completed task 61.2"
- Explain what was accomplished and why it matters
""".strip()

CHAT_ROLES_NOTE = (
    'In the chat data, type:"user" messages are from the human developer and '
    'type:"assistant" messages are from the AI. The developer\'s questions and '
    "insights matter most, although the overall story of the session matters too."
)


def all_guidelines() -> str:
    return f"{ANTI_HALLUCINATION_GUIDELINES}\n\n{ACCESSIBILITY_GUIDELINES}"


# ========== Summary ==========

_OPENING_SENTENCE = (
    "Write one opening sentence that states what changed. Lead with the thing that "
    "changed as the subject, followed by a strong past-tense verb. Avoid filler "
    'adjectives like significant, notable, or meaningful. Avoid "The session..." or '
    '"The developer..." openings.'
)

_CODE_WITH_CONTEXT = (
    "Describe what changed in the code and why (not documentation files like .md or "
    ".txt). This is usually the longest part of the summary. Include the problems "
    "solved, alternatives considered, and the reasoning behind decisions. Discussion "
    "depth matters more than code volume. Use friendly, direct language."
)

_DISCUSSIONS = (
    "Summarize discussions that didn't produce functional code. Length should match "
    "significance: major strategic decisions deserve detail, minor discussions can be "
    "brief or omitted."
)

_CODE_WITHOUT_CONTEXT = (
    "Describe what changed in the code (not documentation files like .md or .txt). "
    "Keep it brief and factual; there is no chat context to explain why. Length should "
    "match the scope of changes."
)

_DOCUMENTATION_ONLY = (
    "Your opening sentence is probably enough, since there was little discussion. If "
    "there is one important detail, you may add one more sentence describing it."
)

_HONEST_VERBS = """**Important guidelines:**
- Use accurate verbs: "planned/designed/documented" for planning work, "implemented/built/coded" for functional code
- Be honest. Some work is interesting and some is routine; describe both without inflation or minimization
- Avoid subjective qualifiers like "successfully", "significant", "major progress\""""


def summary_prompt(has_functional_code: bool, has_substantial_chat: bool) -> str:
    """Summary instructions for one of four commit shapes.

    The shape is the combination of functional code present or not and
    substantial chat present or not.
    """
    if has_substantial_chat and has_functional_code:
        step2 = (
            "## Step 2: Find the Why in the Chat\n\n"
            f"{CHAT_ROLES_NOTE}\n\n"
            "Look through the chat for discussions about these specific changes. Why were "
            "they made? What problems did they solve? What alternatives were considered?\n\n"
            "Also include important discussions and discoveries, even if they didn't "
            "result in code changes."
        )
    elif has_substantial_chat:
        step2 = (
            "## Step 2: Find What Was Discussed\n\n"
            f"{CHAT_ROLES_NOTE}\n\n"
            "Look through the chat. What was discussed, planned, or decided? What problems "
            "were explored? What alternatives were considered?"
        )
    else:
        step2 = "## Step 2: Skip this step."

    step3 = _OPENING_SENTENCE
    if has_functional_code and has_substantial_chat:
        step3 += f"\n\n{_CODE_WITH_CONTEXT}\n\n{_DISCUSSIONS}"
    elif has_functional_code:
        step3 += f"\n\n{_CODE_WITHOUT_CONTEXT}"
    elif has_substantial_chat:
        step3 += f"\n\n{_DISCUSSIONS}"
    else:
        step3 += f"\n\n{_DOCUMENTATION_ONLY}"

    if not has_functional_code and not has_substantial_chat:
        intro = (
            "## Step 3: Write the Summary\n\n"
            "This is a routine documentation update with minimal discussion. Write a brief "
            "factual summary.\n\n"
            f"{_HONEST_VERBS}\n"
            "- One sentence is often enough for simple changes"
        )
    else:
        intro = (
            "## Step 3: Write the Summary\n\n"
            "You're helping the developer summarize this session for a mentor who is also "
            "a friend. Acknowledge both successes and challenges honestly. Write natural "
            "conversational prose with no bullet points and no section headers.\n\n"
            f"{_HONEST_VERBS}\n"
            "- Never mention the mentor in your output"
        )

    return f"""## Step 1: Understand the Code Changes

You are the developer's assistant, writing in a direct-yet-friendly tone.

Start by analyzing the git diff. What files changed? What was added, removed, or modified? Distinguish between documentation files and functional code files.

If developer reflections or context captures are provided, treat them as first-hand notes about the session and weave their substance into the summary.

{step2}

{intro}

{step3}

## Step 4: Output

Before you output, verify the summary is authentic: not inflated, not minimized, just honest. Revise it if it is not. Then output only the final narrative prose."""


# ========== Development dialogue ==========

DIALOGUE_PROMPT = """
The quality of the development journal depends on getting this dialogue extraction right. It captures how the session actually unfolded, with a focus on the human developer's reasoning, decisions, and authentic voice.

Step 1: Extract all human quotes
Collect every message from the human verbatim. Do not paraphrase, shorten, or omit.

Step 2: Select only the most interesting quotes
Pick at most maxQuotes quotes, and fewer when fewer are compelling. Three great quotes beat eight mediocre ones.
Prefer quotes that show human reasoning or technical insight, challenge or correct the AI, express frustration or discovery, ask questions that led to progress, or mark a turning point.
Use the summary as a guide to what mattered in the session.
Discard filler, mechanical instructions, greetings, and confirmations.

Step 3: Add AI context where useful
For each chosen human quote, include nearby assistant text only when it helps the reader understand the exchange.
Truncate long assistant replies with [...] but keep the part that explains the back-and-forth.
Never fabricate or reword assistant messages.

Step 4: Final output
Present the selected dialogue in chronological order with a blank line between segments.
Output only the verbatim excerpts, with no commentary.

Format example:
> **Human:** "Wait, why is this function returning undefined?"
> **Assistant:** "[...] That happens because the variable is declared inside the block."

> **Human:** "Actually, let's try a different approach. This is getting too complex."
""".strip()

DIALOGUE_UNGUIDED_NOTE = (
    "No summary is available for this session. Select quotes on their own merit."
)


# ========== Technical decisions ==========

TECHNICAL_DECISIONS_PROMPT = """
PURPOSE: Document technical decisions and reasoning from this development session.

OUTPUT FORMAT: Use bullet points:
- **DECISION: [Decision title]** (Implemented | Discussed only)
  - [Brief reason]
  - [Brief reason]
  Tradeoffs: [Trade-off when explicitly discussed]

Keep each reason to a brief phrase. Split long reasoning into separate bullets.

Find technical decisions discussed in the chat, then use the code changes to determine which were actually implemented.

ANALYSIS STEPS:
1. Find technical discussions in the chat
2. Extract only explicitly stated reasoning; do not infer reasoning that isn't clearly stated
3. Use the code changes to verify whether each decision was implemented or only discussed
4. Make every reason traceable to the chat

If no technical decisions were discussed, return: "No significant technical decisions documented for this development session"
""".strip()
