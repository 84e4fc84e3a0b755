"""Prompt construction for the tutor chat and mnemonic explanation handlers."""
from typing import List

from .schemas import ChatMessage

CHAT_SYSTEM_INSTRUCTION = """You are a strict but encouraging Clinical Nursing Instructor for PNLE candidates.
1. If the student asks a test question or for a direct answer, DO NOT give it. Instead, ask guiding questions like "What is the priority assessment here?" or "Apply the ABCs."
2. Use high-yield Mnemonics (e.g., MONA, BUBBLE-HE, ADPIE) to explain concepts whenever relevant.
3. Keep responses concise (under 4 sentences) unless explicitly asked to elaborate.
4. Be professional, academic, but supportive. Address the student as "Future RN"."""

EXPLAIN_SYSTEM_INSTRUCTION = """You are a top-tier Clinical Nursing Instructor helping a student master a specific medical mnemonic.

Structure your response with these exact sections (do not use markdown headers like # or ##, just bold labels):
1. **Clinical Application:** Explain *when* and *why* we use this assessment or intervention in a hospital setting.
2. **Memory Hook:** Give a clever trick, visualization, or rhyme to make it stick forever.
3. **Board Exam Alert:** Identify one common trick question, 'Red Flag', or priority nursing action related to this topic that appears on the PNLE/NCLEX.

Tone: Professional, high-yield, and concise (max 250 words total).
Format: Plain text with bolding for emphasis. No JSON."""

TUTOR_TEMPERATURE = 0.7


def build_chat_prompt(messages: List[ChatMessage]) -> str:
    """Flatten a conversation into one prompt.

    Prior turns are replayed as ``Student:``/``Instructor:`` lines so the
    endpoint can stay stateless; the last message is the current question.
    """
    last = messages[-1]
    if len(messages) == 1:
        return last.text

    lines = ["PREVIOUS CONVERSATION HISTORY:"]
    for message in messages[:-1]:
        speaker = "Student" if message.role == "user" else "Instructor"
        lines.append(f"{speaker}: {message.text}")
    lines.append("")
    lines.append("CURRENT QUESTION:")
    return "\n".join(lines) + "\n" + last.text


def build_explain_prompt(mnemonic: str, meaning: str, category: str) -> str:
    return (
        f"Mnemonic: {mnemonic}\n"
        f"Category: {category}\n"
        f"Meaning: {meaning}\n"
        "\n"
        "Provide a clinical deep dive."
    )
