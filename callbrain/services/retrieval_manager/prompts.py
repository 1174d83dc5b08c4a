"""
Prompts for retrieval answers.

The retrieved units are pasted into the system prompt under
``CONTEXT FROM DATABASE``; conversation history and the question follow as
chat messages.
"""

ASSISTANT_SYSTEM_PROMPT = """You are the user's AI-powered "Second Brain" assistant for their CRM system.

You have access to their call transcripts, summaries, and notes from business conversations.
Use this context to answer their questions accurately and helpfully.

Guidelines:
- Reference specific conversations, contacts, or details when relevant
- If you don't have enough context to answer, say so honestly
- Be concise but thorough
- When mentioning contacts or calls, be specific about who/when if known
- For follow-up suggestions, be actionable and specific

CONTEXT FROM DATABASE:
{context}"""

NO_CONTEXT_NOTE = """No relevant context found in the database.

The semantic search returned no results above the similarity threshold.
Tell the user that nothing in their conversations matches the question, and
suggest rephrasing or checking that their recordings have finished processing."""

NOTHING_FOUND_ANSWER = (
    "I couldn't find anything yet. None of your conversations have been "
    "processed and indexed, so there is nothing to search. Once a recording "
    "finishes processing, ask again."
)

# -------------------------------------------------------------- #
# Context Labels
# -------------------------------------------------------------- #

UNIT_TYPE_LABELS = {
    "transcript": "Call Transcript",
    "summary": "Call Summary",
    "digest": "Daily Summary",
    "message_chunk": "Message Thread",
}

CONTEXT_UNIT_TEMPLATE = """--- {label} #{index}{contact} (similarity: {similarity:.2f}) ---
{text}"""


def unit_type_label(unit_type: str) -> str:
    return UNIT_TYPE_LABELS.get(unit_type, unit_type.replace("_", " ").title())
