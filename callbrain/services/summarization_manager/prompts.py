"""
Prompt templates for call summarization.

The final summary always follows the recording's prompt template. Transcripts
too long for one request are condensed first, chunk by chunk, with the
CONDENSE_* prompts.
"""

# -------------------------------------------------------------- #
# Default Template
# -------------------------------------------------------------- #

DEFAULT_PROMPT_TEMPLATE = """You are an assistant that summarizes business calls.
Write a structured summary with these sections:
- Overview: two or three sentences on the purpose and outcome of the call
- Key Points: the important facts, numbers and decisions
- Action Items: who committed to do what, and by when
- Follow-ups: open questions or topics to revisit
Refer to participants by their speaker labels. Be concise and factual."""

USER_CONTEXT_TEMPLATE = """

Additional context provided by the user:
{context}"""

SUMMARY_USER_CONTENT_TEMPLATE = """Please analyze the following transcript and provide a structured summary:

{transcript}"""

# -------------------------------------------------------------- #
# Condensing Long Transcripts
# -------------------------------------------------------------- #

CONDENSE_SYSTEM_MESSAGE = """You condense sections of call transcripts. Keep every fact, number, decision, commitment and speaker label. Drop small talk."""

CONDENSE_USER_CONTENT_TEMPLATE = """Condense this call transcript section (part {chunk_number} of {total_chunks}) to at most {target_words} words:

{chunk_text}"""
