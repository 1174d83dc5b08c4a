"""Prompt templates for extracting follow-up tasks from call transcripts."""

TASK_EXTRACTION_SYSTEM_MESSAGE = """You extract action items from business call transcripts.
Return only JSON, no prose, in exactly this shape:
{"tasks": [{"description": "...", "owner": "...", "due_date": "YYYY-MM-DD or null", "priority": "high|medium|low", "source_quote": "..."}]}

Rules:
- description: short imperative phrase, e.g. "Send pricing deck"
- owner: "Me" when Speaker 1 committed to it, otherwise the speaker label such as "Speaker 2"
- due_date: resolve relative dates ("Friday", "tomorrow") against the call date; null when no date was mentioned
- priority: "high" when urgent or blocking, "low" when optional, otherwise "medium"
- source_quote: the exact words from the transcript the task came from
- Only include concrete commitments or requests. If there are none, return {"tasks": []}"""

TASK_EXTRACTION_USER_CONTENT_TEMPLATE = """The call took place on {call_date} ({call_weekday}).

Transcript:
{transcript}"""
