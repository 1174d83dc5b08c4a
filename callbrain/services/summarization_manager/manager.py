import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callbrain.context import Context

from callbrain.services.common.errors import PermanentAdapterError
from callbrain.services.manager import BaseSummarizationAdapter
from callbrain.services.summarization_manager.prompts import (
    CONDENSE_SYSTEM_MESSAGE,
    CONDENSE_USER_CONTENT_TEMPLATE,
    SUMMARY_USER_CONTENT_TEMPLATE,
    USER_CONTEXT_TEMPLATE,
)

MAX_CONDENSE_LEVELS = 5

# -------------------------------------------------------------- #
# Ollama Summarization Adapter
# -------------------------------------------------------------- #


class OllamaSummarizationAdapter(BaseSummarizationAdapter):
    """
    Summarize transcripts with the shared Ollama request manager.

    The prompt template becomes the system prompt, followed by the user's free
    text context when there is one. Transcripts longer than ``max_words`` are
    condensed chunk by chunk, level after level, until they fit.
    """

    def __init__(
        self,
        context: "Context",
        model: str | None = None,
        max_words: int | None = None,
        timeout_ms: int = 300000,
    ):
        super().__init__(context)
        self.model = model
        self.max_words = max_words or int(os.getenv("SUMMARY_MAX_WORDS", "6000"))
        self.timeout_ms = timeout_ms

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"OllamaSummarizationAdapter initialized (max_words={self.max_words})"
        )

    # -------------------------------------------------------------- #
    # Stage
    # -------------------------------------------------------------- #

    async def summarize(
        self, transcript_text: str, prompt_template: str, context: str | None = None
    ) -> str:
        if not transcript_text.strip():
            raise PermanentAdapterError("Cannot summarize an empty transcript")
        if not prompt_template.strip():
            raise PermanentAdapterError("Prompt template is empty")

        text = await self._condense(transcript_text)

        system_prompt = prompt_template
        if context and context.strip():
            system_prompt += USER_CONTEXT_TEMPLATE.format(context=context.strip())

        result = await self.services.ollama_request_manager.query(
            messages=[
                {"role": "user", "content": SUMMARY_USER_CONTENT_TEMPLATE.format(transcript=text)}
            ],
            system_prompt=system_prompt,
            model=self.model,
            temperature=0.3,
            timeout_ms=self.timeout_ms,
        )

        summary = result.content.strip()
        if not summary:
            raise PermanentAdapterError("LLM returned an empty summary")
        return summary

    # -------------------------------------------------------------- #
    # Condensing
    # -------------------------------------------------------------- #

    async def _condense(self, text: str) -> str:
        """
        Shrink a transcript below ``max_words`` words.

        1. Split text into chunks of max_words words
        2. Condense each chunk
        3. Join the condensed chunks and repeat until under max_words
        """
        current_text = text
        for level in range(MAX_CONDENSE_LEVELS):
            words = current_text.split()
            if len(words) <= self.max_words:
                return current_text

            chunks = [
                " ".join(words[i : i + self.max_words])
                for i in range(0, len(words), self.max_words)
            ]
            target_words = max(100, self.max_words // (2 * len(chunks)))
            await self.services.logging_service.info(
                f"Condensing level {level}: {len(words)} words in {len(chunks)} chunks"
            )

            condensed = []
            for index, chunk in enumerate(chunks):
                result = await self.services.ollama_request_manager.query(
                    messages=[
                        {
                            "role": "user",
                            "content": CONDENSE_USER_CONTENT_TEMPLATE.format(
                                chunk_number=index + 1,
                                total_chunks=len(chunks),
                                target_words=target_words,
                                chunk_text=chunk,
                            ),
                        }
                    ],
                    system_prompt=CONDENSE_SYSTEM_MESSAGE,
                    model=self.model,
                    temperature=0.2,
                    timeout_ms=self.timeout_ms,
                )
                condensed.append(result.content.strip())

            current_text = "\n\n".join(condensed)

        return current_text
