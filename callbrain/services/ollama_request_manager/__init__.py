"""
Ollama Request Manager Service.

Example usage:
    from callbrain.services.ollama_request_manager import OllamaRequestManager

    manager = OllamaRequestManager(context, host="http://localhost:11434")
    await manager.on_start(services)

    result = await manager.query(
        messages=[{"role": "user", "content": "What did the client ask for?"}],
        format="json",
    )
    print(result.content)
"""

from callbrain.services.ollama_request_manager.manager import (
    GenerationConfig,
    Message,
    OllamaQueryInput,
    OllamaQueryResult,
    OllamaRequestManager,
)

__all__ = [
    "OllamaRequestManager",
    "OllamaQueryInput",
    "OllamaQueryResult",
    "GenerationConfig",
    "Message",
]
