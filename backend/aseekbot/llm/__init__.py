"""
LLM Agent Package

Black-box access to the Bedrock conversational agent, with bounded retry:

    from aseekbot.llm import BedrockAgentClient

    agent = BedrockAgentClient()
    reply = await agent.invoke(prompt, session_id)
    reply.completion
"""

from aseekbot.llm.agent import (
    AgentClient,
    AgentCompletion,
    AgentFile,
    BedrockAgentClient,
    retry_with_backoff,
)

__all__ = [
    "AgentClient",
    "AgentCompletion",
    "AgentFile",
    "BedrockAgentClient",
    "retry_with_backoff",
]
