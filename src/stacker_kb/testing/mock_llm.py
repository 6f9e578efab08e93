"""Mock chat model factory for testing generation without real API calls.

Uses LangChain's FakeListChatModel, which answers ``invoke`` with the whole
response and ``stream`` one character at a time.
"""

import json

from langchain_core.language_models.fake_chat_models import FakeListChatModel


def create_mock_llm(responses: list[str | dict]) -> FakeListChatModel:
    """Create a mock chat model with scripted responses.

    Args:
        responses: Responses returned in order (cycling). Dicts are
            JSON-stringified.

    Returns:
        FakeListChatModel configured with the responses

    Example:
        >>> mock_llm = create_mock_llm(["Windows Auth is enabled on /user."])
    """
    texts = []
    for resp in responses:
        if isinstance(resp, dict):
            texts.append(json.dumps(resp, indent=2))
        else:
            texts.append(str(resp))
    return FakeListChatModel(responses=texts)

