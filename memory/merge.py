"""Splicing of stored summaries into raw conversation history."""

from typing import List

from schemas.messages import ConversationMessage


def merge_summaries(
    history: List[ConversationMessage],
    summaries: List[ConversationMessage]
) -> List[ConversationMessage]:
    """
    Replace summarized ranges of history with their summaries.

    Both inputs are ascending by timestamp. Walking both from the tail, a raw
    message newer than the current summary is kept; otherwise the summary is
    emitted and every raw message not newer than it is skipped. Summaries
    left once raw history runs out are emitted as well.

    Merging an already merged history with the same summaries returns it
    unchanged.

    Args:
        history: Raw conversation messages
        summaries: Summary log of the conversation

    Returns:
        Compressed view in ascending order
    """
    if not summaries:
        return list(history)

    result: List[ConversationMessage] = []
    i = len(history) - 1
    j = len(summaries) - 1

    while i >= 0 and j >= 0:
        summary = summaries[j]
        if history[i].timestamp > summary.timestamp:
            result.append(history[i])
            i -= 1
            continue

        result.append(summary)
        while i >= 0 and history[i].timestamp <= summary.timestamp:
            i -= 1
        j -= 1

    while i >= 0:
        result.append(history[i])
        i -= 1

    while j >= 0:
        result.append(summaries[j])
        j -= 1

    result.reverse()
    return result
