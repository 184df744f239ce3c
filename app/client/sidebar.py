"""Conversation list presentation state."""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from app.client.typed_titles import TypedTitleStore
from app.models.conversation import NEW_CHAT_TITLE


@dataclass(frozen=True)
class SidebarEntry:
    conversation_id: str
    title: str
    placeholder: bool
    animate: bool
    active: bool
    route: str


def build_sidebar_entries(
    conversations: Iterable[Dict[str, Any]],
    typed_titles: TypedTitleStore,
    active_conversation_id: Optional[str] = None,
) -> List[SidebarEntry]:
    """
    Decide how each conversation title is shown.

    A title still being generated, or still the placeholder, is shown as
    NEW_CHAT_TITLE. A real title animates once; after the animation is
    reported through typed_titles.mark_typed() it is shown statically.
    """
    entries = []
    for conv in conversations:
        placeholder = bool(conv.get("isTitleGenerating")) or conv["title"] == NEW_CHAT_TITLE
        entries.append(
            SidebarEntry(
                conversation_id=conv["id"],
                title=NEW_CHAT_TITLE if placeholder else conv["title"],
                placeholder=placeholder,
                animate=not placeholder and not typed_titles.has(conv["id"]),
                active=conv["id"] == active_conversation_id,
                route=f"/chat/{conv['id']}",
            )
        )
    return entries
