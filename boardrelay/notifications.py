"""
Trello action -> Discord embed rendering.

Trello webhook payloads look like:

    {
        "action": {"type": "createCard", "data": {...}, "memberCreator": {...}, "date": "..."},
        "model": {"id": "<board id>", ...}
    }

Rendering never fails on a sparse or malformed payload; missing names fall
back to placeholders.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

FOOTER = {"text": "Trello • Discord-Trello Bot"}
COMMENT_LIMIT = 200

UNKNOWN = "Unknown"


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def malformed_field(action: dict[str, Any]) -> str | None:
    """
    Name of the first nested field that is present but not an object.

    Checks ``data``, ``data.board`` and ``memberCreator``; returns None when
    the action is well formed.
    """
    for field in ("data", "memberCreator"):
        if action.get(field) is not None and not isinstance(action[field], dict):
            return field
    board = _obj(action.get("data")).get("board")
    if board is not None and not isinstance(board, dict):
        return "data.board"
    return None


def extract_board_id(payload: dict[str, Any]) -> str | None:
    """Board id from ``action.data.board.id``, else ``model.id``. Only non-empty strings count."""
    board = _obj(_obj(_obj(payload.get("action")).get("data")).get("board"))
    for candidate in (board.get("id"), _obj(payload.get("model")).get("id")):
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def _name(obj: Any, key: str = "name") -> str:
    value = _obj(obj).get(key)
    return value if isinstance(value, str) and value else UNKNOWN


def _field(name: str, value: str, inline: bool = False) -> dict[str, Any]:
    return {"name": name, "value": value, "inline": inline}


def _format_date(value: Any) -> str:
    if not isinstance(value, str):
        return str(value)
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%b %d, %Y %H:%M")
    except ValueError:
        return value


def render_trello_action(action: dict[str, Any]) -> dict[str, Any]:
    """
    Build a Discord embed for a Trello action.

    Args:
        action: The ``action`` object of a Trello webhook payload

    Returns:
        Embed dict (title, color, fields, timestamp, footer)
    """
    action_type = str(action.get("type") or "")
    data = _obj(action.get("data"))
    card = _obj(data.get("card"))
    actor = _name(action.get("memberCreator"), "fullName")

    embed: dict[str, Any] = {"footer": FOOTER}
    if action.get("date"):
        embed["timestamp"] = action["date"]

    if action_type == "createCard":
        embed["title"] = "🆕 New Card Created"
        embed["color"] = 0x00FF00
        embed["fields"] = [
            _field("📝 Card", _name(card)),
            _field("📋 List", _name(data.get("list")), inline=True),
            _field("👤 Created by", actor, inline=True),
        ]

    elif action_type == "updateCard":
        embed["title"] = "✏️ Card Updated"
        embed["color"] = 0xFFA500
        fields = [_field("📝 Card", _name(card))]
        old = _obj(data.get("old"))
        if "name" in old and old["name"] != card.get("name"):
            fields.append(_field("🔄 Name Changed", f"{old['name']} → {_name(card)}"))
        if "desc" in old and old["desc"] != card.get("desc"):
            fields.append(_field("📄 Description Updated", "Description was modified"))
        if "due" in old and old["due"] != card.get("due"):
            due = card.get("due")
            fields.append(_field("📅 Due Date Changed", _format_date(due) if due else "Due date removed"))
        if "idList" in old and data.get("listAfter"):
            fields.append(
                _field("📋 Moved", f"{_name(data.get('listBefore'))} → {_name(data.get('listAfter'))}")
            )
        fields.append(_field("👤 Updated by", actor, inline=True))
        embed["fields"] = fields

    elif action_type == "commentCard":
        text = data.get("text") if isinstance(data.get("text"), str) else ""
        if len(text) > COMMENT_LIMIT:
            text = text[:COMMENT_LIMIT] + "..."
        embed["title"] = "💬 New Comment"
        embed["color"] = 0x0099FF
        embed["fields"] = [
            _field("📝 Card", _name(card)),
            _field("💬 Comment", text or "(empty)"),
            _field("👤 By", actor, inline=True),
        ]

    elif action_type in ("addMemberToCard", "removeMemberFromCard"):
        added = action_type == "addMemberToCard"
        member = _name(data.get("member"), "fullName")
        embed["title"] = "👥 Member Added to Card" if added else "👥 Member Removed from Card"
        embed["color"] = 0x9370DB if added else 0xFF6347
        embed["fields"] = [
            _field("📝 Card", _name(card)),
            _field("👤 Member Added" if added else "👤 Member Removed", member, inline=True),
            _field("👤 Added by" if added else "👤 Removed by", actor, inline=True),
        ]

    elif action_type == "updateCheckItemStateOnCard":
        check_item = _obj(data.get("checkItem"))
        complete = check_item.get("state") == "complete"
        embed["title"] = f"{'✅' if complete else '⬜'} Checklist Item Updated"
        embed["color"] = 0x00FF00 if complete else 0xFFFF00
        embed["fields"] = [
            _field("📝 Card", _name(card)),
            _field("✅ Item", _name(check_item)),
            _field("👤 By", actor, inline=True),
        ]

    else:
        embed["title"] = "🔔 Trello Activity"
        embed["color"] = 0x0079BF
        embed["fields"] = [
            _field("📋 Event", action_type or UNKNOWN),
            _field("👤 By", actor, inline=True),
        ]

    return embed
