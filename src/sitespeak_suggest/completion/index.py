"""Mutable command index backing auto-completion.

Holds a global partition plus one partition per user. Entries are
deduplicated by lower-cased command text and trimmed by a combined
frequency + recency score once the global partition grows too large.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..config import IndexConfig
from ..models import CommandSuggestion, IndexEntry, IntentCategory
from ..profiles import UserProfileStore

logger = logging.getLogger(__name__)

IndexSource = Union[IndexEntry, CommandSuggestion]

DEFAULT_COMMANDS = (
    ("Help me with this page", IntentCategory.HELP_REQUEST, ["help", "assist"]),
    ("Navigate to home page", IntentCategory.NAVIGATE_TO_PAGE, ["navigate", "home"]),
    ("Search for products", IntentCategory.SEARCH_CONTENT, ["search", "find"]),
    ("Click the submit button", IntentCategory.CLICK_ELEMENT, ["click", "button"]),
    ("Go to the main menu", IntentCategory.OPEN_MENU, ["menu", "navigation"]),
    ("What can I do here?", IntentCategory.HELP_REQUEST, ["what", "can", "do"]),
)


def _dedupe(entries: Iterable[IndexEntry]) -> List[IndexEntry]:
    """Keep one entry per lower-cased command, preferring the higher frequency."""
    seen: Dict[str, IndexEntry] = {}
    for entry in entries:
        key = entry.command.lower()
        existing = seen.get(key)
        if existing is None or entry.frequency > existing.frequency:
            seen[key] = entry
    return list(seen.values())


class CompletionIndex:
    """Global + per-user command index.

    All mutation happens under a single re-entrant lock; readers receive
    snapshot lists so matching never runs while holding it.
    """

    def __init__(
        self,
        config: Optional[IndexConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or IndexConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: List[IndexEntry] = []
        self._user_entries: Dict[str, List[IndexEntry]] = {}
        if self.config.seed_defaults:
            self.seed_defaults()

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    def _to_entry(self, item: IndexSource) -> IndexEntry:
        if isinstance(item, IndexEntry):
            return item
        return IndexEntry(
            command=item.command,
            intent=item.intent,
            keywords=list(item.keywords),
            variations=list(item.variations),
            frequency=0,
            last_used=self._clock(),
        )

    def add(self, items: Iterable[IndexSource], user_id: Optional[str] = None) -> int:
        """Insert entries (or suggestions) and return the new global size."""
        new_entries = [self._to_entry(item) for item in items]
        with self._lock:
            self._entries = _dedupe(self._entries + new_entries)
            if user_id:
                user_index = self._user_entries.get(user_id, [])
                # Per-user copies so frequencies evolve independently.
                copies = [
                    IndexEntry(e.command, e.intent, list(e.keywords), list(e.variations),
                               e.frequency, e.last_used)
                    for e in new_entries
                ]
                self._user_entries[user_id] = _dedupe(user_index + copies)
            self._limit_size()
            return len(self._entries)

    def learn_from_selection(self, command_text: str, user_id: Optional[str] = None) -> bool:
        """Record that ``command_text`` was chosen; returns False if it is unknown."""
        now = self._clock()
        key = command_text.lower()
        with self._lock:
            global_entry = next((e for e in self._entries if e.command.lower() == key), None)
            if global_entry is not None:
                global_entry.touch(now)

            if user_id:
                user_index = self._user_entries.setdefault(user_id, [])
                user_entry = next((e for e in user_index if e.command.lower() == key), None)
                if user_entry is not None:
                    user_entry.touch(now)
                elif global_entry is not None:
                    user_index.append(IndexEntry(
                        global_entry.command,
                        global_entry.intent,
                        list(global_entry.keywords),
                        list(global_entry.variations),
                        frequency=1,
                        last_used=now,
                    ))
                    user_entry = user_index[-1]
                return global_entry is not None or user_entry is not None
            return global_entry is not None

    def seed_defaults(self) -> None:
        now = self._clock()
        self.add(
            IndexEntry(command, intent, list(keywords), [], frequency=1, last_used=now)
            for command, intent, keywords in DEFAULT_COMMANDS
        )

    def seed_user(self, user_id: str, store: UserProfileStore) -> int:
        """Load a user's saved commands from the profile store into their partition."""
        try:
            profile = store.get(user_id)
        except Exception as exc:
            logger.warning("Failed to load profile for %s: %s", user_id, exc)
            return 0
        if not profile:
            return 0

        entries = []
        for raw in profile.get("commands", []):
            try:
                entries.append(IndexEntry(
                    command=raw["command"],
                    intent=IntentCategory(raw.get("intent", IntentCategory.UNKNOWN_INTENT.value)),
                    keywords=list(raw.get("keywords", [])),
                    variations=list(raw.get("variations", [])),
                    frequency=int(raw.get("frequency", 1)),
                    last_used=float(raw.get("last_used", self._clock())),
                ))
            except (KeyError, ValueError, TypeError) as exc:
                logger.debug("Skipping malformed profile command for %s: %s", user_id, exc)

        with self._lock:
            current = self._user_entries.get(user_id, [])
            self._user_entries[user_id] = _dedupe(current + entries)
        logger.debug("Seeded %d commands for user %s", len(entries), user_id)
        return len(entries)

    def export_user(self, user_id: str) -> Dict[str, Any]:
        """Profile payload for ``user_id`` in the shape :meth:`seed_user` reads."""
        with self._lock:
            entries = list(self._user_entries.get(user_id, []))
        return {
            "commands": [
                {
                    "command": e.command,
                    "intent": e.intent.value,
                    "keywords": list(e.keywords),
                    "variations": list(e.variations),
                    "frequency": e.frequency,
                    "last_used": e.last_used,
                }
                for e in entries
            ]
        }

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def score(self, entry: IndexEntry, now: Optional[float] = None) -> float:
        """Combined frequency + recency score; recent use adds up to 1.0."""
        now = self._clock() if now is None else now
        age_hours = max(0.0, now - entry.last_used) / 3600.0
        return entry.frequency + 1.0 / (1.0 + age_hours)

    def relevant_entries(self, user_id: Optional[str] = None) -> List[IndexEntry]:
        """User entries followed by global entries, each best score first."""
        now = self._clock()
        with self._lock:
            personal = list(self._user_entries.get(user_id, [])) if user_id else []
            shared = list(self._entries)
        personal.sort(key=lambda e: self.score(e, now), reverse=True)
        shared.sort(key=lambda e: self.score(e, now), reverse=True)
        return personal + shared

    def entries(self) -> List[IndexEntry]:
        with self._lock:
            return list(self._entries)

    def user_entries(self, user_id: str) -> List[IndexEntry]:
        with self._lock:
            return list(self._user_entries.get(user_id, []))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            top = sorted(self._entries, key=lambda e: e.frequency, reverse=True)[:10]
            return {
                "total_entries": len(self._entries),
                "user_partitions": len(self._user_entries),
                "top_commands": [{"command": e.command, "frequency": e.frequency} for e in top],
            }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _limit_size(self) -> None:
        if len(self._entries) <= self.config.max_entries:
            return
        now = self._clock()
        before = len(self._entries)
        self._entries.sort(key=lambda e: self.score(e, now), reverse=True)
        self._entries = self._entries[: self.config.trim_to]
        logger.info("Trimmed completion index from %d to %d entries", before, len(self._entries))
