from sitespeak_suggest.completion import CompletionIndex
from sitespeak_suggest.completion.index import DEFAULT_COMMANDS
from sitespeak_suggest.config import IndexConfig
from sitespeak_suggest.models import CommandSuggestion, IndexEntry, IntentCategory
from sitespeak_suggest.profiles import InMemoryProfileStore


def empty_index(clock, **overrides):
    return CompletionIndex(IndexConfig(seed_defaults=False, **overrides), clock=clock)


class TestCompletionIndex:

    def test_seeds_default_commands(self, clock):
        index = CompletionIndex(clock=clock)
        commands = {e.command for e in index.entries()}
        assert len(index) == len(DEFAULT_COMMANDS) == 6
        assert "Help me with this page" in commands

    def test_dedup_keeps_higher_frequency(self, clock):
        index = empty_index(clock)
        index.add([IndexEntry("Open menu", IntentCategory.OPEN_MENU, frequency=2, last_used=clock())])
        index.add([IndexEntry("open MENU", IntentCategory.OPEN_MENU, frequency=7, last_used=clock())])

        entries = index.entries()
        assert len(entries) == 1
        assert entries[0].frequency == 7

    def test_accepts_command_suggestions(self, clock):
        index = empty_index(clock)
        index.add([CommandSuggestion(id="s1", command="Add to cart", intent=IntentCategory.ADD_TO_CART,
                                     confidence=0.9, keywords=["cart"])])

        entry = index.entries()[0]
        assert entry.command == "Add to cart"
        assert entry.keywords == ["cart"]
        assert entry.frequency == 0

    def test_size_cap_trims_to_highest_scores(self, clock):
        index = empty_index(clock, max_entries=5, trim_to=3)
        index.add(
            IndexEntry(f"Command {i}", IntentCategory.UNKNOWN_INTENT, frequency=i, last_used=clock())
            for i in range(6)
        )

        assert len(index) == 3
        assert sorted(e.frequency for e in index.entries()) == [3, 4, 5]

    def test_learn_from_selection_updates_global_and_user(self, clock):
        index = empty_index(clock)
        index.add([IndexEntry("Open menu", IntentCategory.OPEN_MENU, frequency=1, last_used=clock())])
        clock.advance(60)

        assert index.learn_from_selection("open menu", user_id="u1") is True

        global_entry = index.entries()[0]
        assert global_entry.frequency == 2
        assert global_entry.last_used == clock()
        user_entry = index.user_entries("u1")[0]
        assert user_entry.frequency == 1

        index.learn_from_selection("Open menu", user_id="u1")
        assert index.user_entries("u1")[0].frequency == 2

    def test_learn_unknown_command(self, clock):
        index = empty_index(clock)
        assert index.learn_from_selection("Does not exist") is False

    def test_relevant_entries_user_first_then_by_score(self, clock):
        index = empty_index(clock)
        index.add([
            IndexEntry("Rare", IntentCategory.UNKNOWN_INTENT, frequency=1, last_used=clock()),
            IndexEntry("Popular", IntentCategory.UNKNOWN_INTENT, frequency=9, last_used=clock()),
        ])
        index.add([IndexEntry("Mine", IntentCategory.UNKNOWN_INTENT, frequency=0, last_used=clock())],
                  user_id="u1")

        ordered = [e.command for e in index.relevant_entries("u1")]
        assert ordered[0] == "Mine"
        assert ordered.index("Popular") < ordered.index("Rare")

    def test_recency_breaks_frequency_ties(self, clock):
        index = empty_index(clock)
        index.add([IndexEntry("Old", IntentCategory.UNKNOWN_INTENT, frequency=3, last_used=clock())])
        clock.advance(7200)
        index.add([IndexEntry("New", IntentCategory.UNKNOWN_INTENT, frequency=3, last_used=clock())])

        assert [e.command for e in index.relevant_entries()] == ["New", "Old"]

    def test_seed_user_from_profile_store(self, clock):
        store = InMemoryProfileStore({
            "u1": {"commands": [
                {"command": "Show my orders", "intent": "track_order", "frequency": 4},
                {"intent": "track_order"},
            ]}
        })
        index = empty_index(clock)

        assert index.seed_user("u1", store) == 1
        entry = index.user_entries("u1")[0]
        assert entry.command == "Show my orders"
        assert entry.intent == IntentCategory.TRACK_ORDER
        assert entry.frequency == 4

    def test_seed_user_without_profile(self, clock):
        index = empty_index(clock)
        assert index.seed_user("nobody", InMemoryProfileStore()) == 0

    def test_export_user_round_trips_through_seed(self, clock):
        index = empty_index(clock)
        index.add([IndexEntry("Open menu", IntentCategory.OPEN_MENU, frequency=2, last_used=clock())],
                  user_id="u1")
        store = InMemoryProfileStore()
        store.set("u1", index.export_user("u1"))

        other = empty_index(clock)
        other.seed_user("u1", store)
        assert other.user_entries("u1")[0].frequency == 2

    def test_stats(self, clock):
        index = CompletionIndex(clock=clock)
        index.learn_from_selection("Search for products")

        stats = index.stats()
        assert stats["total_entries"] == 6
        assert stats["top_commands"][0]["command"] == "Search for products"
