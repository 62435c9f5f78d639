import pytest

from sitespeak_suggest.models import SuggestionContext


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context():
    return SuggestionContext(
        page_type="product",
        current_mode="view",
        user_role="visitor",
        capabilities=("navigation", "search", "cart", "forms"),
    )
