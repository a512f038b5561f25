from crawlsync.services.collector.base import SourceStrategy
from crawlsync.services.collector.errors import InvalidConfig
from crawlsync.services.sources import appstore, github, gmaps, google_play, hackernews, reddit, trustpilot

# Registry of available sources
SOURCES: dict[str, SourceStrategy] = {
    "reddit": reddit.STRATEGY,
    "hackernews": hackernews.STRATEGY,
    "github": github.STRATEGY,
    "trustpilot": trustpilot.STRATEGY,
    "ios_appstore": appstore.STRATEGY,
    "google_play": google_play.STRATEGY,
    "gmaps": gmaps.STRATEGY,
}


def get_source(kind: str) -> SourceStrategy:
    """Get the strategy for the given source kind."""
    strategy = SOURCES.get(kind)
    if not strategy:
        raise InvalidConfig(f"Unknown source: {kind}. Available: {list(SOURCES.keys())}")
    return strategy
