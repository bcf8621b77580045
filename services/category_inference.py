"""Market category matching against copy config allow-lists."""

from typing import Iterable, List, Optional

# Broad category -> substrings that identify it in slugs and category strings
CATEGORY_KEYWORDS = {
    "sports": [
        "nba", "nfl", "mlb", "nhl", "soccer", "football", "basketball", "baseball", "hockey",
        "tennis", "golf", "boxing", "mma", "ufc", "wrestling", "cricket", "rugby", "f1",
        "formula1", "racing", "olympics", "world-cup", "euro", "champions-league",
        "premier-league", "ncaa", "college-football", "college-basketball", "nascar",
        "indycar", "motogp", "esports", "lol", "dota", "csgo", "valorant", "overwatch",
        "rocket-league",
    ],
    "crypto": [
        "bitcoin", "btc", "ethereum", "eth", "crypto", "cryptocurrency", "defi", "nft",
        "blockchain", "altcoin", "stablecoin", "token", "coin", "exchange", "binance",
        "coinbase", "uniswap", "yield-farming", "staking", "mining", "halving", "fork",
        "airdrop", "ico", "ido", "metaverse", "web3", "dao",
    ],
    "politics": [
        "election", "president", "senate", "congress", "house", "governor", "mayor",
        "vote", "voting", "poll", "primary", "caucus", "debate", "campaign",
        "impeachment", "supreme-court", "scotus", "policy", "legislation", "bill",
        "referendum", "ballot", "democrat", "republican", "independent", "party",
        "biden", "trump", "harris", "kamala", "donald", "joe", "presidential",
    ],
    "economy": [
        "gdp", "inflation", "unemployment", "jobs", "employment", "recession", "depression",
        "fed", "federal-reserve", "interest-rate", "rate-cut", "rate-hike", "monetary",
        "fiscal", "budget", "deficit", "surplus", "trade", "tariff", "import", "export",
        "dow", "sp500", "nasdaq", "stock-market", "market", "stocks", "shares",
        "earnings", "revenue", "profit", "loss", "ipo", "merger", "acquisition",
    ],
    "technology": [
        "ai", "artificial-intelligence", "machine-learning", "ml", "deep-learning",
        "chatgpt", "openai", "google", "apple", "microsoft", "meta", "facebook",
        "amazon", "tesla", "spacex", "twitter", "x", "social-media", "tech",
        "software", "hardware", "chip", "semiconductor", "nvidia", "amd", "intel",
        "quantum", "cloud", "saas", "startup", "unicorn",
    ],
    "entertainment": [
        "movie", "film", "oscar", "grammy", "emmy", "award", "box-office", "netflix",
        "disney", "marvel", "dc", "superhero", "tv", "television", "streaming",
        "music", "album", "song", "artist", "concert", "tour", "festival",
        "game", "gaming", "console", "playstation", "xbox", "nintendo", "switch",
    ],
    "weather": [
        "hurricane", "tornado", "earthquake", "flood", "drought", "wildfire",
        "temperature", "weather", "climate", "global-warming", "climate-change",
        "storm", "snow", "rain", "blizzard", "typhoon", "cyclone",
    ],
    "health": [
        "covid", "coronavirus", "pandemic", "vaccine", "vaccination", "fda",
        "drug", "medicine", "treatment", "cure", "disease", "illness",
        "health", "medical", "hospital", "doctor", "nurse", "patient",
    ],
}


def infer_categories(category: Optional[str]) -> List[str]:
    """
    Infer broad categories from a specific category string.

    "nba-ind-det-2025-11-17" infers ["sports"]. Matching is substring based,
    so one string can infer several categories.
    """
    if not category:
        return []
    text = category.lower()
    return [
        broad for broad, keywords in CATEGORY_KEYWORDS.items()
        if any(keyword in text for keyword in keywords)
    ]


def matches_category(market_category: Optional[str], allowed: Iterable[str]) -> bool:
    """
    Check a market category against an allow-list.

    An empty allow-list allows everything. Otherwise a category matches when
    it equals an allowed entry, infers one, contains one, or is contained
    in one (case-insensitive).
    """
    allowed_lower = [c.lower() for c in allowed if c]
    if not allowed_lower:
        return True
    if not market_category:
        return False

    category = market_category.lower()
    if category in allowed_lower:
        return True
    if any(broad in allowed_lower for broad in infer_categories(category)):
        return True
    if any(entry in category for entry in allowed_lower):
        return True
    return any(category in entry for entry in allowed_lower)


def supported_categories() -> List[str]:
    return list(CATEGORY_KEYWORDS)
