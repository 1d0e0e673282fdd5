from .entities import DailyStats, GlobalStats
from .store import EntityStore
from .util import day_bucket

GLOBAL_STATS_ID = "global"


class AggregateMaintainer:
    """Running global and per-day counters, updated incrementally per event.

    ``active_users`` counts applied events per day rather than distinct users;
    it is a rough activity gauge, not a deduplicated DAU figure.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def global_stats(self) -> GlobalStats:
        stats, _ = self.store.load_or_create(GlobalStats, GLOBAL_STATS_ID, lambda: GlobalStats(id=GLOBAL_STATS_ID))
        return stats

    def daily_stats(self, timestamp: int) -> DailyStats:
        day = day_bucket(timestamp)
        stats, _ = self.store.load_or_create(DailyStats, str(day), lambda: DailyStats(id=str(day), date=day))
        return stats

    def record_event(self, timestamp: int) -> None:
        stats = self.global_stats()
        stats.total_events += 1
        stats.last_updated = max(stats.last_updated, timestamp)
        self.daily_stats(timestamp).active_users += 1

    def token_created(self, timestamp: int) -> None:
        self.global_stats().total_tokens += 1
        self.daily_stats(timestamp).tokens_created += 1

    def token_minted(self, timestamp: int, amount: int) -> None:
        stats = self.global_stats()
        stats.total_mints += 1
        stats.total_supply += amount
        daily = self.daily_stats(timestamp)
        daily.tokens_minted += 1
        daily.total_supply_change += amount

    def tokens_burned(self, timestamp: int, amount: int) -> None:
        stats = self.global_stats()
        stats.total_supply = max(0, stats.total_supply - amount)
        self.daily_stats(timestamp).total_supply_change -= amount

    def user_created(self) -> None:
        self.global_stats().total_users += 1
