from .coordinator import DailyFeeStats, FeeSponsorshipCoordinator, SponsorshipDecision

__all__ = ["DailyFeeStats", "FeeSponsorshipCoordinator", "SponsorshipDecision"]
