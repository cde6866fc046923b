from burnkeeper.api.read_model import AnnouncementFeed, DashboardQueries

__all__ = ["AnnouncementFeed", "DashboardQueries"]
