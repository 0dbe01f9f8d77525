"""
Site-wide Search Console traffic models
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Date, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from gsc_sync.models.base import Base


class SearchConsoleTrafficAnalytics(Base):
    """Traffic record holder, one per site"""
    __tablename__ = "search_console_traffic_analytics"

    id = Column(Integer, primary_key=True, index=True)
    site_url = Column(String, unique=True, index=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    daily = relationship("TrafficDaily", back_populates="analytics")
    monthly = relationship("TrafficMonthly", back_populates="analytics")

    def __repr__(self):
        return f"<SearchConsoleTrafficAnalytics {self.site_url}>"


class TrafficDaily(Base):
    """Site clicks/impressions for one day"""
    __tablename__ = "traffic_daily"
    __table_args__ = (
        UniqueConstraint("analytics_id", "date", name="uq_traffic_daily_analytics_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    analytics_id = Column(Integer, ForeignKey("search_console_traffic_analytics.id"), index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)

    clicks = Column(Integer, default=0)
    impressions = Column(Integer, default=0)
    ctr = Column(Float, nullable=True)  # Decimal 0-1
    position = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    analytics = relationship("SearchConsoleTrafficAnalytics", back_populates="daily")

    def __repr__(self):
        return f"<TrafficDaily {self.analytics_id} {self.date} clicks={self.clicks}>"


class TrafficMonthly(Base):
    """Site clicks/impressions for one calendar month"""
    __tablename__ = "traffic_monthly"
    __table_args__ = (
        UniqueConstraint("analytics_id", "year", "month", name="uq_traffic_monthly_analytics_month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    analytics_id = Column(Integer, ForeignKey("search_console_traffic_analytics.id"), index=True, nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)

    clicks = Column(Integer, default=0)
    impressions = Column(Integer, default=0)
    ctr = Column(Float, nullable=True)  # Decimal 0-1
    position = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    analytics = relationship("SearchConsoleTrafficAnalytics", back_populates="monthly")

    def __repr__(self):
        return f"<TrafficMonthly {self.analytics_id} {self.year}-{self.month:02d}>"
