"""
Keyword ranking models

Per-keyword analytics for a Search Console property: the initial (pre-campaign)
position baseline plus daily and monthly rank, search volume and top page.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, ForeignKey, Date, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from gsc_sync.models.base import Base


class SearchConsoleKeyword(Base):
    """One tracked keyword on one site"""
    __tablename__ = "search_console_keywords"
    __table_args__ = (
        UniqueConstraint("site_url", "keyword", name="uq_search_console_keyword_site_keyword"),
    )

    id = Column(Integer, primary_key=True, index=True)
    site_url = Column(String, index=True, nullable=False)
    keyword = Column(String, nullable=False)

    # Impression-weighted position over the 7 days before campaign start
    initial_position = Column(Float, nullable=True)
    initial_position_computed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    daily_stats = relationship("KeywordDailyStat", back_populates="keyword")
    monthly_stats = relationship("KeywordMonthlyStat", back_populates="keyword")

    def __repr__(self):
        return f"<SearchConsoleKeyword '{self.keyword}' {self.site_url}>"


class KeywordDailyStat(Base):
    """Daily rank and volume for a keyword"""
    __tablename__ = "keyword_daily_stats"
    __table_args__ = (
        UniqueConstraint("keyword_id", "date", name="uq_keyword_daily_stat_keyword_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    keyword_id = Column(Integer, ForeignKey("search_console_keywords.id"), index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)

    average_rank = Column(Float, nullable=True)
    # Impressions for the query; 0 = no impressions that day
    search_volume = Column(Integer, nullable=True)
    clicks = Column(Integer, nullable=True)
    top_ranking_page_url = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    keyword = relationship("SearchConsoleKeyword", back_populates="daily_stats")

    def __repr__(self):
        return f"<KeywordDailyStat keyword={self.keyword_id} {self.date} rank={self.average_rank}>"


class KeywordMonthlyStat(Base):
    """Monthly rank and volume for a keyword"""
    __tablename__ = "keyword_monthly_stats"
    __table_args__ = (
        UniqueConstraint("keyword_id", "year", "month", name="uq_keyword_monthly_stat_keyword_month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    keyword_id = Column(Integer, ForeignKey("search_console_keywords.id"), index=True, nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)  # 1-12

    average_rank = Column(Float, nullable=True)
    search_volume = Column(Integer, nullable=True)
    clicks = Column(Integer, nullable=True)
    top_ranking_page_url = Column(Text, nullable=True)

    # fetch (month-scoped API call) or daily_rollup
    source = Column(String, nullable=True)
    # Daily records rolled into this month
    calc_window_days = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    keyword = relationship("SearchConsoleKeyword", back_populates="monthly_stats")

    def __repr__(self):
        return f"<KeywordMonthlyStat keyword={self.keyword_id} {self.year}-{self.month:02d}>"
